"""FEL (Factura Electrónica en Línea) certification client.

The reservation core treats certification as a black box:
``certify(invoice) -> FelCertification``. :class:`HttpFelCertifier` talks to
a certifier's REST endpoint over ``httpx``; XML generation and signing
happen on the certifier side.
"""

import http
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from tradeconnect.errors import FelError
from tradeconnect.pricing.money import Money
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)

FINAL_CONSUMER_NIT = "CF"


@dataclass(frozen=True, slots=True)
class FelInvoiceLine:
    description: str
    quantity: int
    unit_price: Money
    discount: Money
    total: Money


@dataclass(frozen=True, slots=True)
class FelInvoice:
    """Invoice data sent for certification.

    Attributes:
        reference: Registration code the invoice belongs to.
        receiver_nit: Buyer NIT, or ``"CF"`` for a final consumer.
        receiver_name: Buyer name as it should appear on the invoice.
        currency: ISO 4217 code.
        lines: Invoice lines; amounts are decimal strings on the wire.
    """

    reference: str
    receiver_nit: str
    receiver_name: str
    receiver_email: str
    currency: str
    lines: tuple[FelInvoiceLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Money:
        return sum((line.total for line in self.lines), Money.zero())

    def to_payload(self, issuer_nit: str) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "issuer_nit": issuer_nit,
            "receiver": {
                "nit": self.receiver_nit,
                "name": self.receiver_name,
                "email": self.receiver_email,
            },
            "currency": self.currency,
            "total": str(self.total),
            "items": [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": str(line.unit_price),
                    "discount": str(line.discount),
                    "total": str(line.total),
                }
                for line in self.lines
            ],
        }


@dataclass(frozen=True, slots=True)
class FelCertification:
    authorization_number: str
    certified_xml: str = ""
    series: str = ""
    number: str = ""


class FelCertifier(ABC):
    """Interface for FEL certification."""

    @abstractmethod
    def certify(self, invoice: FelInvoice) -> FelCertification:
        """Certify ``invoice``.

        Raises:
            FelError: ``transient=True`` when retrying may succeed.
        """
        ...


class HttpFelCertifier(FelCertifier):
    """Certifies invoices through a certifier's JSON API.

    Args:
        base_url: Overrides ``TRADECONNECT["fel"]["base_url"]``.
        token: Overrides ``TRADECONNECT["fel"]["token"]``.
        transport: Optional ``httpx`` transport, mainly for tests.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        config = get_config().fel
        self.base_url = (base_url or config.base_url).rstrip("/")
        self.timeout = config.timeout
        self.issuer_nit = config.nit_emisor
        self.transport = transport
        self.headers: dict[str, str] = {"Accept": "application/json"}
        token = token or config.token
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def certify(self, invoice: FelInvoice) -> FelCertification:
        url = f"{self.base_url}/certificar"
        logger.debug("Certifying invoice %s at %s", invoice.reference, url)
        with httpx.Client(timeout=self.timeout, headers=self.headers, transport=self.transport) as client:
            try:
                response = client.post(url, json=invoice.to_payload(self.issuer_nit))
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                msg = f"FEL certification failed: {status} for invoice {invoice.reference}"
                transient = status >= http.HTTPStatus.INTERNAL_SERVER_ERROR or status == http.HTTPStatus.TOO_MANY_REQUESTS
                raise FelError(msg, transient=transient) from exc
            except httpx.RequestError as exc:
                msg = f"FEL certifier connection error for invoice {invoice.reference}: {exc}"
                raise FelError(msg, transient=True) from exc

        data = response.json()
        authorization_number = data.get("authorization_number") or data.get("uuid")
        if not authorization_number:
            msg = f"FEL certifier returned no authorization number for invoice {invoice.reference}"
            raise FelError(msg)
        logger.info("Invoice %s certified with authorization %s", invoice.reference, authorization_number)
        return FelCertification(
            authorization_number=authorization_number,
            certified_xml=data.get("certified_xml", ""),
            series=data.get("series", ""),
            number=str(data.get("number", "")),
        )


def build_invoice(registration: object) -> FelInvoice:
    """Build the invoice for a paid registration."""
    config = get_config()
    name = registration.company_name or registration.full_name or registration.user.get_username()
    unit_price = Money.parse(registration.base_price)
    return FelInvoice(
        reference=registration.registration_code,
        receiver_nit=registration.nit or FINAL_CONSUMER_NIT,
        receiver_name=name,
        receiver_email=registration.email or registration.user.email,
        currency=config.currency,
        lines=(
            FelInvoiceLine(
                description=registration.event.title,
                quantity=registration.quantity,
                unit_price=unit_price,
                discount=Money.parse(registration.discount_amount),
                total=Money.parse(registration.final_price),
            ),
        ),
    )
