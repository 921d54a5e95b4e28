"""Payment gateway interface and shipped implementations.

The reservation core only needs two things from a gateway: charge an amount
and refund a charge. Gateways are looked up by name through
``TRADECONNECT["payment"]["gateway_classes"]`` so deployments can plug in
PayPal, NeoNet or BAM adapters without touching the services.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import stripe
from django.utils.crypto import get_random_string
from django.utils.module_loading import import_string

from tradeconnect.errors import GatewayError
from tradeconnect.pricing.money import Money
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset({"BIF", "CLP", "JPY", "KRW", "PYG", "VND", "XAF", "XOF"})


def to_minor_units(amount: Money, currency: str) -> int:
    """Return ``amount`` in the smallest currency unit Stripe expects."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.amount)
    return amount.cents


def obfuscate_key(key: str) -> str:
    """Mask an API key for log output, keeping the last four characters."""
    if len(key) < 4:
        return "****"
    return "****" + key[-4:]


@dataclass(frozen=True, slots=True)
class ChargeResult:
    """Outcome of a successful gateway call.

    ``status`` uses the ``Payment.Status`` values. ``fee`` is ``None`` when
    the gateway does not report one and the configured fee schedule applies.
    """

    transaction_id: str
    status: str
    fee: Money | None = None


class PaymentGateway(ABC):
    """Interface every payment gateway adapter implements."""

    name: str = ""

    @abstractmethod
    def charge(self, amount: Money, method: str, reference: str) -> ChargeResult:
        """Charge ``amount`` using ``method``.

        ``reference`` identifies the attempt and doubles as the idempotency
        key, so a retried call never charges twice.

        Raises:
            GatewayError: ``transient=True`` for failures worth retrying.
        """
        ...

    @abstractmethod
    def refund(self, transaction_id: str, amount: Money | None = None) -> str:
        """Refund ``amount`` (everything when ``None``) and return the refund id.

        Raises:
            GatewayError: If the gateway rejects the refund.
        """
        ...


class StripeGateway(PaymentGateway):
    """Charges through Stripe PaymentIntents (``stripe.StripeClient``, v1 namespace).

    Args:
        secret_key: Overrides ``TRADECONNECT["stripe"]["secret_key"]``.

    Raises:
        ValueError: If no secret key is configured.
    """

    name = "stripe"

    def __init__(self, secret_key: str | None = None) -> None:
        config = get_config()
        key = secret_key or config.stripe.secret_key
        if not key:
            msg = "No Stripe secret key configured. Set TRADECONNECT['stripe']['secret_key']."
            raise ValueError(msg)
        self.currency = config.currency
        self.client = stripe.StripeClient(key, stripe_version=config.stripe.api_version)
        logger.info("Initialized StripeGateway with key %s", obfuscate_key(key))

    def charge(self, amount: Money, method: str, reference: str) -> ChargeResult:
        try:
            intent = self.client.v1.payment_intents.create(
                params={
                    "amount": to_minor_units(amount, self.currency),
                    "currency": self.currency.lower(),
                    "payment_method": method,
                    "confirm": True,
                    "metadata": {"reference": reference},
                    "description": f"Registration {reference}",
                },
                options={"idempotency_key": reference},
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise GatewayError(f"Stripe unavailable: {exc}", transient=True) from exc
        except stripe.StripeError as exc:
            raise GatewayError(f"Stripe rejected the charge: {exc}") from exc

        if intent.status == "succeeded":
            status = "completed"
        elif intent.status == "processing":
            status = "processing"
        else:
            msg = f"Stripe PaymentIntent {intent.id} ended in status '{intent.status}'"
            raise GatewayError(msg)
        return ChargeResult(transaction_id=intent.id, status=status)

    def refund(self, transaction_id: str, amount: Money | None = None) -> str:
        params: dict[str, object] = {"payment_intent": transaction_id, "reason": "requested_by_customer"}
        if amount is not None:
            params["amount"] = to_minor_units(amount, self.currency)
        try:
            refund = self.client.v1.refunds.create(params=params)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise GatewayError(f"Stripe unavailable: {exc}", transient=True) from exc
        except stripe.StripeError as exc:
            raise GatewayError(f"Stripe rejected the refund: {exc}") from exc
        return refund.id


class ManualGateway(PaymentGateway):
    """Records offline payments (bank deposit, cash) as completed immediately."""

    name = "manual"

    def charge(self, amount: Money, method: str, reference: str) -> ChargeResult:  # noqa: ARG002
        return ChargeResult(transaction_id=f"MAN-{get_random_string(12).upper()}", status="completed")

    def refund(self, transaction_id: str, amount: Money | None = None) -> str:  # noqa: ARG002
        return f"MANREF-{get_random_string(12).upper()}"


def get_gateway(name: str) -> PaymentGateway:
    """Instantiate the gateway configured under ``name``.

    Raises:
        ValueError: If no gateway class is configured for ``name``.
    """
    dotted_path = get_config().payment.gateway_classes.get(name)
    if not dotted_path:
        msg = f"No payment gateway configured for '{name}'"
        raise ValueError(msg)
    return import_string(dotted_path)()
