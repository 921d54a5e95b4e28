"""Checkout service: carts become reservations, reservations get paid.

:meth:`CheckoutService.checkout_cart` converts an open cart into one
PENDIENTE_PAGO registration per line and claims the promo code once for the
whole checkout. :meth:`CheckoutService.pay` charges a reservation, confirms
it and certifies the FEL invoice.
"""

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string

from tradeconnect.errors import FelError, GatewayError, InvalidTransition, ReservationExpired
from tradeconnect.notifications import dispatch, registration_context, registration_recipient
from tradeconnect.pricing.money import Money
from tradeconnect.promotions import ledger
from tradeconnect.registration.fel import FelCertifier, HttpFelCertifier, build_invoice
from tradeconnect.registration.gateways import PaymentGateway, get_gateway
from tradeconnect.registration.models import Cart, Payment, Refund, Registration
from tradeconnect.registration.retry import call_with_retry
from tradeconnect.registration.services.cart import CartService, price_items
from tradeconnect.registration.services.payment import compute_fee, validate_amount
from tradeconnect.registration.services.reservation import ReservationService, is_reservation_expired
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)


def _generate_transaction_id() -> str:
    return f"TXN-{get_random_string(16).upper()}"


class CheckoutService:
    """Stateless service for checkout and payment."""

    @staticmethod
    @transaction.atomic
    def checkout_cart(
        cart: Cart,
        *,
        first_name: str = "",
        last_name: str = "",
        email: str = "",
        company_name: str = "",
        nit: str = "",
        cui: str | None = None,
        now: datetime | None = None,
    ) -> list[Registration]:
        """Turn an open cart into reservations awaiting payment.

        The cart is re-priced first; an attached promo code that no longer
        validates fails the checkout rather than being dropped silently.
        Participant details stored on a line override the billing details
        passed here.

        Returns:
            The new registrations, all in PENDIENTE_PAGO and sharing one
            ``group_registration_id``.

        Raises:
            ValidationError: If the cart is not open, expired, empty, has no
                owner, or an event has no room left.
            PromoCodeIneligible: If the attached promo code fails validation.
            ConcurrentClaimConflict: If the last use of the code was claimed
                by a concurrent checkout.
        """
        now = now or timezone.now()
        cart = Cart.objects.select_for_update().select_related("promo_code", "user").get(pk=cart.pk)

        if cart.status != Cart.Status.OPEN:
            raise ValidationError("Only open carts can be checked out.")
        if cart.expires_at <= now:
            raise ValidationError("Cart has expired.")
        if cart.user is None:
            raise ValidationError("Sign in before checking out.")

        items = list(cart.items.select_related("event").order_by("pk"))
        if not items:
            raise ValidationError("Cannot check out an empty cart.")

        price_items(cart, items, cart.promo_code, now)
        price = CartService.recalculate(cart, now=now)

        usage = None
        if cart.promo_code is not None and not price.promo_discount.is_zero:
            usage = ledger.claim(
                cart.promo_code,
                cart.user,
                cart=cart,
                discount_amount=price.promo_discount.amount,
                original_amount=price.subtotal.amount,
                now=now,
            )

        group_id = uuid.uuid4()
        registrations = []
        for item in items:
            line = price.line(item.pk)
            details = item.participant_data or {}
            registration = ReservationService.reserve(
                item.event,
                cart.user,
                quantity=item.quantity,
                participant_type=item.participant_type,
                first_name=details.get("first_name", first_name),
                last_name=details.get("last_name", last_name),
                email=details.get("email", email),
                company_name=details.get("company_name", company_name),
                nit=details.get("nit", nit),
                cui=details.get("cui", cui),
                unit_price=item.base_price,
                discount_amount=line.discount.amount,
                applied_discounts=line.rule_ids,
                group_registration_id=group_id,
                promo_code_usage=usage if not line.promo_discount.is_zero else None,
                now=now,
            )
            registrations.append(ReservationService.mark_pending_payment(registration, now=now))

        cart.status = Cart.Status.CHECKED_OUT
        cart.save(update_fields=["status", "updated_at"])
        logger.info("Cart %s checked out into group %s (%d registration(s))", cart.pk, group_id, len(registrations))
        return registrations

    @staticmethod
    def pay(
        registration: Registration,
        method: str,
        *,
        gateway_name: str = Payment.Gateway.STRIPE,
        gateway: PaymentGateway | None = None,
        certifier: FelCertifier | None = None,
        now: datetime | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Registration:
        """Charge a reservation and carry it through to CONFIRMADO.

        Transient gateway and certifier failures are retried with
        exponential backoff. A reservation that runs out while the charge is
        in flight is refunded and expired.

        Args:
            registration: A PENDIENTE_PAGO registration.
            method: Gateway payment method reference (e.g. a Stripe
                PaymentMethod id).
            gateway_name: Configured gateway to use when ``gateway`` is not
                given.
            gateway: Gateway instance, mainly for tests.
            certifier: FEL certifier; defaults to :class:`HttpFelCertifier`.
            now: Fixed evaluation time for the expiry checks. When omitted the
                clock is read before the charge and again once it settles.
            sleep: Backoff sleep, injectable for tests.

        Returns:
            The registration: CONFIRMADO, or still PENDIENTE_PAGO when the
            gateway is processing the charge asynchronously.

        Raises:
            ReservationExpired: If the hold ran out before or during payment.
            InvalidTransition: If the registration is not pending payment.
            GatewayError: If the charge failed; the payment is recorded as
                failed and the registration keeps its hold.
            FelError: If certification failed; the registration stays PAGADO.
        """
        started_at = now or timezone.now()
        config = get_config()
        registration = Registration.objects.select_related("event", "user").get(pk=registration.pk)

        if registration.status != Registration.Status.PENDIENTE_PAGO:
            raise InvalidTransition(registration.status, Registration.Status.PAGADO)
        if is_reservation_expired(registration, started_at):
            ReservationService.expire(registration, now=started_at)
            raise ReservationExpired(registration.registration_code)

        amount = Money.parse(registration.final_price)
        if amount.is_zero:
            payment = Payment.objects.create(
                transaction_id=_generate_transaction_id(),
                registration=registration,
                gateway=Payment.Gateway.MANUAL,
                status=Payment.Status.COMPLETED,
                amount=amount.amount,
                currency=config.currency,
                confirmed_at=started_at,
            )
            return CheckoutService.complete_payment(payment, certifier=certifier, now=started_at, sleep=sleep)

        gateway = gateway or get_gateway(gateway_name)
        name = gateway.name or gateway_name
        validate_amount(name, amount)

        payment = Payment.objects.create(
            transaction_id=_generate_transaction_id(),
            registration=registration,
            gateway=name,
            status=Payment.Status.PROCESSING,
            amount=amount.amount,
            currency=config.currency,
            expires_at=registration.reservation_expires_at,
        )

        def _record_retry(attempt: int, error: Exception) -> None:  # noqa: ARG001
            payment.retry_count = attempt
            payment.last_retry_at = timezone.now()
            payment.save(update_fields=["retry_count", "last_retry_at", "updated_at"])

        try:
            result = call_with_retry(
                lambda: gateway.charge(amount, method, payment.transaction_id),
                max_retries=config.payment.max_retries,
                base_delay=config.payment.retry_backoff_seconds,
                retry_on=(GatewayError,),
                on_retry=_record_retry,
                sleep=sleep,
            )
        except GatewayError as exc:
            payment.status = Payment.Status.FAILED
            payment.failure_reason = str(exc)
            payment.save(update_fields=["status", "failure_reason", "updated_at"])
            logger.warning("Payment %s for %s failed: %s", payment.transaction_id, registration.registration_code, exc)
            dispatch("payment_failed", registration_recipient(registration), registration_context(registration))
            raise

        payment.gateway_transaction_id = result.transaction_id
        payment.fee = (result.fee or compute_fee(name, amount)).amount
        if result.status != Payment.Status.COMPLETED:
            payment.save(update_fields=["gateway_transaction_id", "fee", "updated_at"])
            logger.info("Payment %s is processing at %s", payment.transaction_id, name)
            return registration

        # The hold may have lapsed while the charge was in flight.
        settled_at = now or timezone.now()
        payment.status = Payment.Status.COMPLETED
        payment.confirmed_at = settled_at
        payment.save(update_fields=["gateway_transaction_id", "fee", "status", "confirmed_at", "updated_at"])
        return CheckoutService.complete_payment(
            payment, gateway=gateway, certifier=certifier, now=settled_at, sleep=sleep
        )

    @staticmethod
    def complete_payment(
        payment: Payment,
        *,
        gateway: PaymentGateway | None = None,
        certifier: FelCertifier | None = None,
        now: datetime | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Registration:
        """Confirm a completed payment and certify the registration.

        Also the entry point for gateways that settle asynchronously: mark the
        payment completed, then call this.

        Raises:
            ReservationExpired: If the hold ran out; the charge is refunded.
        """
        now = now or timezone.now()
        try:
            registration = ReservationService.confirm_payment(payment.registration, payment, now=now)
        except ReservationExpired:
            _refund_expired_charge(payment, gateway)
            raise
        return CheckoutService.certify(registration, certifier=certifier, sleep=sleep)

    @staticmethod
    def certify(
        registration: Registration,
        *,
        certifier: FelCertifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Registration:
        """Certify the FEL invoice of a paid registration: PAGADO to CONFIRMADO.

        Safe to call again for a registration left in PAGADO by a failed
        certification.
        """
        config = get_config()
        if registration.status != Registration.Status.PAGADO:
            raise InvalidTransition(registration.status, Registration.Status.CONFIRMADO)

        certifier = certifier or HttpFelCertifier()
        invoice = build_invoice(registration)
        try:
            certification = call_with_retry(
                lambda: certifier.certify(invoice),
                max_retries=config.payment.max_retries,
                base_delay=config.payment.retry_backoff_seconds,
                retry_on=(FelError,),
                sleep=sleep,
            )
        except FelError:
            logger.error("FEL certification failed for %s; registration stays paid", registration.registration_code)
            raise
        return ReservationService.mark_confirmed(registration, certification.authorization_number)


def _refund_expired_charge(payment: Payment, gateway: PaymentGateway | None) -> None:
    """Give the money back for a charge that landed after the hold expired."""
    payment.refresh_from_db()
    if payment.amount <= 0:
        return
    refund = Refund.objects.create(
        payment=payment,
        amount=payment.amount,
        reason="Reservation expired before the payment was confirmed.",
    )
    gateway = gateway or get_gateway(payment.gateway)
    try:
        refund.gateway_refund_id = gateway.refund(payment.gateway_transaction_id)
    except GatewayError:
        refund.status = Refund.Status.FAILED
        refund.save(update_fields=["status"])
        logger.exception("Automatic refund of payment %s failed", payment.transaction_id)
        return

    refund.status = Refund.Status.COMPLETED
    refund.save(update_fields=["gateway_refund_id", "status"])
    payment.status = Payment.Status.REFUNDED
    payment.save(update_fields=["status", "updated_at"])
    logger.warning("Refunded payment %s: reservation expired before confirmation", payment.transaction_id)
