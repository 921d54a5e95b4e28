"""Refund service for paid registrations.

Refunds go back through the gateway that took the payment. A refund that
covers the whole payment moves the registration to REEMBOLSADO; a partial
one only marks the payment partially refunded. Promo code claims are not
given back on refund.
"""

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from tradeconnect.pricing.money import Money
from tradeconnect.registration.gateways import PaymentGateway, get_gateway
from tradeconnect.registration.models import Payment, Refund, Registration
from tradeconnect.registration.services.reservation import ReservationService

logger = logging.getLogger(__name__)


class RefundService:
    """Stateless service for refunds."""

    @staticmethod
    @transaction.atomic
    def refund(
        registration: Registration,
        amount: Decimal | None = None,
        *,
        reason: str = "",
        gateway: PaymentGateway | None = None,
    ) -> Refund:
        """Refund all or part of a registration's payment.

        Args:
            registration: A PAGADO or CONFIRMADO registration.
            amount: Amount to refund; the whole refundable balance when
                ``None``.
            reason: Free-text reason kept on the refund row.
            gateway: Gateway instance; defaults to the one that took the
                payment.

        Returns:
            The completed Refund.

        Raises:
            ValidationError: If the registration is not paid, has no
                completed payment, or the amount is not positive or exceeds
                the refundable balance.
            GatewayError: If the gateway rejects the refund; nothing is saved.
        """
        registration = Registration.objects.select_for_update().select_related("event", "user").get(pk=registration.pk)
        if registration.status not in (Registration.Status.PAGADO, Registration.Status.CONFIRMADO):
            raise ValidationError(
                f"Only paid registrations can be refunded. This one is '{registration.get_status_display()}'."
            )

        payment = (
            registration.payments.select_for_update()
            .filter(status__in=[Payment.Status.COMPLETED, Payment.Status.PARTIALLY_REFUNDED])
            .first()
        )
        if payment is None:
            raise ValidationError("No completed payment found for this registration.")

        refundable = payment.refundable_amount
        refund_amount = Money.parse(refundable if amount is None else amount)
        if refund_amount.is_zero or refund_amount.is_negative:
            raise ValidationError("Refund amount must be greater than zero.")
        if refund_amount.amount > refundable:
            raise ValidationError(f"Refund amount {refund_amount} exceeds the refundable balance of {refundable}.")

        is_full = refund_amount.amount == refundable
        gateway = gateway or get_gateway(payment.gateway)
        gateway_amount = None if is_full and refundable == payment.amount else refund_amount
        gateway_refund_id = gateway.refund(payment.gateway_transaction_id, gateway_amount)

        refund = Refund.objects.create(
            payment=payment,
            amount=refund_amount.amount,
            reason=reason,
            gateway_refund_id=gateway_refund_id,
            status=Refund.Status.COMPLETED,
        )

        payment.status = Payment.Status.REFUNDED if is_full else Payment.Status.PARTIALLY_REFUNDED
        payment.save(update_fields=["status", "updated_at"])
        if is_full:
            ReservationService.mark_refunded(registration, now=timezone.now())

        logger.info(
            "Refund of %s issued for %s (payment status: %s)",
            refund_amount,
            registration.registration_code,
            payment.status,
        )
        return refund
