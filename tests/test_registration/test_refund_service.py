"""Tests for tradeconnect.registration.services.refund."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError

from tradeconnect.errors import GatewayError
from tradeconnect.events.models import Event
from tradeconnect.pricing.money import Money
from tradeconnect.registration.gateways import PaymentGateway
from tradeconnect.registration.models import Payment, Refund, Registration
from tradeconnect.registration.services.refund import RefundService
from tradeconnect.registration.services.reservation import ReservationService

User = get_user_model()

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


class RecordingGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, *, error=None):
        self.error = error
        self.calls = []

    def charge(self, amount, method, reference):
        raise NotImplementedError

    def refund(self, transaction_id, amount=None):
        self.calls.append((transaction_id, amount))
        if self.error is not None:
            raise self.error
        return f"re_{len(self.calls)}"


@pytest.fixture
def user():
    return User.objects.create_user(username="ana", email="ana@example.gt", password="pw")


@pytest.fixture
def event():
    return Event.objects.create(
        title="Export Summit",
        slug="export-summit",
        base_price=Decimal("500.00"),
        start_date=NOW + timedelta(days=60),
    )


@pytest.fixture
def paid(event, user):
    registration = ReservationService.reserve(event, user, now=NOW)
    registration = ReservationService.mark_pending_payment(registration, now=NOW)
    payment = Payment.objects.create(
        transaction_id="TXN-PAID",
        registration=registration,
        gateway=Payment.Gateway.STRIPE,
        gateway_transaction_id="pi_123",
        status=Payment.Status.COMPLETED,
        amount=Decimal("500.00"),
    )
    return ReservationService.confirm_payment(registration, payment, now=NOW)


@pytest.mark.django_db
class TestRefund:
    def test_full_refund(self, paid):
        gateway = RecordingGateway()

        refund = RefundService.refund(paid, reason="Cannot attend", gateway=gateway)

        assert refund.amount == Decimal("500.00")
        assert refund.status == Refund.Status.COMPLETED
        assert refund.gateway_refund_id == "re_1"
        assert gateway.calls == [("pi_123", None)]
        assert Payment.objects.get().status == Payment.Status.REFUNDED
        paid.refresh_from_db()
        assert paid.status == Registration.Status.REEMBOLSADO

    def test_partial_refunds_until_fully_refunded(self, paid):
        gateway = RecordingGateway()

        RefundService.refund(paid, Decimal("200.00"), gateway=gateway)
        payment = Payment.objects.get()
        assert payment.status == Payment.Status.PARTIALLY_REFUNDED
        assert payment.refundable_amount == Decimal("300.00")
        paid.refresh_from_db()
        assert paid.status == Registration.Status.PAGADO

        RefundService.refund(paid, gateway=gateway)

        assert gateway.calls == [("pi_123", Money.parse("200.00")), ("pi_123", Money.parse("300.00"))]
        assert Payment.objects.get().status == Payment.Status.REFUNDED
        paid.refresh_from_db()
        assert paid.status == Registration.Status.REEMBOLSADO

    def test_confirmed_registration_can_be_refunded(self, paid):
        ReservationService.mark_confirmed(paid, "AUTH-1", now=NOW)

        RefundService.refund(paid, gateway=RecordingGateway())

        paid.refresh_from_db()
        assert paid.status == Registration.Status.REEMBOLSADO

    @pytest.mark.parametrize("amount", [Decimal("0.00"), Decimal("-5.00")])
    def test_amount_must_be_positive(self, paid, amount):
        with pytest.raises(ValidationError, match="greater than zero"):
            RefundService.refund(paid, amount, gateway=RecordingGateway())

    def test_amount_cannot_exceed_balance(self, paid):
        with pytest.raises(ValidationError, match="exceeds the refundable balance"):
            RefundService.refund(paid, Decimal("500.01"), gateway=RecordingGateway())

    def test_unpaid_registration(self, event, user):
        registration = ReservationService.reserve(event, user, now=NOW)

        with pytest.raises(ValidationError, match="Only paid registrations"):
            RefundService.refund(registration, gateway=RecordingGateway())

    def test_gateway_rejection_saves_nothing(self, paid):
        with pytest.raises(GatewayError):
            RefundService.refund(paid, gateway=RecordingGateway(error=GatewayError("charge disputed")))

        assert not Refund.objects.exists()
        assert Payment.objects.get().status == Payment.Status.COMPLETED
