"""Tests for the registration and promotions admin."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from django.utils import timezone

from tradeconnect.events.models import Event
from tradeconnect.promotions.models import PromoCode
from tradeconnect.registration.models import Payment, Refund, Registration

User = get_user_model()


@pytest.fixture
def event():
    return Event.objects.create(
        title="Export Summit",
        slug="export-summit",
        base_price=Decimal("500.00"),
        start_date=timezone.now() + timedelta(days=30),
    )


@pytest.fixture
def attendee():
    return User.objects.create_user(username="ana", email="ana@example.gt", password="pw")


def _registration(event, user, code, status):
    return Registration.objects.create(
        registration_code=code,
        event=event,
        user=user,
        status=status,
        base_price=event.base_price,
        final_price=event.base_price,
        reservation_expires_at=timezone.now() + timedelta(minutes=10),
    )


@pytest.mark.django_db
class TestChangelists:
    @pytest.mark.parametrize(
        "url_name",
        [
            "admin:tradeconnect_registration_cart_changelist",
            "admin:tradeconnect_registration_registration_changelist",
            "admin:tradeconnect_registration_payment_changelist",
            "admin:tradeconnect_registration_refund_changelist",
            "admin:tradeconnect_promotions_promocode_changelist",
            "admin:tradeconnect_promotions_promotion_changelist",
            "admin:tradeconnect_events_event_changelist",
        ],
    )
    def test_changelist_renders(self, admin_client, url_name):
        assert admin_client.get(reverse(url_name)).status_code == 200

    def test_registration_change_page(self, admin_client, event, attendee):
        registration = _registration(event, attendee, "INS-1", Registration.Status.PENDIENTE_PAGO)

        response = admin_client.get(
            reverse("admin:tradeconnect_registration_registration_change", args=[registration.pk])
        )

        assert response.status_code == 200

    def test_promo_code_counter_is_read_only(self, admin_client):
        code = PromoCode.objects.create(code="TEN", discount_value=Decimal("10.00"))

        response = admin_client.get(reverse("admin:tradeconnect_promotions_promocode_change", args=[code.pk]))

        assert response.status_code == 200
        assert b'name="current_uses_total"' not in response.content


@pytest.mark.django_db
class TestCancelAction:
    def test_cancels_eligible_registrations_and_warns_about_others(self, admin_client, event, attendee):
        pending = _registration(event, attendee, "INS-1", Registration.Status.PENDIENTE_PAGO)
        draft = _registration(event, attendee, "INS-2", Registration.Status.BORRADOR)

        response = admin_client.post(
            reverse("admin:tradeconnect_registration_registration_changelist"),
            {"action": "cancel_registrations", "_selected_action": [pending.pk, draft.pk]},
            follow=True,
        )

        pending.refresh_from_db()
        draft.refresh_from_db()
        assert pending.status == Registration.Status.CANCELADO
        assert draft.status == Registration.Status.BORRADOR
        messages = [str(message) for message in response.context["messages"]]
        assert "Cancelled 1 registration(s)." in messages
        assert any(message.startswith("INS-2: Cannot move registration") for message in messages)


@pytest.mark.django_db
class TestRefundAdmin:
    def test_refunds_cannot_be_added_or_edited(self, admin_client, event, attendee):
        registration = _registration(event, attendee, "INS-1", Registration.Status.PAGADO)
        payment = Payment.objects.create(transaction_id="TXN-1", registration=registration, amount=Decimal("500.00"))
        refund = Refund.objects.create(payment=payment, amount=Decimal("500.00"))

        assert admin_client.get(reverse("admin:tradeconnect_registration_refund_add")).status_code == 403
        response = admin_client.post(
            reverse("admin:tradeconnect_registration_refund_change", args=[refund.pk]),
            {"amount": "1.00"},
        )
        assert response.status_code == 403
        refund.refresh_from_db()
        assert refund.amount == Decimal("500.00")
