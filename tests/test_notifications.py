"""Tests for tradeconnect.notifications."""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.test import override_settings

from tradeconnect.events.models import Event
from tradeconnect.notifications import dispatch, registration_context, registration_recipient
from tradeconnect.registration.models import Payment
from tradeconnect.registration.services.reservation import ReservationService

User = get_user_model()

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


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
def draft(event, user):
    return ReservationService.reserve(event, user, first_name="Ana", last_name="Lopez", now=NOW)


@pytest.mark.django_db
class TestStatusNotifications:
    def test_pending_payment_sends_reservation_created(self, draft, mailoutbox, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            ReservationService.mark_pending_payment(draft, now=NOW)

        assert len(mailoutbox) == 1
        message = mailoutbox[0]
        assert message.subject == f"Your reservation {draft.registration_code} is waiting for payment"
        assert message.to == ["ana@example.gt"]
        assert message.from_email == "no-reply@tradeconnect.gt"
        assert "Ana Lopez" in message.body
        assert "Export Summit" in message.body

    def test_expiry_sends_reservation_expired(self, draft, mailoutbox, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            ReservationService.expire(draft, now=NOW)

        assert [message.subject for message in mailoutbox] == [
            f"Your reservation {draft.registration_code} has expired"
        ]

    def test_paid_status_sends_nothing(self, draft, mailoutbox, django_capture_on_commit_callbacks):
        registration = ReservationService.mark_pending_payment(draft, now=NOW)
        payment = Payment.objects.create(
            transaction_id="TXN-1",
            registration=registration,
            status=Payment.Status.COMPLETED,
            amount=registration.final_price,
        )

        with django_capture_on_commit_callbacks(execute=True):
            ReservationService.confirm_payment(registration, payment, now=NOW)

        assert mailoutbox == []

    def test_nothing_is_sent_before_commit(self, draft, mailoutbox, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            ReservationService.mark_pending_payment(draft, now=NOW)

        assert len(callbacks) == 1
        assert mailoutbox == []

    def test_disabled_notifications(self, draft, mailoutbox, django_capture_on_commit_callbacks):
        with override_settings(TRADECONNECT={"notifications": {"enabled": False}}):
            with django_capture_on_commit_callbacks(execute=True):
                ReservationService.mark_pending_payment(draft, now=NOW)

        assert mailoutbox == []


@pytest.mark.django_db
class TestDispatch:
    def test_delivery_failure_is_logged(self, draft, mailoutbox, django_capture_on_commit_callbacks, caplog):
        with (
            patch("tradeconnect.notifications.send_mail", side_effect=ConnectionRefusedError("smtp down")),
            caplog.at_level(logging.ERROR, logger="tradeconnect.notifications"),
            django_capture_on_commit_callbacks(execute=True),
        ):
            dispatch("payment_failed", "ana@example.gt", registration_context(draft))

        assert mailoutbox == []
        assert "Failed to send 'payment_failed' notification to ana@example.gt" in caplog.text

    def test_empty_recipient_is_skipped(self, draft, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks() as callbacks:
            dispatch("payment_failed", "", registration_context(draft))

        assert callbacks == []

    def test_recipient_falls_back_to_user_email(self, draft):
        assert registration_recipient(draft) == "ana@example.gt"

        draft.email = "billing@cafe.gt"
        assert registration_recipient(draft) == "billing@cafe.gt"

    def test_context(self, draft):
        context = registration_context(draft)

        assert context["registration_code"] == draft.registration_code
        assert context["name"] == "Ana Lopez"
        assert context["final_price"] == "Q500.00"
