"""Tests for event capacity in tradeconnect.registration.services.capacity."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.db import transaction

from tradeconnect.events.models import Event
from tradeconnect.registration.models import Registration
from tradeconnect.registration.services.capacity import get_remaining_seats, get_taken_seats, has_capacity

User = get_user_model()

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


@pytest.fixture
def user():
    return User.objects.create_user(username="ana", password="pw")


@pytest.fixture
def event():
    return Event.objects.create(
        title="Export Summit",
        slug="export-summit",
        base_price=Decimal("500.00"),
        start_date=NOW + timedelta(days=60),
        capacity=10,
    )


def _registration(event, user, status, *, quantity=1, expires_at=None):
    count = Registration.objects.count()
    return Registration.objects.create(
        registration_code=f"INS-20260301-{count:05d}",
        event=event,
        user=user,
        status=status,
        quantity=quantity,
        base_price=event.base_price,
        final_price=event.base_price * quantity,
        reservation_expires_at=expires_at,
    )


@pytest.mark.django_db
class TestTakenSeats:
    def test_counts_sold_and_live_holds(self, event, user):
        _registration(event, user, Registration.Status.PAGADO, quantity=2)
        _registration(event, user, Registration.Status.CONFIRMADO, quantity=1)
        _registration(event, user, Registration.Status.BORRADOR, quantity=3, expires_at=NOW + timedelta(minutes=5))
        _registration(event, user, Registration.Status.PENDIENTE_PAGO, expires_at=NOW + timedelta(minutes=5))

        assert get_taken_seats(event, now=NOW) == 7

    def test_ignores_elapsed_holds_and_closed_registrations(self, event, user):
        _registration(event, user, Registration.Status.BORRADOR, quantity=3, expires_at=NOW)
        _registration(event, user, Registration.Status.EXPIRADO, quantity=2)
        _registration(event, user, Registration.Status.CANCELADO, quantity=2)
        _registration(event, user, Registration.Status.REEMBOLSADO, quantity=2)

        assert get_taken_seats(event, now=NOW) == 0

    def test_remaining_seats(self, event, user):
        _registration(event, user, Registration.Status.PAGADO, quantity=4)

        assert get_remaining_seats(event, now=NOW) == 6

    def test_unlimited_event(self, event, user):
        Event.objects.filter(pk=event.pk).update(capacity=0)
        event.refresh_from_db()

        assert get_remaining_seats(event, now=NOW) is None


@pytest.mark.django_db
class TestHasCapacity:
    def test_fits(self, event, user):
        _registration(event, user, Registration.Status.PAGADO, quantity=8)

        with transaction.atomic():
            assert has_capacity(event, 2, now=NOW)
            assert not has_capacity(event, 3, now=NOW)

    def test_reads_capacity_from_the_locked_row(self, event):
        stale = Event.objects.get(pk=event.pk)
        Event.objects.filter(pk=event.pk).update(capacity=1)

        with transaction.atomic():
            assert stale.capacity == 10
            assert not has_capacity(stale, 2, now=NOW)

    def test_unlimited_event(self, event, user):
        Event.objects.filter(pk=event.pk).update(capacity=0)
        _registration(event, user, Registration.Status.PAGADO, quantity=500)

        with transaction.atomic():
            assert has_capacity(event, 100, now=NOW)
