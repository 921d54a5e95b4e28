"""Event capacity checks for reservations.

A seat is taken by every registration that is paid or confirmed, and by
every held reservation whose window has not elapsed yet.
"""

from datetime import datetime

from django.db import models
from django.utils import timezone

from tradeconnect.events.models import Event
from tradeconnect.registration.models import Registration


def get_taken_seats(event: Event, *, now: datetime | None = None) -> int:
    """Return the seats held or sold for ``event``."""
    now = now or timezone.now()
    return (
        Registration.objects.filter(event=event)
        .filter(
            models.Q(status__in=[Registration.Status.PAGADO, Registration.Status.CONFIRMADO])
            | models.Q(status__in=Registration.HOLDING_STATUSES, reservation_expires_at__gt=now)
        )
        .aggregate(total=models.Sum("quantity"))["total"]
        or 0
    )


def get_remaining_seats(event: Event, *, now: datetime | None = None) -> int | None:
    """Return the seats still free, or ``None`` when the event is unlimited."""
    if event.capacity == 0:
        return None
    return event.capacity - get_taken_seats(event, now=now)


def has_capacity(event: Event, quantity: int = 1, *, now: datetime | None = None) -> bool:
    """Return whether ``quantity`` more seats fit in ``event``.

    Locks the event row with ``select_for_update()`` so concurrent
    reservations are checked one at a time. The caller **must** already be
    inside a ``transaction.atomic`` block.

    The unlimited check happens **after** the lock is acquired so that a
    stale in-memory instance cannot bypass enforcement.
    """
    locked = Event.objects.select_for_update().get(pk=event.pk)
    remaining = get_remaining_seats(locked, now=now)
    return remaining is None or remaining >= quantity
