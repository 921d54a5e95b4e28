"""Reservation lifecycle service.

Owns every status change of a :class:`Registration`. Transitions lock the
registration row, are checked against ``Registration.TRANSITIONS`` and
announce themselves through ``registration_status_changed`` once saved.

Expiry is checked two ways with the same predicate: lazily, whenever a
reservation is about to move forward, and eagerly, by the periodic sweep in
:meth:`ReservationService.expire_stale_reservations`.
"""

import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, models, transaction
from django.utils import timezone

from tradeconnect.errors import InvalidTransition, ReservationExpired
from tradeconnect.events.models import Event
from tradeconnect.pricing.engine import price_line
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import LineContext
from tradeconnect.promotions import ledger
from tradeconnect.promotions.models import PromoCodeUsage
from tradeconnect.promotions.stores import DjangoPricingStore, PricingStore, user_profile
from tradeconnect.registration.models import Cart, ParticipantType, Payment, Registration
from tradeconnect.registration.services.capacity import has_capacity
from tradeconnect.registration.signals import registration_status_changed, reservation_expiring
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)

_store: PricingStore = DjangoPricingStore()

_RELEASING_STATUSES = (Registration.Status.EXPIRADO, Registration.Status.CANCELADO)

_CODE_ATTEMPTS = 5


def is_reservation_expired(registration: Registration, now: datetime | None = None) -> bool:
    """Return whether a held reservation has run out of time.

    Only registrations that still hold a reservation can expire; paid ones
    never do.
    """
    if not registration.holds_reservation or registration.reservation_expires_at is None:
        return False
    now = now or timezone.now()
    return now >= registration.reservation_expires_at


def _generate_registration_code(now: datetime) -> str:
    """Return a code like ``INS-20250301-K7Q2M`` using the configured prefix."""
    config = get_config()
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(chars) for _ in range(5))
    return f"{config.registration_code_prefix}-{now:%Y%m%d}-{suffix}"


def _lock(registration: Registration) -> Registration:
    return Registration.objects.select_for_update().select_related("event", "user").get(pk=registration.pk)


def _transition(
    registration: Registration,
    target: str,
    *,
    now: datetime,
    update_fields: tuple[str, ...] = (),
) -> Registration:
    """Move a locked registration to ``target`` and announce the change.

    Raises:
        InvalidTransition: If ``target`` is not reachable from the current
            status.
    """
    previous = registration.status
    if not registration.can_transition_to(target):
        raise InvalidTransition(previous, target)

    registration.status = target
    registration.save(update_fields=["status", *update_fields, "updated_at"])
    logger.info("Registration %s: %s -> %s", registration.registration_code, previous, target)

    if target in _RELEASING_STATUSES:
        _release_promo_claim(registration, now=now)

    registration_status_changed.send(
        sender=Registration,
        registration=registration,
        previous_status=previous,
        status=target,
    )
    return registration


def _release_promo_claim(registration: Registration, *, now: datetime) -> None:
    """Give back the promo code use once no registration of the checkout needs it."""
    if registration.promo_code_usage_id is None:
        return
    still_held = (
        Registration.objects.filter(promo_code_usage_id=registration.promo_code_usage_id)
        .exclude(pk=registration.pk)
        .exclude(status__in=_RELEASING_STATUSES)
        .exists()
    )
    if still_held:
        return
    usage = PromoCodeUsage.objects.get(pk=registration.promo_code_usage_id)
    ledger.release(usage, now=now)


class ReservationService:
    """Stateless service for registration status changes."""

    @staticmethod
    @transaction.atomic
    def reserve(
        event: Event,
        user: object,
        *,
        quantity: int = 1,
        participant_type: str = ParticipantType.INDIVIDUAL,
        first_name: str = "",
        last_name: str = "",
        email: str = "",
        company_name: str = "",
        nit: str = "",
        cui: str | None = None,
        unit_price: Decimal | None = None,
        discount_amount: Decimal | None = None,
        applied_discounts: list[str] | None = None,
        group_registration_id: uuid.UUID | None = None,
        promo_code_usage: PromoCodeUsage | None = None,
        now: datetime | None = None,
    ) -> Registration:
        """Hold ``quantity`` seats of ``event`` as a BORRADOR registration.

        When ``discount_amount`` is not supplied the price is computed from
        the event's automatic discount tiers.

        Args:
            event: The event to reserve.
            user: The registering user.
            quantity: Seats to hold.
            unit_price: Unit price snapshot; defaults to ``event.base_price``.
            discount_amount: Discount for the whole line, already resolved.
            applied_discounts: Rule ids behind ``discount_amount``.
            group_registration_id: Shared id for registrations created by one
                checkout.
            promo_code_usage: The promo claim this registration benefits from.
            now: Evaluation time; defaults to now.

        Returns:
            The new registration with ``reservation_expires_at`` set.

        Raises:
            ValidationError: If the event is not on sale, has no room left, or
                the email already holds a registration for it.
            IntegrityError: If the row cannot be stored, or no free registration
                code turned up after a few attempts.
        """
        now = now or timezone.now()
        config = get_config()

        if not event.is_purchasable:
            raise ValidationError(f"Event '{event.title}' is not available for registration.")
        if event.start_date <= now:
            raise ValidationError(f"Event '{event.title}' has already started.")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1.")
        if not has_capacity(event, quantity, now=now):
            raise ValidationError(f"Event '{event.title}' does not have {quantity} seat(s) left.")
        if email:
            _reject_duplicate(event, email, group_registration_id=group_registration_id)

        unit = Money.parse(unit_price if unit_price is not None else event.base_price)
        subtotal = unit.multiply(quantity)
        if discount_amount is None:
            priced = price_line(
                LineContext(
                    item_id=0,
                    event=event.to_pricing(),
                    quantity=quantity,
                    unit_price=unit,
                    now=now,
                    user=user_profile(user),
                ),
                _store.event_rules([event.pk])[event.pk],
            )
            discount = priced.discount
            applied_discounts = priced.rule_ids
        else:
            discount = Money.parse(discount_amount)

        fields = {
            "event": event,
            "user": user,
            "status": Registration.Status.BORRADOR,
            "participant_type": participant_type,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "company_name": company_name,
            "nit": nit,
            "cui": cui,
            "quantity": quantity,
            "base_price": unit.amount,
            "discount_amount": discount.amount,
            "final_price": subtotal.subtract(discount).amount,
            "applied_discounts": applied_discounts or [],
            "reservation_expires_at": now + timedelta(minutes=config.reservation_expiry_minutes),
            "group_registration_id": group_registration_id,
            "promo_code_usage": promo_code_usage,
        }
        for attempt in range(1, _CODE_ATTEMPTS + 1):
            code = _generate_registration_code(now)
            try:
                with transaction.atomic():
                    registration = Registration.objects.create(registration_code=code, **fields)
                break
            except IntegrityError:
                if attempt == _CODE_ATTEMPTS or not Registration.objects.filter(registration_code=code).exists():
                    raise
                logger.warning("Registration code %s already taken; generating another", code)

        logger.info(
            "Reserved %d seat(s) of event %s as %s until %s",
            quantity,
            event.pk,
            registration.registration_code,
            registration.reservation_expires_at,
        )
        return registration

    @staticmethod
    def mark_pending_payment(registration: Registration, *, now: datetime | None = None) -> Registration:
        """Move a draft to PENDIENTE_PAGO.

        Raises:
            ReservationExpired: If the hold has run out; the registration is
                saved as EXPIRADO first.
            InvalidTransition: If it is not a draft.
        """
        return _advance(registration, Registration.Status.PENDIENTE_PAGO, now=now)

    @staticmethod
    def confirm_payment(registration: Registration, payment: Payment, *, now: datetime | None = None) -> Registration:
        """Record a completed payment: PENDIENTE_PAGO to PAGADO.

        Expiry is re-checked here; a reservation that ran out while the
        customer was paying is expired rather than confirmed.

        Raises:
            ValidationError: If ``payment`` is not a completed payment of this
                registration.
            ReservationExpired: If the hold ran out before confirmation.
            InvalidTransition: If the registration is not pending payment.
        """
        if payment.registration_id != registration.pk:
            raise ValidationError("Payment does not belong to this registration.")
        if payment.status != Payment.Status.COMPLETED:
            raise ValidationError("Only completed payments can confirm a registration.")
        return _advance(registration, Registration.Status.PAGADO, now=now)

    @staticmethod
    @transaction.atomic
    def mark_confirmed(
        registration: Registration,
        authorization_number: str,
        *,
        now: datetime | None = None,
    ) -> Registration:
        """PAGADO to CONFIRMADO once the FEL invoice is certified."""
        now = now or timezone.now()
        registration = _lock(registration)
        registration.fel_authorization_number = authorization_number
        return _transition(
            registration,
            Registration.Status.CONFIRMADO,
            now=now,
            update_fields=("fel_authorization_number",),
        )

    @staticmethod
    @transaction.atomic
    def expire(registration: Registration, *, now: datetime | None = None) -> Registration:
        now = now or timezone.now()
        return _transition(_lock(registration), Registration.Status.EXPIRADO, now=now)

    @staticmethod
    @transaction.atomic
    def cancel(registration: Registration, *, now: datetime | None = None) -> Registration:
        now = now or timezone.now()
        return _transition(_lock(registration), Registration.Status.CANCELADO, now=now)

    @staticmethod
    @transaction.atomic
    def mark_refunded(registration: Registration, *, now: datetime | None = None) -> Registration:
        now = now or timezone.now()
        return _transition(_lock(registration), Registration.Status.REEMBOLSADO, now=now)

    @staticmethod
    def expire_stale_reservations(*, now: datetime | None = None, dry_run: bool = False) -> int:
        """Expire every held reservation whose window has elapsed.

        Each registration is expired in its own transaction, and the
        predicate is re-checked under the row lock so a reservation paid in
        the meantime is left alone.

        Returns:
            How many registrations were (or, with ``dry_run``, would be)
            expired.
        """
        now = now or timezone.now()
        stale = Registration.objects.filter(
            status__in=Registration.HOLDING_STATUSES,
            reservation_expires_at__lte=now,
        )
        if dry_run:
            return stale.count()

        expired = 0
        for pk in stale.values_list("pk", flat=True):
            with transaction.atomic():
                registration = Registration.objects.select_for_update().select_related("event", "user").get(pk=pk)
                if not is_reservation_expired(registration, now):
                    continue
                _transition(registration, Registration.Status.EXPIRADO, now=now)
                expired += 1
        if expired:
            logger.info("Expired %d stale reservation(s)", expired)
        return expired

    @staticmethod
    def mark_abandoned_carts(*, now: datetime | None = None, dry_run: bool = False) -> int:
        """Flag open carts idle past the abandonment window; expire overdue ones.

        Returns:
            How many carts were (or would be) flagged abandoned.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(minutes=get_config().cart_abandonment_minutes)
        idle = Cart.objects.filter(status=Cart.Status.OPEN, is_abandoned=False).filter(
            models.Q(last_activity__lte=cutoff) | models.Q(expires_at__lte=now)
        )
        if dry_run:
            return idle.count()

        with transaction.atomic():
            abandoned = idle.update(is_abandoned=True, abandoned_at=now)
            Cart.objects.filter(status=Cart.Status.OPEN, expires_at__lte=now).update(status=Cart.Status.EXPIRED)
        if abandoned:
            logger.info("Marked %d cart(s) abandoned", abandoned)
        return abandoned

    @staticmethod
    def send_expiry_reminders(*, now: datetime | None = None, dry_run: bool = False) -> int:
        """Warn holders whose reservation lapses within the reminder window.

        Each registration is reminded at most once.

        Returns:
            How many reminders were (or would be) sent.
        """
        now = now or timezone.now()
        window_end = now + timedelta(minutes=get_config().reservation_reminder_minutes)
        due = Registration.objects.filter(
            status__in=Registration.HOLDING_STATUSES,
            expiry_reminder_sent_at__isnull=True,
            reservation_expires_at__gt=now,
            reservation_expires_at__lte=window_end,
        )
        if dry_run:
            return due.count()

        sent = 0
        for registration in due.select_related("event", "user"):
            with transaction.atomic():
                marked = Registration.objects.filter(
                    pk=registration.pk,
                    expiry_reminder_sent_at__isnull=True,
                ).update(expiry_reminder_sent_at=now)
                if marked != 1:
                    continue
                reservation_expiring.send(sender=Registration, registration=registration)
                sent += 1
        return sent


def _advance(registration: Registration, target: str, *, now: datetime | None) -> Registration:
    """Move a held reservation forward, expiring it instead if its time is up.

    The expiry is committed before :class:`ReservationExpired` is raised, so
    the caller sees EXPIRADO in the database even though the call failed.
    """
    now = now or timezone.now()
    with transaction.atomic():
        registration = _lock(registration)
        expired = is_reservation_expired(registration, now)
        if expired:
            _transition(registration, Registration.Status.EXPIRADO, now=now)
        else:
            _transition(registration, target, now=now)
    if expired:
        raise ReservationExpired(registration.registration_code)
    return registration


def _reject_duplicate(event: Event, email: str, *, group_registration_id: uuid.UUID | None) -> None:
    """Refuse a second live registration for the same email and event."""
    live = Registration.objects.filter(event=event, email__iexact=email).exclude(
        status__in=[*_RELEASING_STATUSES, Registration.Status.REEMBOLSADO]
    )
    if group_registration_id is not None:
        live = live.exclude(group_registration_id=group_registration_id)
    if live.exists():
        raise ValidationError(f"'{email}' is already registered for '{event.title}'.")
