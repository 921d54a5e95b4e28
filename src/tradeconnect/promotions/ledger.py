"""Promo code usage ledger.

Claims and releases of promo code usage. The global and per-user counters
are only ever changed here, and only through conditional ``UPDATE``
statements whose affected-row count decides the outcome. There is never a
read-then-write window in which two checkouts could both pass a limit check.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.db import models, transaction
from django.utils import timezone

from tradeconnect.errors import ConcurrentClaimConflict, ErrorCode, PromoCodeIneligible
from tradeconnect.promotions.models import PromoCode, PromoCodeUsage, PromoCodeUserUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Claimed:
    usage: PromoCodeUsage


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: ErrorCode
    message: str = ""


ClaimOutcome = Claimed | Rejected


class _ClaimLost(Exception):
    """Internal signal to roll the claim savepoint back."""

    def __init__(self, reason: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def _claimable(promo_code_id: int, now: datetime) -> models.QuerySet:
    return (
        PromoCode.objects.filter(pk=promo_code_id, is_active=True)
        .filter(models.Q(start_date__isnull=True) | models.Q(start_date__lte=now))
        .filter(models.Q(end_date__isnull=True) | models.Q(end_date__gte=now))
        .filter(
            models.Q(max_uses_total__isnull=True) | models.Q(current_uses_total__lt=models.F("max_uses_total")),
        )
    )


def _global_rejection(promo_code_id: int, now: datetime) -> _ClaimLost:
    """Explain why the conditional usage update on a promo code matched no row.

    The code is re-read after the update lost, so a limit that was free a
    moment ago and is now taken reports as a concurrent claim.
    """
    code = PromoCode.objects.get(pk=promo_code_id)
    if not code.is_active:
        return _ClaimLost(ErrorCode.PROMO_CODE_INACTIVE, f"Promo code '{code.code}' is not active.")
    if code.start_date is not None and code.start_date > now:
        return _ClaimLost(ErrorCode.PROMO_CODE_NOT_STARTED, f"Promo code '{code.code}' is not valid yet.")
    if code.end_date is not None and code.end_date < now:
        return _ClaimLost(ErrorCode.PROMO_CODE_EXPIRED, f"Promo code '{code.code}' has expired.")
    return _ClaimLost(ErrorCode.CONCURRENT_CLAIM_CONFLICT, f"Promo code '{code.code}' is no longer available.")


def try_claim(
    promo_code: PromoCode,
    user: object | None,
    *,
    cart: object | None = None,
    discount_amount: Decimal = Decimal("0.00"),
    original_amount: Decimal = Decimal("0.00"),
    now: datetime | None = None,
) -> ClaimOutcome:
    """Atomically claim one use of ``promo_code`` for ``user``.

    Both counters are bumped inside one savepoint. If either conditional
    update affects no row the savepoint is rolled back, so a rejected claim
    leaves no trace.

    Args:
        promo_code: The code to claim.
        user: The claiming user, or ``None`` for a guest (no per-user limit).
        cart: Cart the claim originates from, kept for auditing.
        discount_amount: Discount granted by this claim.
        original_amount: Amount the discount was computed on.
        now: Evaluation time for the validity window; defaults to now.

    Returns:
        ``Claimed`` with the audit row, or ``Rejected`` with the reason:
        ``CONCURRENT_CLAIM_CONFLICT`` when the last use went to someone else,
        ``USER_LIMIT_REACHED`` for the per-user cap, or the inactive or
        validity window code.
    """
    now = now or timezone.now()
    user_id = getattr(user, "pk", None)
    try:
        with transaction.atomic():
            if _claimable(promo_code.pk, now).update(current_uses_total=models.F("current_uses_total") + 1) != 1:
                raise _global_rejection(promo_code.pk, now)

            if user_id is not None:
                counter, _ = PromoCodeUserUsage.objects.get_or_create(promo_code_id=promo_code.pk, user_id=user_id)
                bumped = PromoCodeUserUsage.objects.filter(
                    pk=counter.pk,
                    uses__lt=models.F("promo_code__max_uses_per_user"),
                ).update(uses=models.F("uses") + 1)
                if bumped != 1:
                    raise _ClaimLost(
                        ErrorCode.USER_LIMIT_REACHED,
                        f"You have already used promo code '{promo_code.code}' the maximum number of times.",
                    )

            usage = PromoCodeUsage.objects.create(
                promo_code_id=promo_code.pk,
                user_id=user_id,
                cart=cart,
                status=PromoCodeUsage.Status.APPLIED,
                discount_amount=discount_amount,
                original_amount=original_amount,
            )
    except _ClaimLost as exc:
        logger.warning("Claim of promo code %s by user %s rejected: %s", promo_code.code, user_id, exc.reason)
        return Rejected(reason=exc.reason, message=exc.message)

    logger.info("Promo code %s claimed by user %s (usage %s)", promo_code.code, user_id, usage.pk)
    return Claimed(usage=usage)


def claim(promo_code: PromoCode, user: object | None, **kwargs: object) -> PromoCodeUsage:
    """Like :func:`try_claim` but raise on rejection.

    Raises:
        ConcurrentClaimConflict: If the last use was claimed concurrently.
        PromoCodeIneligible: For any other rejection, with its reason.
    """
    outcome = try_claim(promo_code, user, **kwargs)
    if isinstance(outcome, Rejected):
        if outcome.reason == ErrorCode.CONCURRENT_CLAIM_CONFLICT:
            raise ConcurrentClaimConflict(promo_code.code)
        raise PromoCodeIneligible(outcome.reason, outcome.message)
    return outcome.usage


def release(usage: PromoCodeUsage, *, now: datetime | None = None) -> bool:
    """Give back the use recorded by ``usage``.

    Idempotent: only the call that flips the row from APPLIED to RELEASED
    decrements the counters.

    Returns:
        ``True`` if this call released the claim, ``False`` if it had already
        been released.
    """
    now = now or timezone.now()
    with transaction.atomic():
        flipped = PromoCodeUsage.objects.filter(
            pk=usage.pk,
            status=PromoCodeUsage.Status.APPLIED,
        ).update(status=PromoCodeUsage.Status.RELEASED, released_at=now)
        if flipped != 1:
            return False

        PromoCode.objects.filter(
            pk=usage.promo_code_id,
            current_uses_total__gt=0,
        ).update(current_uses_total=models.F("current_uses_total") - 1)
        if usage.user_id is not None:
            PromoCodeUserUsage.objects.filter(
                promo_code_id=usage.promo_code_id,
                user_id=usage.user_id,
                uses__gt=0,
            ).update(uses=models.F("uses") - 1)

    logger.info("Promo code usage %s released", usage.pk)
    return True
