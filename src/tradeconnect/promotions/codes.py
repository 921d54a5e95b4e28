"""Promo code bulk generation and discount tier validation.

Provides functions for generating batches of unique, cryptographically
random promo codes within a single database transaction, and for checking
that an event's volume tiers do not overlap.
"""

import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction

from tradeconnect.promotions.models import PromoCode, Promotion, VolumeDiscount

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 8
_MAX_COUNT = 500


@dataclass
class PromoCodeBatch:
    """Parameters shared by every code of a bulk generation request.

    Attributes:
        prefix: Fixed string prepended to each generated code.
        count: Number of codes to generate (1-500).
        discount_type: One of the ``PromoCode.DiscountType`` values.
        discount_value: Percentage, fixed amount, or special price.
        max_uses_total: Uses allowed per code; ``None`` for unlimited.
        max_uses_per_user: Uses allowed per user per code.
        promotion: Optional parent promotion.
    """

    prefix: str
    count: int
    discount_type: str
    discount_value: Decimal
    max_uses_total: int | None = 1
    max_uses_per_user: int = 1
    buy_quantity: int | None = None
    free_quantity: int | None = None
    max_discount_amount: Decimal | None = None
    min_purchase_amount: Decimal | None = None
    is_stackable: bool = True
    promotion: Promotion | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def _generate_unique_code(prefix: str, existing_codes: set[str]) -> str:
    """Generate one code that does not collide with ``existing_codes``.

    Raises:
        RuntimeError: If no unique code is found after 100 attempts.
    """
    for _ in range(100):
        random_part = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))
        code = f"{prefix}{random_part}"
        if code not in existing_codes:
            return code
    msg = f"Failed to generate a unique promo code with prefix '{prefix}' after 100 attempts"
    raise RuntimeError(msg)


def generate_promo_codes(batch: PromoCodeBatch) -> list[PromoCode]:
    """Create ``batch.count`` promo codes sharing one configuration.

    All rows are inserted with a single ``bulk_create`` inside a transaction.

    Raises:
        ValueError: If ``batch.count`` is outside 1-500.
        RuntimeError: If unique code generation fails after retries.
        IntegrityError: If a code collides at the database level despite the
            in-memory uniqueness check.
    """
    if batch.count < 1 or batch.count > _MAX_COUNT:
        msg = f"count must be between 1 and {_MAX_COUNT}, got {batch.count}"
        raise ValueError(msg)

    prefix = batch.prefix.strip().upper()
    qs = PromoCode.objects.all()
    if prefix:
        qs = qs.filter(code__startswith=prefix)
    existing_codes: set[str] = set(qs.values_list("code", flat=True))

    to_create: list[PromoCode] = []
    for _ in range(batch.count):
        code = _generate_unique_code(prefix, existing_codes)
        existing_codes.add(code)
        to_create.append(
            PromoCode(
                code=code,
                discount_type=batch.discount_type,
                discount_value=batch.discount_value,
                buy_quantity=batch.buy_quantity,
                free_quantity=batch.free_quantity,
                max_uses_total=batch.max_uses_total,
                max_uses_per_user=batch.max_uses_per_user,
                max_discount_amount=batch.max_discount_amount,
                min_purchase_amount=batch.min_purchase_amount,
                is_stackable=batch.is_stackable,
                promotion=batch.promotion,
                start_date=batch.start_date,
                end_date=batch.end_date,
            )
        )

    with transaction.atomic():
        return PromoCode.objects.bulk_create(to_create)


def validate_volume_tiers(event: object, *, include_inactive: bool = False) -> None:
    """Raise ``ValidationError`` when two volume tiers of ``event`` overlap.

    Tiers are compared pairwise after sorting by ``min_quantity``; an
    unbounded tier overlaps everything after it.
    """
    qs = VolumeDiscount.objects.filter(event=event)
    if not include_inactive:
        qs = qs.filter(is_active=True)
    tiers = list(qs.order_by("min_quantity", "pk"))

    for lower, upper in zip(tiers, tiers[1:], strict=False):
        if lower.max_quantity is None or lower.max_quantity >= upper.min_quantity:
            raise ValidationError(
                f"Volume tiers overlap: {lower.min_quantity}-{lower.max_quantity or '+'} "
                f"and {upper.min_quantity}-{upper.max_quantity or '+'}."
            )
