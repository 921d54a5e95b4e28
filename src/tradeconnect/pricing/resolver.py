"""Promotion conflict resolution for a single line.

Given every discount that applies to one cart line, decide which of them
actually apply and how much each contributes:

1. If any discount is non-stackable, only the best non-stackable one is
   kept (highest priority, then largest amount, then source, then rule id).
2. Otherwise all stackable discounts are summed.
3. The total is clamped so the line never drops below its floor price,
   trimming the lowest-priority discounts first.

The output does not depend on the order the discounts were produced in.
"""

from collections.abc import Iterable

from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import AppliedDiscount, DiscountResult, DiscountSource, Resolution

_SOURCE_RANK = {
    DiscountSource.PROMO_CODE: 0,
    DiscountSource.VOLUME: 1,
    DiscountSource.EARLY_BIRD: 2,
}


def _precedence(result: DiscountResult) -> tuple:
    """Sort key: earlier means the discount wins or is trimmed last."""
    return (-result.priority, -result.amount.amount, _SOURCE_RANK[result.source_type], result.rule_id)


def resolve(results: Iterable[DiscountResult], *, line_subtotal: Money, floor: Money) -> Resolution:
    """Combine the discounts applicable to one line.

    Args:
        results: Discounts offered by the evaluators for this line.
        line_subtotal: Undiscounted ``unit price * quantity``.
        floor: Lowest total the line may reach (``min_price * quantity``).

    Returns:
        A :class:`Resolution` whose applied discounts are ordered highest
        priority first. Discounts trimmed to zero by the floor are dropped.
    """
    candidates = sorted((result for result in results if not result.amount.is_zero), key=_precedence)
    if not candidates:
        return Resolution(total_discount=Money.zero())

    exclusive = [result for result in candidates if not result.is_stackable]
    chosen = exclusive[:1] if exclusive else candidates

    # Discount headroom above the floor; never negative even if the
    # subtotal itself already sits below it.
    headroom = line_subtotal.subtract(floor)
    requested = sum((result.amount for result in chosen), Money.zero())
    excess = requested.subtract(headroom)

    granted = {result.rule_id: result.amount for result in chosen}
    for result in reversed(chosen):
        if excess.is_zero:
            break
        cut = Money.min(excess, granted[result.rule_id])
        granted[result.rule_id] = granted[result.rule_id].subtract(cut)
        excess = excess.subtract(cut)

    applied = tuple(
        AppliedDiscount(
            rule_id=result.rule_id,
            source_type=result.source_type,
            amount=granted[result.rule_id],
            priority=result.priority,
        )
        for result in chosen
        if not granted[result.rule_id].is_zero
    )
    total = sum((discount.amount for discount in applied), Money.zero())
    return Resolution(total_discount=total, applied=applied)
