"""Pure pricing pass over a whole cart.

:func:`price_cart` runs the evaluators for every line, resolves conflicts
per line and sums the totals. It has no side effects; persisting the
result is the cart service's job.
"""

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from tradeconnect.pricing.evaluators import (
    EarlyBirdEvaluator,
    PromoCodeEvaluator,
    VolumeEvaluator,
    VolumeTierHint,
)
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.resolver import resolve
from tradeconnect.pricing.rules import (
    AppliedDiscount,
    DiscountSource,
    EarlyBirdTier,
    LineContext,
    UserProfile,
    VolumeTier,
)


@dataclass(frozen=True, slots=True)
class EventRules:
    """Automatic discount tiers configured for one event."""

    volume_tiers: tuple[VolumeTier, ...] = ()
    early_bird_tiers: tuple[EarlyBirdTier, ...] = ()


@dataclass(frozen=True, slots=True)
class LinePrice:
    item_id: int
    quantity: int
    unit_price: Money
    subtotal: Money
    discount: Money
    final_price: Money
    applied: tuple[AppliedDiscount, ...] = ()
    next_tier: VolumeTierHint | None = None

    @property
    def rule_ids(self) -> list[str]:
        return [discount.rule_id for discount in self.applied]

    @property
    def promo_discount(self) -> Money:
        return sum(
            (discount.amount for discount in self.applied if discount.source_type == DiscountSource.PROMO_CODE),
            Money.zero(),
        )


@dataclass(frozen=True, slots=True)
class CartPrice:
    lines: list[LinePrice] = field(default_factory=list)
    subtotal: Money = field(default_factory=Money.zero)
    discount: Money = field(default_factory=Money.zero)
    total: Money = field(default_factory=Money.zero)
    promo_discount: Money = field(default_factory=Money.zero)
    total_items: int = 0

    def line(self, item_id: int) -> LinePrice:
        return next(line for line in self.lines if line.item_id == item_id)


def with_cumulative_quantities(lines: Sequence[LineContext]) -> list[LineContext]:
    """Stamp every line with the cart-wide quantity of its event."""
    per_event = Counter()
    for line in lines:
        per_event[line.event.id] += line.quantity
    return [replace(line, cumulative_quantity=per_event[line.event.id]) for line in lines]


def price_line(
    context: LineContext,
    rules: EventRules,
    *,
    promo_result=None,
) -> LinePrice:
    """Price a single line from its automatic tiers plus an optional promo result."""
    volume = VolumeEvaluator(rules.volume_tiers)
    offers = [
        volume.evaluate(context),
        EarlyBirdEvaluator(rules.early_bird_tiers).evaluate(context),
        promo_result,
    ]
    subtotal = context.line_subtotal
    resolution = resolve(
        (offer for offer in offers if offer is not None),
        line_subtotal=subtotal,
        floor=context.floor,
    )
    return LinePrice(
        item_id=context.item_id,
        quantity=context.quantity,
        unit_price=context.unit_price,
        subtotal=subtotal,
        discount=resolution.total_discount,
        final_price=subtotal.subtract(resolution.total_discount),
        applied=resolution.applied,
        next_tier=volume.next_tier(context.tier_quantity, context.unit_price),
    )


def price_cart(
    lines: Sequence[LineContext],
    rules: Mapping[int, EventRules],
    *,
    now: datetime,
    promo: PromoCodeEvaluator | None = None,
    user: UserProfile | None = None,
) -> CartPrice:
    """Price every line of a cart.

    Args:
        lines: One context per cart item.
        rules: Automatic discount tiers keyed by event id.
        now: Evaluation time for date-based rules.
        promo: Evaluator for the cart's promo code, if one is applied.
        user: Profile of the cart owner, if known.

    Raises:
        PromoCodeIneligible: If ``promo`` no longer validates against the
            current lines.
    """
    contexts = with_cumulative_quantities(lines)
    promo_results = promo.evaluate_cart(contexts, now=now, user=user) if promo is not None and contexts else {}

    priced = [
        price_line(context, rules.get(context.event.id, EventRules()), promo_result=promo_results.get(context.item_id))
        for context in contexts
    ]
    subtotal = sum((line.subtotal for line in priced), Money.zero())
    discount = sum((line.discount for line in priced), Money.zero())
    return CartPrice(
        lines=priced,
        subtotal=subtotal,
        discount=discount,
        total=subtotal.subtract(discount),
        promo_discount=sum((line.promo_discount for line in priced), Money.zero()),
        total_items=sum(line.quantity for line in priced),
    )
