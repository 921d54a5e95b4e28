"""Discount rule evaluators.

Each evaluator looks at one :class:`~tradeconnect.pricing.rules.LineContext`
and returns a :class:`~tradeconnect.pricing.rules.DiscountResult`, or
``None`` when it has nothing to offer. Evaluators never touch the database.

Promo codes are different from the automatic discounts in one respect: an
ineligible code is an error the shopper needs to hear about, so
:meth:`PromoCodeEvaluator.validate` raises :class:`PromoCodeIneligible`
with a specific reason instead of returning ``None``.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from tradeconnect.errors import ErrorCode, PromoCodeIneligible
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import (
    BuyXGetYTerms,
    DiscountResult,
    DiscountSource,
    EarlyBirdTier,
    FixedAmountTerms,
    LineContext,
    PercentageTerms,
    PromoCodeRule,
    SpecialPriceTerms,
    UserProfile,
    VolumeTier,
)


@dataclass(frozen=True, slots=True)
class VolumeTierHint:
    """What the shopper would gain by moving up to the next volume tier."""

    min_quantity: int
    discount_percentage: Decimal
    units_needed: int
    additional_savings: Money


def _best_tier(tiers):
    """Highest priority, then largest percentage, then lowest id."""
    return min(tiers, key=lambda tier: (-tier.priority, -tier.discount_percentage, tier.id))


class VolumeEvaluator:
    """Quantity-band discount for one event."""

    def __init__(self, tiers: Sequence[VolumeTier]) -> None:
        self.tiers = tuple(tier for tier in tiers if tier.is_active)

    def matching_tier(self, quantity: int) -> VolumeTier | None:
        matches = [tier for tier in self.tiers if tier.contains(quantity)]
        if not matches:
            return None
        return _best_tier(matches)

    def evaluate(self, context: LineContext) -> DiscountResult | None:
        tier = self.matching_tier(context.tier_quantity)
        if tier is None or tier.discount_percentage <= 0:
            return None
        return DiscountResult(
            amount=context.line_subtotal.percentage_of(tier.discount_percentage),
            rule_id=f"volume:{tier.id}",
            source_type=DiscountSource.VOLUME,
            priority=tier.priority,
            is_stackable=True,
            description=f"Volume discount {tier.discount_percentage}% ({tier.min_quantity}+ units)",
        )

    def next_tier(self, quantity: int, unit_price: Money) -> VolumeTierHint | None:
        """Return the smallest tier starting above ``quantity``, if any.

        The savings figure compares the next tier's discount at its own
        minimum quantity with the discount currently earned at ``quantity``.
        """
        upcoming = [tier for tier in self.tiers if tier.min_quantity > quantity]
        if not upcoming:
            return None
        target = min(upcoming, key=lambda tier: (tier.min_quantity, -tier.priority, -tier.discount_percentage, tier.id))

        current = self.matching_tier(quantity)
        current_discount = (
            unit_price.multiply(quantity).percentage_of(current.discount_percentage)
            if current is not None
            else Money.zero()
        )
        potential = unit_price.multiply(target.min_quantity).percentage_of(target.discount_percentage)
        return VolumeTierHint(
            min_quantity=target.min_quantity,
            discount_percentage=target.discount_percentage,
            units_needed=target.min_quantity - quantity,
            additional_savings=potential.subtract(current_discount),
        )


class EarlyBirdEvaluator:
    """Automatic discount for purchases made far enough ahead of the event."""

    def __init__(self, tiers: Sequence[EarlyBirdTier]) -> None:
        self.tiers = tuple(tier for tier in tiers if tier.is_active and tier.auto_apply)

    def evaluate(self, context: LineContext) -> DiscountResult | None:
        matches = [tier for tier in self.tiers if tier.applies_on(context.event.start_date, context.now)]
        if not matches:
            return None
        tier = _best_tier(matches)
        if tier.discount_percentage <= 0:
            return None
        return DiscountResult(
            amount=context.line_subtotal.percentage_of(tier.discount_percentage),
            rule_id=f"early_bird:{tier.id}",
            source_type=DiscountSource.EARLY_BIRD,
            priority=tier.priority,
            is_stackable=True,
            description=f"Early bird discount {tier.discount_percentage}% ({tier.days_before_event} days before)",
        )


class PromoCodeEvaluator:
    """Validates a promo code and spreads its discount over the eligible lines.

    Args:
        rule: The promo code being applied.
        prior_uses: How many times the current user has already claimed it.
    """

    def __init__(self, rule: PromoCodeRule, *, prior_uses: int = 0) -> None:
        self.rule = rule
        self.prior_uses = prior_uses

    def _reject(self, reason: ErrorCode, message: str) -> PromoCodeIneligible:
        return PromoCodeIneligible(reason, message)

    def eligible_lines(self, lines: Sequence[LineContext]) -> list[LineContext]:
        promotion = self.rule.promotion
        if promotion is None:
            return list(lines)
        return [line for line in lines if promotion.covers_event(line.event)]

    def validate(
        self,
        lines: Sequence[LineContext],
        *,
        now: datetime,
        user: UserProfile | None = None,
    ) -> list[LineContext]:
        """Check every eligibility rule and return the lines the code covers.

        Raises:
            PromoCodeIneligible: With the first failing reason.
        """
        rule = self.rule
        code = rule.code
        if not rule.is_active:
            raise self._reject(ErrorCode.PROMO_CODE_INACTIVE, f"Promo code '{code}' is not active.")
        if rule.start_date is not None and now < rule.start_date:
            raise self._reject(ErrorCode.PROMO_CODE_NOT_STARTED, f"Promo code '{code}' is not yet valid.")
        if rule.end_date is not None and now > rule.end_date:
            raise self._reject(ErrorCode.PROMO_CODE_EXPIRED, f"Promo code '{code}' has expired.")
        if rule.max_uses_total is not None and rule.current_uses_total >= rule.max_uses_total:
            raise self._reject(
                ErrorCode.USAGE_LIMIT_REACHED, f"Promo code '{code}' has reached its usage limit."
            )
        if self.prior_uses >= rule.max_uses_per_user:
            raise self._reject(
                ErrorCode.USER_LIMIT_REACHED, f"You have already used promo code '{code}' the maximum number of times."
            )

        promotion = rule.promotion
        if promotion is not None:
            if not promotion.is_current(now):
                raise self._reject(
                    ErrorCode.PROMOTION_NOT_APPLICABLE, f"The promotion behind '{code}' is not running."
                )
            if not promotion.covers_user(user):
                raise self._reject(
                    ErrorCode.PROMOTION_NOT_APPLICABLE, f"Promo code '{code}' is not available for your account."
                )

        subtotal = sum((line.line_subtotal for line in lines), Money.zero())
        for minimum in (rule.min_purchase_amount, promotion.min_purchase_amount if promotion else None):
            if minimum is not None and subtotal.compare(minimum) < 0:
                raise self._reject(
                    ErrorCode.BELOW_MINIMUM_PURCHASE,
                    f"Promo code '{code}' requires a minimum purchase of {minimum}.",
                )

        eligible = self.eligible_lines(lines)
        if not eligible:
            raise self._reject(
                ErrorCode.PROMOTION_NOT_APPLICABLE, f"Promo code '{code}' does not apply to any item in your cart."
            )
        return eligible

    def cart_amount(self, eligible: Sequence[LineContext]) -> Money:
        """Raw discount over the eligible subtotal, before allocation."""
        terms = self.rule.terms
        subtotal = sum((line.line_subtotal for line in eligible), Money.zero())
        if isinstance(terms, PercentageTerms):
            amount = subtotal.percentage_of(terms.percentage)
            if terms.max_discount is not None:
                amount = Money.min(amount, terms.max_discount)
            return amount
        if isinstance(terms, FixedAmountTerms):
            return Money.min(terms.amount, subtotal)
        if isinstance(terms, SpecialPriceTerms):
            return subtotal.subtract(terms.price)
        if isinstance(terms, BuyXGetYTerms):
            return sum((self._free_units_value(terms, line) for line in eligible), Money.zero())
        msg = f"Unsupported promo code terms: {type(terms).__name__}"
        raise TypeError(msg)

    def _free_units_value(self, terms: BuyXGetYTerms, line: LineContext) -> Money:
        free_units = min(line.quantity, (line.quantity // terms.buy_quantity) * terms.free_quantity)
        return line.unit_price.multiply(free_units)

    def allocate(self, eligible: Sequence[LineContext]) -> dict[int, Money]:
        """Split the code's discount across ``eligible`` by line.

        BUY_X_GET_Y is computed per line; every other type is a cart-level
        amount split proportionally to line subtotals.
        """
        terms = self.rule.terms
        if isinstance(terms, BuyXGetYTerms):
            return {line.item_id: self._free_units_value(terms, line) for line in eligible}
        shares = self.cart_amount(eligible).allocate([line.line_subtotal for line in eligible])
        return {line.item_id: share for line, share in zip(eligible, shares, strict=True)}

    def evaluate_cart(
        self,
        lines: Sequence[LineContext],
        *,
        now: datetime,
        user: UserProfile | None = None,
    ) -> dict[int, DiscountResult]:
        """Validate the code against ``lines`` and return a result per covered line."""
        eligible = self.validate(lines, now=now, user=user)
        results = {}
        for item_id, amount in self.allocate(eligible).items():
            if amount.is_zero:
                continue
            results[item_id] = DiscountResult(
                amount=amount,
                rule_id=f"promo_code:{self.rule.id}",
                source_type=DiscountSource.PROMO_CODE,
                priority=self.rule.priority,
                is_stackable=self.rule.stacks,
                description=f"Promo code {self.rule.code}",
            )
        return results

    def evaluate(self, context: LineContext) -> DiscountResult | None:
        """Evaluate the code for a single line, as for a standalone registration."""
        return self.evaluate_cart([context], now=context.now, user=context.user).get(context.item_id)
