"""Plain pricing data structures.

These frozen dataclasses are what the evaluators and the resolver operate
on. They are built from the Django models by
:mod:`tradeconnect.promotions.stores` and carry no persistence behaviour.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from tradeconnect.pricing.money import Money


class DiscountSource(enum.StrEnum):
    """Which evaluator family produced a discount."""

    VOLUME = "volume"
    EARLY_BIRD = "early_bird"
    PROMO_CODE = "promo_code"


class PromoDiscountType(enum.StrEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    BUY_X_GET_Y = "BUY_X_GET_Y"
    SPECIAL_PRICE = "SPECIAL_PRICE"


class PromotionType(enum.StrEnum):
    GENERAL = "GENERAL"
    EVENT_SPECIFIC = "EVENT_SPECIFIC"
    CATEGORY_SPECIFIC = "CATEGORY_SPECIFIC"
    MEMBERSHIP = "MEMBERSHIP"


@dataclass(frozen=True, slots=True)
class EventPricing:
    """Pricing-relevant snapshot of an event.

    Raises:
        ValueError: If the floor price exceeds the base price.
    """

    id: int
    base_price: Money
    min_price: Money
    start_date: datetime
    category_id: int | None = None

    def __post_init__(self) -> None:
        if self.min_price.compare(self.base_price) > 0:
            msg = f"Event {self.id} has a minimum price above its base price"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Who is buying; ``user_types`` holds membership labels such as group names."""

    id: int
    user_types: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class VolumeTier:
    """A quantity band of a volume discount; ``max_quantity=None`` is unbounded."""

    id: int
    min_quantity: int
    max_quantity: int | None
    discount_percentage: Decimal
    priority: int = 0
    is_active: bool = True

    def contains(self, quantity: int) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity


@dataclass(frozen=True, slots=True)
class EarlyBirdTier:
    id: int
    days_before_event: int
    discount_percentage: Decimal
    priority: int = 0
    auto_apply: bool = True
    is_active: bool = True

    def applies_on(self, event_start: datetime, now: datetime) -> bool:
        return (event_start - now).days >= self.days_before_event


@dataclass(frozen=True, slots=True)
class PromotionPolicy:
    """Eligibility and stacking policy shared by the promo codes of a promotion.

    Empty scoping sets mean "no restriction" for that dimension.
    """

    id: int
    type: PromotionType
    is_stackable: bool = True
    priority: int = 0
    event_ids: frozenset[int] = frozenset()
    category_ids: frozenset[int] = frozenset()
    user_types: frozenset[str] = frozenset()
    min_purchase_amount: Money | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True

    def is_current(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.start_date is not None and now < self.start_date:
            return False
        return not (self.end_date is not None and now > self.end_date)

    def covers_event(self, event: EventPricing) -> bool:
        if self.type == PromotionType.EVENT_SPECIFIC:
            return event.id in self.event_ids
        if self.type == PromotionType.CATEGORY_SPECIFIC:
            return event.category_id is not None and event.category_id in self.category_ids
        return True

    def covers_user(self, user: UserProfile | None) -> bool:
        if self.type != PromotionType.MEMBERSHIP or not self.user_types:
            return True
        return user is not None and bool(user.user_types & self.user_types)


# Promo code discount terms. One variant per discount type, each with the
# fields that type needs and nothing else.


@dataclass(frozen=True, slots=True)
class PercentageTerms:
    percentage: Decimal
    max_discount: Money | None = None


@dataclass(frozen=True, slots=True)
class FixedAmountTerms:
    amount: Money


@dataclass(frozen=True, slots=True)
class SpecialPriceTerms:
    """``price`` is the resulting special price, not the discount."""

    price: Money


@dataclass(frozen=True, slots=True)
class BuyXGetYTerms:
    """For every ``buy_quantity`` units bought, ``free_quantity`` units are free."""

    buy_quantity: int
    free_quantity: int

    def __post_init__(self) -> None:
        if self.buy_quantity < 1 or self.free_quantity < 1:
            msg = "BUY_X_GET_Y terms need positive buy and free quantities"
            raise ValueError(msg)


DiscountTerms = PercentageTerms | FixedAmountTerms | SpecialPriceTerms | BuyXGetYTerms


@dataclass(frozen=True, slots=True)
class PromoCodeRule:
    id: int
    code: str
    terms: DiscountTerms
    max_uses_per_user: int = 1
    current_uses_total: int = 0
    max_uses_total: int | None = None
    min_purchase_amount: Money | None = None
    is_stackable: bool = True
    promotion: PromotionPolicy | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True

    @property
    def discount_type(self) -> PromoDiscountType:
        if isinstance(self.terms, PercentageTerms):
            return PromoDiscountType.PERCENTAGE
        if isinstance(self.terms, FixedAmountTerms):
            return PromoDiscountType.FIXED_AMOUNT
        if isinstance(self.terms, SpecialPriceTerms):
            return PromoDiscountType.SPECIAL_PRICE
        return PromoDiscountType.BUY_X_GET_Y

    @property
    def stacks(self) -> bool:
        """A code stacks only if it and its parent promotion both allow it."""
        return self.is_stackable and (self.promotion is None or self.promotion.is_stackable)

    @property
    def priority(self) -> int:
        return self.promotion.priority if self.promotion is not None else 0


@dataclass(frozen=True, slots=True)
class LineContext:
    """Everything an evaluator may look at for one cart line or registration.

    ``cumulative_quantity`` is the quantity of this event across the whole
    cart and drives volume tier selection.
    """

    item_id: int
    event: EventPricing
    quantity: int
    unit_price: Money
    now: datetime
    cumulative_quantity: int = 0
    user: UserProfile | None = None

    @property
    def line_subtotal(self) -> Money:
        return self.unit_price.multiply(self.quantity)

    @property
    def floor(self) -> Money:
        return self.event.min_price.multiply(self.quantity)

    @property
    def tier_quantity(self) -> int:
        return max(self.cumulative_quantity, self.quantity)


@dataclass(frozen=True, slots=True)
class DiscountResult:
    amount: Money
    rule_id: str
    source_type: DiscountSource
    priority: int = 0
    is_stackable: bool = True
    description: str = ""


@dataclass(frozen=True, slots=True)
class AppliedDiscount:
    rule_id: str
    source_type: DiscountSource
    amount: Money
    priority: int = 0


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of conflict resolution for one line."""

    total_discount: Money
    applied: tuple[AppliedDiscount, ...] = field(default_factory=tuple)

    @property
    def rule_ids(self) -> list[str]:
        return [discount.rule_id for discount in self.applied]
