"""Pricing rule stores (repository pattern).

Stores read discount configuration from persistence and hand back the
frozen structs in :mod:`tradeconnect.pricing.rules`. Services depend on the
:class:`PricingStore` interface, so the pricing pass never sees a model.

Every read states whether inactive rows are included through an explicit
``include_inactive`` argument; nothing is filtered implicitly.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable

from django.db.models import Q

from tradeconnect.errors import ErrorCode, PromoCodeIneligible
from tradeconnect.pricing.engine import EventRules
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import (
    BuyXGetYTerms,
    DiscountTerms,
    EarlyBirdTier,
    FixedAmountTerms,
    PercentageTerms,
    PromoCodeRule,
    PromotionPolicy,
    PromotionType,
    SpecialPriceTerms,
    UserProfile,
    VolumeTier,
)
from tradeconnect.promotions.models import (
    EarlyBirdDiscount,
    PromoCode,
    PromoCodeUserUsage,
    Promotion,
    VolumeDiscount,
)


class PricingStore(ABC):
    """Interface for loading pricing rules."""

    @abstractmethod
    def event_rules(self, event_ids: Iterable[int], *, include_inactive: bool = False) -> dict[int, EventRules]:
        """Return volume and early-bird tiers keyed by event id."""
        ...

    @abstractmethod
    def get_promo_code(self, code: str) -> PromoCode:
        """Return the promo code row for ``code`` (case-insensitive)."""
        ...

    @abstractmethod
    def promo_code_rule(self, promo_code: PromoCode) -> PromoCodeRule:
        """Convert a promo code row into its pricing rule."""
        ...

    @abstractmethod
    def prior_uses(self, promo_code: PromoCode, user: object | None) -> int:
        """Return how many times ``user`` has claimed ``promo_code``."""
        ...


def _money_or_none(value: object) -> Money | None:
    return Money.parse(value) if value is not None else None


def discount_terms(promo_code: PromoCode) -> DiscountTerms:
    """Build the tagged terms variant for a promo code's discount type."""
    value = Money.parse(promo_code.discount_value)
    kind = promo_code.discount_type
    if kind == PromoCode.DiscountType.PERCENTAGE:
        return PercentageTerms(
            percentage=promo_code.discount_value,
            max_discount=_money_or_none(promo_code.max_discount_amount),
        )
    if kind == PromoCode.DiscountType.FIXED_AMOUNT:
        return FixedAmountTerms(amount=value)
    if kind == PromoCode.DiscountType.SPECIAL_PRICE:
        return SpecialPriceTerms(price=value)
    if kind == PromoCode.DiscountType.BUY_X_GET_Y:
        return BuyXGetYTerms(buy_quantity=promo_code.buy_quantity or 0, free_quantity=promo_code.free_quantity or 0)
    msg = f"Unknown discount type {kind!r} on promo code {promo_code.code}"
    raise ValueError(msg)


def promotion_policy(promotion: Promotion) -> PromotionPolicy:
    return PromotionPolicy(
        id=promotion.pk,
        type=PromotionType(promotion.type),
        is_stackable=promotion.is_stackable,
        priority=promotion.priority,
        event_ids=frozenset(promotion.events.values_list("pk", flat=True)),
        category_ids=frozenset(promotion.categories.values_list("pk", flat=True)),
        user_types=frozenset(promotion.user_types or ()),
        min_purchase_amount=_money_or_none(promotion.min_purchase_amount),
        start_date=promotion.start_date,
        end_date=promotion.end_date,
        is_active=promotion.is_active,
    )


def user_profile(user: object | None) -> UserProfile | None:
    """Return the pricing profile of ``user``; group names act as user types."""
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return UserProfile(id=user.pk, user_types=frozenset(user.groups.values_list("name", flat=True)))


class DjangoPricingStore(PricingStore):
    """Django ORM implementation of the pricing store."""

    def event_rules(self, event_ids: Iterable[int], *, include_inactive: bool = False) -> dict[int, EventRules]:
        ids = set(event_ids)
        volume_qs = VolumeDiscount.objects.filter(event_id__in=ids)
        early_qs = EarlyBirdDiscount.objects.filter(event_id__in=ids)
        if not include_inactive:
            volume_qs = volume_qs.filter(is_active=True)
            early_qs = early_qs.filter(is_active=True)

        volume: dict[int, list[VolumeTier]] = defaultdict(list)
        for row in volume_qs.order_by("pk"):
            volume[row.event_id].append(
                VolumeTier(
                    id=row.pk,
                    min_quantity=row.min_quantity,
                    max_quantity=row.max_quantity,
                    discount_percentage=row.discount_percentage,
                    priority=row.priority,
                    is_active=row.is_active,
                )
            )

        early: dict[int, list[EarlyBirdTier]] = defaultdict(list)
        for row in early_qs.order_by("pk"):
            early[row.event_id].append(
                EarlyBirdTier(
                    id=row.pk,
                    days_before_event=row.days_before_event,
                    discount_percentage=row.discount_percentage,
                    priority=row.priority,
                    auto_apply=row.auto_apply,
                    is_active=row.is_active,
                )
            )

        return {
            event_id: EventRules(volume_tiers=tuple(volume[event_id]), early_bird_tiers=tuple(early[event_id]))
            for event_id in ids
        }

    def get_promo_code(self, code: str) -> PromoCode:
        """Look a code up case-insensitively.

        Raises:
            PromoCodeIneligible: With ``PROMO_CODE_NOT_FOUND`` if no row matches.
        """
        normalized = (code or "").strip()
        promo_code = (
            PromoCode.objects.select_related("promotion")
            .filter(Q(code=normalized.upper()) | Q(code__iexact=normalized))
            .first()
        )
        if promo_code is None:
            raise PromoCodeIneligible(ErrorCode.PROMO_CODE_NOT_FOUND, f"Promo code '{normalized}' not found.")
        return promo_code

    def promo_code_rule(self, promo_code: PromoCode) -> PromoCodeRule:
        promotion = promo_code.promotion
        return PromoCodeRule(
            id=promo_code.pk,
            code=promo_code.code,
            terms=discount_terms(promo_code),
            max_uses_per_user=promo_code.max_uses_per_user,
            current_uses_total=promo_code.current_uses_total,
            max_uses_total=promo_code.max_uses_total,
            min_purchase_amount=_money_or_none(promo_code.min_purchase_amount),
            is_stackable=promo_code.is_stackable,
            promotion=promotion_policy(promotion) if promotion is not None else None,
            start_date=promo_code.start_date,
            end_date=promo_code.end_date,
            is_active=promo_code.is_active,
        )

    def prior_uses(self, promo_code: PromoCode, user: object | None) -> int:
        if user is None or getattr(user, "pk", None) is None:
            return 0
        usage = PromoCodeUserUsage.objects.filter(promo_code=promo_code, user=user).first()
        return usage.uses if usage is not None else 0
