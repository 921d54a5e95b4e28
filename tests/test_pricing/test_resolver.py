"""Tests for promotion conflict resolution."""

import random
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tradeconnect.pricing.money import Money
from tradeconnect.pricing.resolver import resolve
from tradeconnect.pricing.rules import DiscountResult, DiscountSource

pytestmark = pytest.mark.unit


def _offer(rule_id, amount, *, source=DiscountSource.VOLUME, priority=0, stackable=True):
    return DiscountResult(
        amount=Money.parse(amount),
        rule_id=rule_id,
        source_type=source,
        priority=priority,
        is_stackable=stackable,
    )


class TestStacking:
    def test_stackable_discounts_are_summed(self):
        resolution = resolve(
            [_offer("volume:1", "100.00"), _offer("early_bird:1", "50.00", source=DiscountSource.EARLY_BIRD)],
            line_subtotal=Money.parse("1000.00"),
            floor=Money.zero(),
        )

        assert resolution.total_discount == Money.parse("150.00")
        assert resolution.rule_ids == ["volume:1", "early_bird:1"]

    def test_non_stackable_excludes_everything_else(self):
        resolution = resolve(
            [
                _offer("early_bird:1", "50.00", source=DiscountSource.EARLY_BIRD, priority=1),
                _offer("promo_code:1", "100.00", source=DiscountSource.PROMO_CODE, priority=10, stackable=False),
            ],
            line_subtotal=Money.parse("500.00"),
            floor=Money.zero(),
        )

        assert resolution.rule_ids == ["promo_code:1"]
        assert resolution.total_discount == Money.parse("100.00")

    def test_best_non_stackable_wins_by_priority_then_amount(self):
        offers = [
            _offer("promo_code:1", "80.00", source=DiscountSource.PROMO_CODE, priority=5, stackable=False),
            _offer("promo_code:2", "90.00", source=DiscountSource.PROMO_CODE, priority=5, stackable=False),
            _offer("promo_code:3", "200.00", source=DiscountSource.PROMO_CODE, priority=1, stackable=False),
        ]

        resolution = resolve(offers, line_subtotal=Money.parse("500.00"), floor=Money.zero())

        assert resolution.rule_ids == ["promo_code:2"]

    def test_applied_order_is_highest_priority_first(self):
        resolution = resolve(
            [
                _offer("volume:1", "10.00", priority=1),
                _offer("early_bird:1", "10.00", source=DiscountSource.EARLY_BIRD, priority=3),
                _offer("promo_code:1", "10.00", source=DiscountSource.PROMO_CODE, priority=2),
            ],
            line_subtotal=Money.parse("500.00"),
            floor=Money.zero(),
        )

        assert resolution.rule_ids == ["early_bird:1", "promo_code:1", "volume:1"]

    def test_zero_discounts_are_ignored(self):
        resolution = resolve([_offer("volume:1", "0.00")], line_subtotal=Money.parse("10.00"), floor=Money.zero())

        assert resolution.total_discount == Money.zero()
        assert resolution.applied == ()


class TestFloor:
    def test_total_is_clamped_at_floor(self):
        resolution = resolve(
            [_offer("volume:1", "200.00", priority=2), _offer("early_bird:1", "150.00", source=DiscountSource.EARLY_BIRD)],
            line_subtotal=Money.parse("500.00"),
            floor=Money.parse("300.00"),
        )

        assert resolution.total_discount == Money.parse("200.00")
        # lowest priority discount is trimmed first, down to nothing
        assert resolution.rule_ids == ["volume:1"]

    def test_partial_trim_of_lowest_priority(self):
        resolution = resolve(
            [_offer("volume:1", "100.00", priority=2), _offer("early_bird:1", "150.00", source=DiscountSource.EARLY_BIRD)],
            line_subtotal=Money.parse("500.00"),
            floor=Money.parse("300.00"),
        )

        amounts = {discount.rule_id: discount.amount for discount in resolution.applied}
        assert amounts == {"volume:1": Money.parse("100.00"), "early_bird:1": Money.parse("100.00")}

    def test_subtotal_below_floor_gives_no_discount(self):
        resolution = resolve(
            [_offer("volume:1", "10.00")],
            line_subtotal=Money.parse("100.00"),
            floor=Money.parse("150.00"),
        )

        assert resolution.total_discount == Money.zero()


# -- Properties ----------------------------------------------------------------

_amounts = st.decimals(min_value=Decimal("0"), max_value=Decimal("5000"), places=2)
_offers = st.lists(
    st.builds(
        lambda idx, amount, source, priority, stackable: DiscountResult(
            amount=Money(amount),
            rule_id=f"{source}:{idx}",
            source_type=source,
            priority=priority,
            is_stackable=stackable,
        ),
        st.integers(min_value=1, max_value=1000),
        _amounts,
        st.sampled_from(list(DiscountSource)),
        st.integers(min_value=0, max_value=10),
        st.booleans(),
    ),
    max_size=6,
    unique_by=lambda offer: offer.rule_id,
)


@given(offers=_offers, subtotal=_amounts, floor=_amounts)
def test_final_price_never_below_floor_or_zero(offers, subtotal, floor):
    line_subtotal, floor_price = Money(subtotal), Money(floor)

    resolution = resolve(offers, line_subtotal=line_subtotal, floor=floor_price)

    final = line_subtotal.delta(resolution.total_discount)
    assert not final.is_negative
    assert not resolution.total_discount.is_negative
    if line_subtotal >= floor_price:
        assert final >= floor_price
    else:
        assert resolution.total_discount.is_zero


@given(offers=_offers, subtotal=_amounts, floor=_amounts, seed=st.integers())
def test_result_does_not_depend_on_input_order(offers, subtotal, floor, seed):
    shuffled = list(offers)
    random.Random(seed).shuffle(shuffled)

    first = resolve(offers, line_subtotal=Money(subtotal), floor=Money(floor))
    second = resolve(shuffled, line_subtotal=Money(subtotal), floor=Money(floor))

    assert first == second


@given(offers=_offers, subtotal=_amounts)
def test_at_most_one_discount_when_any_is_non_stackable(offers, subtotal):
    resolution = resolve(offers, line_subtotal=Money(subtotal), floor=Money.zero())

    if any(not offer.is_stackable and not offer.amount.is_zero for offer in offers):
        assert len(resolution.applied) <= 1
