"""Tests for promo code bulk generation and volume tier validation."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from tradeconnect.events.models import Event
from tradeconnect.promotions.codes import PromoCodeBatch, generate_promo_codes, validate_volume_tiers
from tradeconnect.promotions.models import PromoCode, Promotion, VolumeDiscount

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


@pytest.fixture
def event():
    return Event.objects.create(
        title="Agro Expo",
        slug="agro-expo",
        base_price=Decimal("250.00"),
        start_date=NOW + timedelta(days=30),
    )


def _batch(**overrides):
    params = {
        "prefix": "expo-",
        "count": 5,
        "discount_type": PromoCode.DiscountType.PERCENTAGE,
        "discount_value": Decimal("15.00"),
    }
    params.update(overrides)
    return PromoCodeBatch(**params)


@pytest.mark.django_db
class TestGeneratePromoCodes:
    def test_creates_unique_prefixed_codes(self):
        codes = generate_promo_codes(_batch())

        assert len(codes) == 5
        assert len({code.code for code in codes}) == 5
        assert all(code.code.startswith("EXPO-") for code in codes)
        assert all(len(code.code) == len("EXPO-") + 8 for code in codes)
        assert PromoCode.objects.count() == 5

    def test_codes_share_the_batch_configuration(self):
        promotion = Promotion.objects.create(name="Expo")

        codes = generate_promo_codes(
            _batch(
                count=2,
                discount_type=PromoCode.DiscountType.BUY_X_GET_Y,
                discount_value=Decimal("0"),
                buy_quantity=3,
                free_quantity=1,
                max_uses_total=None,
                promotion=promotion,
            )
        )

        for code in codes:
            assert code.discount_type == PromoCode.DiscountType.BUY_X_GET_Y
            assert (code.buy_quantity, code.free_quantity) == (3, 1)
            assert code.max_uses_total is None
            assert code.promotion == promotion

    def test_existing_codes_are_avoided(self):
        PromoCode.objects.create(code="EXPO-AAAAAAAA", discount_value=Decimal("5.00"))

        codes = generate_promo_codes(_batch(count=3))

        assert "EXPO-AAAAAAAA" not in {code.code for code in codes}
        assert PromoCode.objects.count() == 4

    @pytest.mark.parametrize("count", [0, 501])
    def test_count_out_of_range(self, count):
        with pytest.raises(ValueError, match="count must be between 1 and 500"):
            generate_promo_codes(_batch(count=count))


@pytest.mark.django_db
class TestValidateVolumeTiers:
    def test_disjoint_tiers_pass(self, event):
        VolumeDiscount.objects.create(event=event, min_quantity=3, max_quantity=5, discount_percentage=Decimal("10"))
        VolumeDiscount.objects.create(event=event, min_quantity=6, max_quantity=None, discount_percentage=Decimal("20"))

        validate_volume_tiers(event)

    def test_overlapping_tiers_fail(self, event):
        VolumeDiscount.objects.create(event=event, min_quantity=3, max_quantity=6, discount_percentage=Decimal("10"))
        VolumeDiscount.objects.create(event=event, min_quantity=5, max_quantity=None, discount_percentage=Decimal("20"))

        with pytest.raises(ValidationError, match="overlap"):
            validate_volume_tiers(event)

    def test_unbounded_tier_overlaps_later_tier(self, event):
        VolumeDiscount.objects.create(event=event, min_quantity=3, discount_percentage=Decimal("10"))
        VolumeDiscount.objects.create(event=event, min_quantity=10, discount_percentage=Decimal("20"))

        with pytest.raises(ValidationError):
            validate_volume_tiers(event)

    def test_inactive_tiers_are_ignored_by_default(self, event):
        VolumeDiscount.objects.create(event=event, min_quantity=3, discount_percentage=Decimal("10"), is_active=False)
        VolumeDiscount.objects.create(event=event, min_quantity=10, discount_percentage=Decimal("20"))

        validate_volume_tiers(event)
        with pytest.raises(ValidationError):
            validate_volume_tiers(event, include_inactive=True)
