"""Tests for promotion model validation and helpers."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import IntegrityError

from tradeconnect.events.models import Event
from tradeconnect.promotions.models import PromoCode, Promotion, VolumeDiscount

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


@pytest.fixture
def event():
    return Event.objects.create(
        title="Logistics Forum",
        slug="logistics-forum",
        base_price=Decimal("400.00"),
        start_date=NOW + timedelta(days=20),
    )


@pytest.mark.django_db
class TestPromoCode:
    def test_code_is_stored_upper_case(self):
        code = PromoCode.objects.create(code="  welcome10 ", discount_value=Decimal("10.00"))

        assert code.code == "WELCOME10"
        assert str(code) == "WELCOME10"

    def test_percentage_above_hundred_is_rejected(self):
        code = PromoCode(code="TOO-MUCH", discount_value=Decimal("150.00"))

        with pytest.raises(ValidationError) as exc_info:
            code.full_clean()
        assert "discount_value" in exc_info.value.message_dict

    def test_buy_x_get_y_requires_quantities(self):
        code = PromoCode(code="B2G1", discount_type=PromoCode.DiscountType.BUY_X_GET_Y, buy_quantity=2)

        with pytest.raises(ValidationError) as exc_info:
            code.full_clean()
        assert "buy_quantity" in exc_info.value.message_dict

    def test_end_before_start_is_rejected(self):
        code = PromoCode(code="BACKWARDS", discount_value=Decimal("5"), start_date=NOW, end_date=NOW - timedelta(days=1))

        with pytest.raises(ValidationError) as exc_info:
            code.full_clean()
        assert "end_date" in exc_info.value.message_dict

    def test_remaining_uses(self):
        assert PromoCode(max_uses_total=None).remaining_uses is None
        assert PromoCode(max_uses_total=5, current_uses_total=2).remaining_uses == 3

    def test_counter_cannot_exceed_limit_in_database(self):
        with pytest.raises(IntegrityError):
            PromoCode.objects.create(code="OVER", discount_value=Decimal("5"), max_uses_total=1, current_uses_total=2)


@pytest.mark.django_db
class TestPromotion:
    def test_user_types_must_be_strings(self):
        promotion = Promotion(name="Members", type=Promotion.Type.MEMBERSHIP, user_types=[1, 2])

        with pytest.raises(ValidationError) as exc_info:
            promotion.full_clean()
        assert "user_types" in exc_info.value.message_dict

    def test_end_before_start_is_rejected(self):
        promotion = Promotion(name="Backwards", start_date=NOW, end_date=NOW - timedelta(hours=1))

        with pytest.raises(ValidationError):
            promotion.full_clean()


@pytest.mark.django_db
class TestVolumeDiscount:
    def test_max_below_min_is_rejected(self, event):
        tier = VolumeDiscount(event=event, min_quantity=10, max_quantity=5, discount_percentage=Decimal("10"))

        with pytest.raises(ValidationError) as exc_info:
            tier.full_clean()
        assert "max_quantity" in exc_info.value.message_dict

    def test_str(self, event):
        tier = VolumeDiscount(event=event, min_quantity=5, discount_percentage=Decimal("20.00"))

        assert str(tier) == "20.00% for 5-+ (Logistics Forum)"
