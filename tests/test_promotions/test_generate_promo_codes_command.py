"""Tests for the generate_promo_codes management command."""

from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from tradeconnect.promotions.models import PromoCode, Promotion


def _run(*args):
    out = StringIO()
    call_command("generate_promo_codes", *args, stdout=out)
    return out.getvalue()


@pytest.mark.django_db
class TestGeneratePromoCodesCommand:
    def test_prints_generated_codes(self):
        output = _run("--prefix", "EXPO-", "--count", "3", "--value", "15")

        lines = output.strip().splitlines()
        assert lines[-1] == "Generated 3 promo codes"
        assert len(lines) == 4
        assert set(lines[:3]) == set(PromoCode.objects.values_list("code", flat=True))
        assert all(code.max_uses_total == 1 for code in PromoCode.objects.all())

    def test_zero_max_uses_means_unlimited(self):
        _run("--count", "1", "--value", "100", "--type", "FIXED_AMOUNT", "--max-uses", "0")

        code = PromoCode.objects.get()
        assert code.max_uses_total is None
        assert code.discount_type == PromoCode.DiscountType.FIXED_AMOUNT

    def test_attaches_promotion(self):
        promotion = Promotion.objects.create(name="Expo week")

        _run("--count", "2", "--value", "10", "--promotion", str(promotion.pk))

        assert promotion.promo_codes.count() == 2

    def test_buy_x_get_y_needs_quantities(self):
        with pytest.raises(CommandError, match="--buy and --free"):
            _run("--count", "1", "--value", "0", "--type", "BUY_X_GET_Y")

    def test_buy_x_get_y(self):
        _run("--count", "1", "--value", "0", "--type", "BUY_X_GET_Y", "--buy", "2", "--free", "1")

        code = PromoCode.objects.get()
        assert (code.buy_quantity, code.free_quantity) == (2, 1)

    def test_invalid_value(self):
        with pytest.raises(CommandError, match="Invalid discount value"):
            _run("--count", "1", "--value", "lots")

    def test_missing_promotion(self):
        with pytest.raises(CommandError, match="Promotion 999 not found"):
            _run("--count", "1", "--value", "10", "--promotion", "999")

    def test_count_out_of_range(self):
        with pytest.raises(CommandError, match="count must be between"):
            _run("--count", "0", "--value", "10")

        assert not PromoCode.objects.exists()
