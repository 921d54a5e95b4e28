"""Tests for gateway fees and amount limits in tradeconnect.registration.services.payment."""

from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.test import override_settings

from tradeconnect.pricing.money import Money
from tradeconnect.registration.services.payment import compute_fee, validate_amount

pytestmark = pytest.mark.unit


class TestComputeFee:
    @pytest.mark.parametrize(
        ("gateway", "amount", "expected"),
        [
            ("stripe", "500.00", "14.80"),
            ("paypal", "100.00", "3.39"),
            ("neonet", "1000.00", "25.00"),
            ("manual", "500.00", "0.00"),
            ("unknown", "500.00", "0.00"),
        ],
    )
    def test_default_schedule(self, gateway, amount, expected):
        assert compute_fee(gateway, Money.parse(amount)) == Money.parse(expected)

    def test_zero_amount_has_no_fee(self):
        assert compute_fee("stripe", Money.zero()) == Money.zero()

    def test_configured_rates_override_defaults(self):
        with override_settings(TRADECONNECT={"payment": {"fee_rates": {"stripe": (Decimal("3.5"), 1)}}}):
            assert compute_fee("stripe", Money.parse("100.00")) == Money.parse("4.50")
            assert compute_fee("paypal", Money.parse("100.00")) == Money.parse("3.39")


class TestValidateAmount:
    @pytest.mark.parametrize("amount", ["50.00", "1000.00", "50000.00"])
    def test_within_limits(self, amount):
        validate_amount("stripe", Money.parse(amount))

    @pytest.mark.parametrize("amount", ["49.99", "50000.01"])
    def test_outside_limits(self, amount):
        with pytest.raises(ValidationError, match=r"outside the stripe limits \(Q50\.00 to Q50000\.00\)"):
            validate_amount("stripe", Money.parse(amount))

    def test_neonet_has_a_lower_ceiling(self):
        with pytest.raises(ValidationError):
            validate_amount("neonet", Money.parse("30000.00"))

    def test_gateway_without_limits_accepts_anything(self):
        validate_amount("manual", Money.parse("0.01"))
