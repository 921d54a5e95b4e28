"""Tests for the payment gateway adapters in tradeconnect.registration.gateways."""

from unittest.mock import MagicMock, patch

import pytest
import stripe
from django.test import override_settings

from tradeconnect.errors import GatewayError
from tradeconnect.pricing.money import Money
from tradeconnect.registration.gateways import (
    ManualGateway,
    StripeGateway,
    get_gateway,
    obfuscate_key,
    to_minor_units,
)
from tradeconnect.settings import get_config


@pytest.fixture
def mock_stripe_client_cls():
    with patch("tradeconnect.registration.gateways.stripe.StripeClient") as mock_cls:
        mock_instance = MagicMock()
        mock_cls.return_value = mock_instance
        yield mock_cls, mock_instance.v1


# =============================================================================
# Helpers
# =============================================================================


@pytest.mark.unit
class TestHelpers:
    def test_to_minor_units(self):
        assert to_minor_units(Money.parse("123.45"), "GTQ") == 12345
        assert to_minor_units(Money.parse("500.00"), "JPY") == 500

    @pytest.mark.parametrize(("key", "expected"), [("sk_test_abcdef1234", "****1234"), ("abc", "****")])
    def test_obfuscate_key(self, key, expected):
        assert obfuscate_key(key) == expected


# =============================================================================
# StripeGateway
# =============================================================================


@pytest.mark.unit
class TestStripeGateway:
    def test_init_uses_configured_key(self, mock_stripe_client_cls):
        mock_cls, _ = mock_stripe_client_cls

        StripeGateway()

        mock_cls.assert_called_once_with("sk_test_tradeconnect", stripe_version=get_config().stripe.api_version)

    def test_init_without_key_raises(self):
        with override_settings(TRADECONNECT={}), pytest.raises(ValueError, match="No Stripe secret key"):
            StripeGateway()

    def test_charge_succeeded(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.payment_intents.create.return_value = MagicMock(id="pi_1", status="succeeded")

        result = StripeGateway().charge(Money.parse("450.00"), "pm_card_visa", "TXN-ABC")

        assert result.transaction_id == "pi_1"
        assert result.status == "completed"
        assert result.fee is None
        kwargs = v1.payment_intents.create.call_args.kwargs
        assert kwargs["params"]["amount"] == 45000
        assert kwargs["params"]["currency"] == "gtq"
        assert kwargs["params"]["payment_method"] == "pm_card_visa"
        assert kwargs["options"] == {"idempotency_key": "TXN-ABC"}

    def test_charge_processing(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.payment_intents.create.return_value = MagicMock(id="pi_2", status="processing")

        assert StripeGateway().charge(Money.parse("100.00"), "pm", "TXN-2").status == "processing"

    def test_charge_needing_action_is_a_failure(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.payment_intents.create.return_value = MagicMock(id="pi_3", status="requires_action")

        with pytest.raises(GatewayError, match="requires_action") as exc_info:
            StripeGateway().charge(Money.parse("100.00"), "pm", "TXN-3")
        assert not exc_info.value.transient

    @pytest.mark.parametrize(
        ("error", "transient"),
        [
            (stripe.APIConnectionError("network down"), True),
            (stripe.RateLimitError("slow down"), True),
            (stripe.InvalidRequestError("bad amount", param="amount"), False),
        ],
    )
    def test_charge_errors(self, mock_stripe_client_cls, error, transient):
        _, v1 = mock_stripe_client_cls
        v1.payment_intents.create.side_effect = error

        with pytest.raises(GatewayError) as exc_info:
            StripeGateway().charge(Money.parse("100.00"), "pm", "TXN-4")
        assert exc_info.value.transient is transient

    def test_full_refund(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.refunds.create.return_value = MagicMock(id="re_1")

        assert StripeGateway().refund("pi_1") == "re_1"

        params = v1.refunds.create.call_args.kwargs["params"]
        assert params["payment_intent"] == "pi_1"
        assert "amount" not in params

    def test_partial_refund(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.refunds.create.return_value = MagicMock(id="re_2")

        StripeGateway().refund("pi_1", Money.parse("12.50"))

        assert v1.refunds.create.call_args.kwargs["params"]["amount"] == 1250

    def test_refund_error(self, mock_stripe_client_cls):
        _, v1 = mock_stripe_client_cls
        v1.refunds.create.side_effect = stripe.InvalidRequestError("already refunded", param="payment_intent")

        with pytest.raises(GatewayError, match="rejected the refund"):
            StripeGateway().refund("pi_1")


# =============================================================================
# Lookup
# =============================================================================


@pytest.mark.unit
class TestGetGateway:
    def test_manual_gateway(self):
        gateway = get_gateway("manual")

        assert isinstance(gateway, ManualGateway)
        result = gateway.charge(Money.parse("10.00"), "cash", "TXN-5")
        assert result.status == "completed"
        assert result.transaction_id.startswith("MAN-")
        assert gateway.refund(result.transaction_id).startswith("MANREF-")

    def test_stripe_gateway(self, mock_stripe_client_cls):
        assert isinstance(get_gateway("stripe"), StripeGateway)

    def test_unknown_gateway(self):
        with pytest.raises(ValueError, match="No payment gateway configured for 'neonet'"):
            get_gateway("neonet")

    def test_configured_gateway_class(self):
        with override_settings(
            TRADECONNECT={"payment": {"gateway_classes": {"bam": "tradeconnect.registration.gateways.ManualGateway"}}}
        ):
            assert isinstance(get_gateway("bam"), ManualGateway)
