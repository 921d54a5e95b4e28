"""Typed configuration for TradeConnect.

Reads a single ``TRADECONNECT`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from tradeconnect.settings import get_config

    config = get_config()
    config.reservation_expiry_minutes
    config.payment.max_retries
    config.fel.base_url
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.test.signals import setting_changed


def _default_fee_rates() -> dict[str, tuple[Decimal, Decimal]]:
    return {
        "paypal": (Decimal("2.9"), Decimal("0.49")),
        "stripe": (Decimal("2.9"), Decimal("0.30")),
        "neonet": (Decimal("2.5"), Decimal("0.00")),
        "bam": (Decimal("2.5"), Decimal("0.00")),
        "manual": (Decimal("0"), Decimal("0.00")),
    }


def _default_amount_limits() -> dict[str, tuple[Decimal, Decimal]]:
    return {
        "paypal": (Decimal("50.00"), Decimal("50000.00")),
        "stripe": (Decimal("50.00"), Decimal("50000.00")),
        "neonet": (Decimal("50.00"), Decimal("25000.00")),
        "bam": (Decimal("50.00"), Decimal("25000.00")),
    }


def _default_gateway_classes() -> dict[str, str]:
    return {
        "stripe": "tradeconnect.registration.gateways.StripeGateway",
        "manual": "tradeconnect.registration.gateways.ManualGateway",
    }


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe payment gateway configuration."""

    secret_key: str | None = None
    publishable_key: str | None = None
    api_version: str = "2024-12-18"


@dataclass(frozen=True, slots=True)
class PaymentConfig:
    """Gateway retry policy, fee schedule and per-gateway amount limits.

    ``fee_rates`` maps a gateway name to ``(percentage, fixed)``; ``amount_limits``
    maps it to ``(minimum, maximum)`` in the configured currency.
    """

    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    fee_rates: dict[str, tuple[Decimal, Decimal]] = field(default_factory=_default_fee_rates)
    amount_limits: dict[str, tuple[Decimal, Decimal]] = field(default_factory=_default_amount_limits)
    gateway_classes: dict[str, str] = field(default_factory=_default_gateway_classes)


@dataclass(frozen=True, slots=True)
class FelConfig:
    """FEL (electronic invoicing) certifier configuration."""

    base_url: str = "https://certificador.feel.com.gt/fel"
    token: str | None = None
    nit_emisor: str = ""
    timeout: float = 30.0


@dataclass(frozen=True, slots=True)
class NotificationsConfig:
    """Outbound notification configuration."""

    enabled: bool = True
    from_email: str = "no-reply@tradeconnect.gt"


@dataclass(frozen=True, slots=True)
class TradeConnectConfig:
    """Top-level TradeConnect configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    fel: FelConfig = field(default_factory=FelConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    cart_expiry_hours: int = 24
    cart_abandonment_minutes: int = 60
    reservation_expiry_minutes: int = 15
    reservation_reminder_minutes: int = 5
    max_item_quantity: int = 50
    registration_code_prefix: str = "INS"
    currency: str = "GTQ"
    currency_symbol: str = "Q"


@functools.lru_cache(maxsize=1)
def get_config() -> TradeConnectConfig:
    """Build and return the TradeConnect configuration.

    Reads ``settings.TRADECONNECT`` (a plain dict) and returns a frozen
    :class:`TradeConnectConfig`. The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "TRADECONNECT", {})
    if not isinstance(raw, Mapping):
        msg = "TRADECONNECT must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    sections = {}
    for name in ("stripe", "payment", "fel", "notifications"):
        data = raw_data.pop(name, {})
        if not isinstance(data, Mapping):
            msg = f"TRADECONNECT['{name}'] must be a mapping (dict-like object)"
            raise TypeError(msg)
        sections[name] = dict(data)

    payment_data = sections["payment"]
    for key, default_factory in (
        ("fee_rates", _default_fee_rates),
        ("amount_limits", _default_amount_limits),
        ("gateway_classes", _default_gateway_classes),
    ):
        if key in payment_data:
            if not isinstance(payment_data[key], Mapping):
                msg = f"TRADECONNECT['payment']['{key}'] must be a mapping (dict-like object)"
                raise TypeError(msg)
            payment_data[key] = {**default_factory(), **dict(payment_data[key])}

    config = TradeConnectConfig(
        stripe=StripeConfig(**sections["stripe"]),
        payment=PaymentConfig(**payment_data),
        fel=FelConfig(**sections["fel"]),
        notifications=NotificationsConfig(**sections["notifications"]),
        **raw_data,
    )
    _validate_config(config)
    return config


def _validate_positive_int(value: object, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        msg = f"TRADECONNECT['{name}'] must be a positive integer"
        raise ValueError(msg)


def _validate_config(config: TradeConnectConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    _validate_positive_int(config.cart_expiry_hours, "cart_expiry_hours")
    _validate_positive_int(config.cart_abandonment_minutes, "cart_abandonment_minutes")
    _validate_positive_int(config.reservation_expiry_minutes, "reservation_expiry_minutes")
    _validate_positive_int(config.reservation_reminder_minutes, "reservation_reminder_minutes")
    _validate_positive_int(config.max_item_quantity, "max_item_quantity")
    if config.reservation_reminder_minutes >= config.reservation_expiry_minutes:
        msg = "TRADECONNECT['reservation_reminder_minutes'] must be shorter than the reservation window"
        raise ValueError(msg)
    if not isinstance(config.registration_code_prefix, str) or not config.registration_code_prefix.strip():
        msg = "TRADECONNECT['registration_code_prefix'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "TRADECONNECT['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.currency_symbol, str) or not config.currency_symbol.strip():
        msg = "TRADECONNECT['currency_symbol'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.payment.max_retries, int) or config.payment.max_retries < 0:
        msg = "TRADECONNECT['payment']['max_retries'] must be a non-negative integer"
        raise ValueError(msg)
    backoff = config.payment.retry_backoff_seconds
    if not isinstance(backoff, (int, float)) or backoff < 0:
        msg = "TRADECONNECT['payment']['retry_backoff_seconds'] must be a non-negative number"
        raise ValueError(msg)
    for gateway, (minimum, maximum) in config.payment.amount_limits.items():
        if Decimal(minimum) > Decimal(maximum):
            msg = f"TRADECONNECT['payment']['amount_limits']['{gateway}'] minimum exceeds maximum"
            raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "TRADECONNECT":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="tradeconnect.settings.clear_config_cache")
