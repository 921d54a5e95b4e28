"""Database-free pricing: money, discount evaluators and conflict resolution."""

from tradeconnect.pricing.engine import CartPrice, EventRules, LinePrice, price_cart, price_line
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.resolver import resolve

__all__ = [
    "CartPrice",
    "EventRules",
    "LinePrice",
    "Money",
    "price_cart",
    "price_line",
    "resolve",
]
