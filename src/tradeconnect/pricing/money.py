"""Fixed-precision money value type.

All prices, discounts and fees are :class:`Money` instances holding a
``Decimal`` quantized to two fraction digits. Each operation rounds exactly
once using ``ROUND_HALF_UP``, so multi-step discount combinations never
accumulate binary floating point drift.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from tradeconnect.errors import InvalidMoneyFormat

_CENTS = Decimal("0.01")
_HUNDRED = Decimal(100)
_DECIMAL_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _to_decimal(value: object) -> Decimal:
    """Coerce a factor or percentage to ``Decimal``, refusing floats."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidMoneyFormat(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidMoneyFormat(value)
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str) and _DECIMAL_RE.match(value.strip()):
        return Decimal(value.strip())
    raise InvalidMoneyFormat(value)


@dataclass(frozen=True, slots=True, order=True)
class Money:
    """An amount of money with two decimal places.

    Build instances with :meth:`parse` (decimal string or ``Decimal``),
    :meth:`from_cents` or :meth:`zero`. Direct construction accepts a
    ``Decimal`` only.
    """

    amount: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal) or not self.amount.is_finite():
            raise InvalidMoneyFormat(self.amount)
        object.__setattr__(self, "amount", _quantize(self.amount))

    @classmethod
    def parse(cls, value: str | Decimal) -> "Money":
        """Parse a decimal string (``"125.50"``) or ``Decimal`` into Money.

        Raises:
            InvalidMoneyFormat: For floats, booleans, non-finite values or
                malformed strings.
        """
        if isinstance(value, Decimal):
            return cls(value)
        if not isinstance(value, str) or not _DECIMAL_RE.match(value.strip()):
            raise InvalidMoneyFormat(value)
        try:
            return cls(Decimal(value.strip()))
        except InvalidOperation:
            raise InvalidMoneyFormat(value) from None

    @classmethod
    def from_cents(cls, cents: int) -> "Money":
        """Build Money from an integer number of cents."""
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise InvalidMoneyFormat(cents)
        return cls(Decimal(cents) / _HUNDRED)

    @classmethod
    def zero(cls) -> "Money":
        return cls(Decimal("0.00"))

    @classmethod
    def max(cls, *values: "Money") -> "Money":
        return max(values, key=lambda money: money.amount)

    @classmethod
    def min(cls, *values: "Money") -> "Money":
        return min(values, key=lambda money: money.amount)

    @property
    def cents(self) -> int:
        return int(self.amount * _HUNDRED)

    def add(self, other: "Money") -> "Money":
        return Money(self.amount + other.amount)

    def subtract(self, other: "Money") -> "Money":
        """Subtract ``other``, clamping at zero.

        A discount can never push a price below zero; use :meth:`delta` when
        a signed difference is actually wanted.
        """
        return Money(max(self.amount - other.amount, Decimal("0.00")))

    def delta(self, other: "Money") -> "Money":
        """Return the signed difference ``self - other``."""
        return Money(self.amount - other.amount)

    def multiply(self, factor: int | Decimal | str) -> "Money":
        return Money(self.amount * _to_decimal(factor))

    def percentage_of(self, percentage: int | Decimal | str) -> "Money":
        """Return ``percentage`` percent of this amount (``percentage`` in 0-100)."""
        return Money(self.amount * _to_decimal(percentage) / _HUNDRED)

    def allocate(self, weights: Sequence["Money"]) -> list["Money"]:
        """Split this amount proportionally to ``weights``.

        Every share but the last is rounded independently and the last share
        receives the remainder, so the shares always sum to exactly ``self``.
        Zero total weight puts everything on the last share.
        """
        if not weights:
            return []
        total_weight = sum((weight.amount for weight in weights), Decimal("0.00"))
        shares: list[Money] = []
        remaining = self
        for idx, weight in enumerate(weights):
            if idx == len(weights) - 1 or total_weight == 0:
                share = remaining if idx == len(weights) - 1 else Money.zero()
            else:
                share = Money.min(Money(self.amount * weight.amount / total_weight), remaining)
            shares.append(share)
            remaining = remaining.subtract(share)
        return shares

    def compare(self, other: "Money") -> int:
        """Return -1, 0 or 1 as this amount is lower, equal or higher."""
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __radd__(self, other: object) -> "Money":
        # Lets ``sum()`` start from the integer 0.
        if other == 0:
            return self
        if not isinstance(other, Money):
            return NotImplemented
        return other.add(self)

    def __str__(self) -> str:
        return f"{self.amount:.2f}"
