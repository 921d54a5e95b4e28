"""Fee schedule and amount limits per payment gateway."""

from decimal import Decimal

from django.core.exceptions import ValidationError

from tradeconnect.pricing.money import Money
from tradeconnect.settings import get_config


def compute_fee(gateway: str, amount: Money) -> Money:
    """Return the processing fee for charging ``amount`` through ``gateway``.

    The fee is ``percentage`` of the amount plus a fixed part, as configured in
    ``TRADECONNECT["payment"]["fee_rates"]``. Unknown gateways and zero
    amounts carry no fee.
    """
    percentage, fixed = get_config().payment.fee_rates.get(gateway, (Decimal("0"), Decimal("0")))
    if amount.is_zero:
        return Money.zero()
    return amount.percentage_of(percentage).add(Money.parse(str(fixed)))


def validate_amount(gateway: str, amount: Money) -> None:
    """Ensure ``amount`` is within the gateway's configured limits.

    Raises:
        ValidationError: If the amount is below the minimum or above the
            maximum. Gateways without configured limits accept anything.
    """
    limits = get_config().payment.amount_limits.get(gateway)
    if limits is None:
        return
    minimum, maximum = (Money.parse(str(limit)) for limit in limits)
    if amount < minimum or amount > maximum:
        symbol = get_config().currency_symbol
        raise ValidationError(
            f"Amount {symbol}{amount} is outside the {gateway} limits ({symbol}{minimum} to {symbol}{maximum})."
        )
