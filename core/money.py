"""Decimal helpers for monetary amounts and exchange rates.

Every amount in the system is a Decimal with two places, rounded half-up.
Exchange rates keep six places. Floats never touch money.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a numeric value to Decimal without going through float.

    Raises:
        ValueError: If value is None or not numeric
    """
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValueError(f"Not a numeric amount: {value!r}")


def to_money(value: Any) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Any) -> Decimal:
    """Round an exchange rate to six places, half-up."""
    return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
