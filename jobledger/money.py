"""Fixed-point helpers for monetary values.

All monetary values use Decimal, never float.
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _as_decimal(value: Any, what: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {what}: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # Go through repr so 49.99 stays 49.99 instead of its binary expansion
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Invalid {what}: {value!r}")
    else:
        raise ValueError(f"Invalid {what}: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid {what}: {value!r}")
    return result


def round2(value: Decimal) -> Decimal:
    """Round to cents using banker's rounding."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def to_money(value: Any) -> Decimal:
    """Coerce a value to a Decimal amount rounded to cents."""
    return round2(_as_decimal(value, "amount"))


def to_quantity(value: Any) -> Decimal:
    """Coerce a value to a Decimal quantity (no rounding)."""
    return _as_decimal(value, "quantity")


def to_unit_price(value: Any) -> Decimal:
    """Coerce a unit price to Decimal at full precision.

    Only the line total is rounded to cents, so 1000 x 0.004 is 4.00.
    """
    return _as_decimal(value, "unit price")


def to_rate(value: Any) -> Decimal:
    """Coerce a value to a Decimal rate such as a tax rate (0.08 = 8%)."""
    return _as_decimal(value, "rate")
