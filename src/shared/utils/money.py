import math
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal | None:
    """
    Parse a money-like value into a finite Decimal.

    Returns None for None, booleans, NaN/Infinity and anything unparsable.
    Numeric strings ("12.50") are accepted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


def to_cents(value: Union[Decimal, float, int, str]) -> int:
    """Amount in euros -> integer cents (half-up)."""
    return int(round_money(value) * 100)


def format_amount(value: Union[Decimal, float, int, str, None]) -> str:
    """Decimal string with exactly two decimals ("135.00")."""
    return f"{round_money(value or 0):.2f}"
