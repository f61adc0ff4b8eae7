# snowkingdom_be/utils/money.py

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value):
    """
    Normalizes a monetary value to a two-decimal `Decimal`.

    Floats are converted through `str()` so that 0.1 becomes Decimal('0.10')
    rather than its binary expansion. Bet keys from configuration files
    ("1.00", "1", 1.0) all normalize to the same value.

    Raises:
        ValueError: If the value cannot be interpreted as a number.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid monetary value: {value!r}")
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid monetary value: {value!r}")
    else:
        raise ValueError(f"Invalid monetary value: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Invalid monetary value: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value):
    """Fixed two-place string form used in logs and JSON responses."""
    return f"{to_money(value):.2f}"
