"""
Money helpers: parsing user input into Decimal.

Usage:
    from fintrack.domain.money import parse_positive_amount, to_decimal

    parse_positive_amount("100,50")  -> Decimal("100.50")
    to_decimal("1 250.5")            -> Decimal("1250.50")
"""
import re
from decimal import Decimal, InvalidOperation

from fintrack.domain.errors import ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount string: strip spaces, comma as decimal separator

    Example:
        >>> normalize_decimal_input(" 100,50 ")
        '100.50'
    """
    return value.strip().replace(" ", "").replace(",", ".")


def to_decimal(value, max_decimal_places: int = 2) -> Decimal:
    """
    Convert int / str / Decimal / float into a Decimal with at most
    `max_decimal_places` fractional digits.

    Floats go through str() so that 0.1 becomes Decimal("0.1"), not the
    binary expansion.

    Raises:
        ValidationError: not a number, or too many decimal places
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError("Amount must be a number")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        normalized = normalize_decimal_input(value)
        if not re.match(r"^-?\d+(\.\d+)?$", normalized):
            raise ValidationError(f"Invalid amount: {value!r}")
        try:
            result = Decimal(normalized)
        except InvalidOperation as e:
            raise ValidationError(f"Invalid amount: {value!r}") from e
    else:
        raise ValidationError(f"Invalid amount: {value!r}")

    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    if -result.as_tuple().exponent > max_decimal_places and result != result.quantize(CENTS):
        raise ValidationError(f"At most {max_decimal_places} decimal places are allowed")
    return result.quantize(CENTS)


def parse_positive_amount(value) -> Decimal:
    """Parse an entered magnitude; it must be strictly greater than zero."""
    amount = to_decimal(value)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount
