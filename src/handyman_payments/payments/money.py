from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from handyman_payments.payments.errors import ValidationError

CENTS = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    # floats go through str() so 45.5 becomes Decimal("45.5"), not its binary expansion
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_minor_units(amount: Any) -> int:
    """Dollars -> integer cents, rounding half away from zero."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / 100).quantize(CENTS)


def parse_amount(value: Any, field_name: str) -> Decimal:
    """
    Parse a caller-supplied money value into a non-negative Decimal rounded to cents.

    Raises ValidationError for missing, non-numeric, non-finite or negative values.
    """
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required")
    try:
        amount = to_decimal(value if not isinstance(value, str) else value.strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    if amount < 0:
        raise ValidationError(f"{field_name} must not be negative")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
