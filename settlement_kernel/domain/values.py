"""
Values -- Decimal helpers for USD amounts, shares and unit costs.

All amounts in the engine are plain ``Decimal`` in USD.  Derived values
(unit cost, share, payable) are quantized to the storage scale of
Numeric(38, 9) so that an in-session value equals its reloaded value.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from settlement_kernel.exceptions import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
AMOUNT_QUANTUM = Decimal("0.000000001")
CENT = Decimal("0.01")


def to_amount(value: Decimal | int | str | float, field: str = "amount") -> Decimal:
    """Coerce caller input to ``Decimal``; floats go through ``str``."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(
                f"{field} is not a valid number: {value!r}", field=field
            ) from None
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return result


def quantize_amount(value: Decimal) -> Decimal:
    """Round to the 9-place storage scale."""
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def round_cents(value: Decimal) -> Decimal:
    """Round to cents for display and report totals."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
