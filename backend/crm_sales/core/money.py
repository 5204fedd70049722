"""
Fixed-point money helpers.

Amounts are ``Decimal`` end to end. Rounding to cents happens once, at the
boundary where a figure is stored or reported.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

from crm_sales.core.exceptions import ValidationFailed

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Numeric = Union[Decimal, int, str, float]


def to_decimal(value: Numeric, field: str = "amount") -> Decimal:
    """Convert input to Decimal without passing through binary floats"""
    if value is None:
        raise ValidationFailed(f"{field} is required", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationFailed(f"{field} is not a valid number: {value!r}", field=field)
    if not result.is_finite():
        raise ValidationFailed(f"{field} must be a finite number", field=field)
    return result


def quantize(value: Numeric) -> Decimal:
    """Round to cents, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Numeric, field: str = "amount") -> Decimal:
    """Convert a caller-supplied amount, refusing sub-cent precision"""
    result = to_decimal(value, field)
    if result != result.quantize(CENT, rounding=ROUND_HALF_UP):
        raise ValidationFailed(f"{field} cannot have more than two decimal places", field=field)
    return result.quantize(CENT)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    """``amount * rate / 100`` with no intermediate rounding"""
    return amount * rate / HUNDRED


def money_sum(values: Iterable[Numeric]) -> Decimal:
    return quantize(sum((to_decimal(v) for v in values), ZERO))
