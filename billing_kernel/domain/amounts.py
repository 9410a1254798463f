"""
Amounts -- Decimal coercion at the record boundary.

Configuration and payload records arrive JSON-shaped, so numbers may be
int, float, str or None. Engines only accept Decimal; this module is the
single place where those primitives become Decimal. Floats go through
``str()`` so that 0.024 becomes Decimal("0.024") and not its binary
expansion.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from billing_kernel.exceptions import InvalidAmountError

ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "amount", default: Decimal | None = None) -> Decimal:
    """
    Convert a JSON-shaped number into Decimal.

    Args:
        value: int, float, str, Decimal or None.
        field: Field name reported in errors.
        default: Returned when value is None or an empty string. When no
            default is given, missing values raise.

    Raises:
        InvalidAmountError: value is not a finite number (NaN, inf, text,
            booleans, containers).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        raise InvalidAmountError(field, value)
    if isinstance(value, bool):
        raise InvalidAmountError(field, value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(field, value) from exc
    else:
        raise InvalidAmountError(field, value)
    if not result.is_finite():
        raise InvalidAmountError(field, value)
    return result


def to_optional_decimal(value: Any, field: str = "amount") -> Decimal | None:
    """Like to_decimal, but missing values stay None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def non_negative(value: Decimal) -> Decimal:
    """Floor an amount at zero."""
    return value if value > ZERO else ZERO
