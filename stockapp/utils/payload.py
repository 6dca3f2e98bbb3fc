"""Coercion helpers for JSON and CSV payload values."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from stockapp.errors import ValidationError

# (precision, scale) of the Numeric columns values are stored in.
QUANTITY_COLUMN = (14, 3)
UNIT_COST_COLUMN = (12, 2)
TOTAL_VALUE_COLUMN = (14, 2)


def coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def coerce_decimal(value: Any) -> Decimal | None:
    """Parse ``value`` as a finite Decimal, or return ``None``.

    Booleans are refused even though ``bool`` is an ``int`` subclass.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def fits_column(value: Decimal, column: tuple[int, int]) -> bool:
    """True when ``value`` is stored exactly by a ``Numeric(precision, scale)``."""

    precision, scale = column
    if abs(value) >= Decimal(10) ** (precision - scale):
        return False
    return value == value.quantize(Decimal(1).scaleb(-scale))


def require_flag(payload: Mapping[str, Any], key: str) -> bool:
    """Return ``payload[key]`` when it is a JSON boolean."""

    value = payload[key]
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false", field=key)
    return value
