# Overview: Exact-decimal helpers for money and liter quantities.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .errors import ValidationError

MONEY_QUANT = Decimal("0.01")
LITER_QUANT = Decimal("0.001")
ZERO = Decimal("0")
# Numeric(14, 3) columns hold at most 11 integer digits
MAX_MAGNITUDE = Decimal("1e11")


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Coerce API/service input into a Decimal without passing through binary float.

    - Decimal and int are taken as-is (bool is rejected)
    - str must be a plain decimal literal
    - float is converted through repr() so 12.5 stays 12.5
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required", field=field)
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal number", field=field)
    else:
        raise ValidationError(f"{field} must be a number", field=field)

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    if abs(result) >= MAX_MAGNITUDE:
        raise ValidationError(f"{field} is out of range", field=field)
    return result


def _quantize(value: Decimal, quant: Decimal) -> Decimal:
    try:
        return value.quantize(quant, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"value {value} is out of range")


def quantize_money(value: Decimal) -> Decimal:
    return _quantize(value, MONEY_QUANT)


def quantize_liters(value: Decimal) -> Decimal:
    return _quantize(value, LITER_QUANT)


def decimal_sum(values: Iterable[Decimal | None]) -> Decimal:
    """Sum stored Decimals exactly; None counts as zero."""
    total = ZERO
    for v in values:
        if v is not None:
            total += v
    return total


def decimal_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(value)
