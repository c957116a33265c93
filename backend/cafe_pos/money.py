# Overview: Decimal coercion and rounding helpers for money and stock quantities.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal("0")
CENT = Decimal("0.01")
# Fractional portions (a sixth of a loaf) are stored at this scale
STOCK_QUANTUM = Decimal("0.00000001")


def to_decimal(value, default: Decimal | None = None) -> Decimal | None:
    """
    Coerce JSON numbers and numeric strings to Decimal.

    Floats go through str() so 0.1 stays 0.1 rather than its binary expansion.
    Returns ``default`` for None, empty strings, booleans and unparseable input.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_stock(value: Decimal) -> Decimal:
    return value.quantize(STOCK_QUANTUM, rounding=ROUND_HALF_UP)


def as_number(value):
    """Serialize a Decimal column for JSON (float), passing None through."""
    if value is None:
        return None
    return float(value)
