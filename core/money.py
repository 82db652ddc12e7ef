"""
Decimal helpers for order amounts.
"""
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal('0.00')


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_amount(value, quantum='1') -> Decimal:
    """Round an amount to the currency quantum (whole rupiah by default)."""
    amount = to_decimal(value).quantize(to_decimal(quantum), rounding=ROUND_HALF_UP)
    return amount.quantize(Decimal('0.01'))


def as_amount(value) -> Decimal:
    """Aggregates come back without the column's scale on some databases."""
    if value is None:
        return ZERO
    return to_decimal(value).quantize(Decimal('0.01'))
