"""Decimal helpers. Amounts carry 2 places, quantities 3, both rounded half-up
unless a bound asks for another rounding."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONEY_PLACES = Decimal("0.01")
QTY_PLACES = Decimal("0.001")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def qty(value: Any, rounding: str = ROUND_HALF_UP) -> Decimal:
    return to_decimal(value).quantize(QTY_PLACES, rounding=rounding)


def total(values: Iterable[Any]) -> Decimal:
    return sum((to_decimal(v) for v in values), ZERO)


def percent_of(amount: Any, rate: Any) -> Decimal:
    return money(to_decimal(amount) * to_decimal(rate) / HUNDRED)
