"""
money.py - Decimal Arithmetic Core

Exact base-10 arithmetic for every amount and rate in the engine.

Rules:
- All values are decimal.Decimal; binary floats never enter a computation
  (floats passed at the edges are converted through str()).
- Rounding is ROUND_HALF_EVEN to MONEY_QUANTUM and happens exactly once,
  at the final output of a computation.
- Division only happens inside apply_rate(), which performs it last.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Iterable, Union

from .core import MONEY_QUANTUM, ZERO, InvalidInput


Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric, name: str = "value") -> Decimal:
    """
    Coerce a value to Decimal.

    Floats are converted through their shortest repr so 0.05 becomes
    Decimal("0.05"), not the binary expansion.

    Raises:
        InvalidInput: If the value is not numeric, NaN, or infinite.
    """
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise InvalidInput(f"{name} is not a valid decimal: {value!r}") from None
    else:
        raise InvalidInput(f"{name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise InvalidInput(f"{name} must be finite, got {result}")
    return result


def quantize_money(
    value: Decimal,
    quantum: Decimal = MONEY_QUANTUM,
    rounding: str = ROUND_HALF_EVEN,
) -> Decimal:
    """Round a value to the currency's minimum unit. Call once, at the end."""
    return value.quantize(quantum, rounding=rounding)


def apply_ratio(
    amount: Decimal,
    numerator: Numeric,
    denominator: Numeric,
    quantum: Decimal = MONEY_QUANTUM,
    rounding: str = ROUND_HALF_EVEN,
) -> Decimal:
    """
    Compute amount * numerator / denominator with one division and one rounding.

    Raises:
        InvalidInput: If denominator is zero.
    """
    numerator = to_decimal(numerator, "numerator")
    denominator = to_decimal(denominator, "denominator")
    if denominator == ZERO:
        raise InvalidInput("denominator cannot be zero")
    return quantize_money((amount * numerator) / denominator, quantum, rounding)


def apply_rate(
    amount: Decimal,
    rate: Decimal,
    numerator: Numeric = 1,
    denominator: Numeric = 1,
    quantum: Decimal = MONEY_QUANTUM,
    rounding: str = ROUND_HALF_EVEN,
) -> Decimal:
    """
    Compute amount * rate * numerator / denominator, rounded once.

    Together with apply_ratio() this is the only sanctioned division in the
    engine. The product is formed exactly first; the single division happens
    last, then the result is quantized.

    Example:
        # 5% APR for 30 days on 1000.00
        apply_rate(Decimal("1000"), Decimal("0.05"), 30, 365)  # 4.10958904
    """
    numerator = to_decimal(numerator, "numerator")
    return apply_ratio(amount, rate * numerator, denominator, quantum, rounding)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    """Exact sum of Decimal amounts (Decimal('0') for an empty iterable)."""
    total = ZERO
    for value in values:
        total += value
    return total
