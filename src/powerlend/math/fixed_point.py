"""Q64.64 fixed-point helpers.

Ratios, prices and curve multipliers are carried as integers scaled by
2**64. Token amounts stay in integer base units. Configuration values
arrive as Decimal strings and are converted exactly once, at load time.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

from powerlend.errors import DomainError

Q = 64
ONE = 1 << Q
TWO = 2 << Q

# Basis points denominator for percentages (300 == 3%).
PERCENT_BASE = 10_000

# Wide enough for 2**128-scaled products of 18-decimal amounts.
_DECIMAL_PRECISION = 80

DecimalLike = Union[Decimal, str, int]


def _as_decimal(value: DecimalLike) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_q64(value: DecimalLike) -> int:
    """Convert a Decimal-like value to Q64.64, truncating toward zero."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = _as_decimal(value) * ONE
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_q64(value: int) -> Decimal:
    """Convert Q64.64 back to Decimal (display only)."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return Decimal(value) / Decimal(ONE)


def mul_q64(a: int, b: int) -> int:
    return (a * b) >> Q


def div_q64(a: int, b: int) -> int:
    if b == 0:
        raise DomainError("Division by zero in fixed-point divide")
    return (a << Q) // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with an unbounded intermediate."""
    if denominator == 0:
        raise DomainError("Division by zero in mul_div")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator) for non-negative operands."""
    if denominator == 0:
        raise DomainError("Division by zero in mul_div_up")
    return -((-a * b) // denominator)


def log2_q64(x: int) -> int:
    """Binary logarithm of a Q64.64 value x >= 1, returned in Q64.64.

    Integer part from the bit length, fractional bits by repeated
    squaring of the normalised mantissa.
    """
    if x < ONE:
        raise DomainError("log2_q64 requires x >= 1")
    n = x.bit_length() - (Q + 1)
    result = n << Q
    y = x >> n
    if y == ONE:
        return result
    for i in range(Q):
        y = (y * y) >> Q
        if y >= TWO:
            y >>= 1
            result += 1 << (Q - 1 - i)
    return result


def to_base_units(amount: DecimalLike, decimals: int) -> int:
    """Whole-token amount (e.g. "1.5") to integer base units."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = _as_decimal(amount).scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int) -> Decimal:
    """Integer base units to a whole-token Decimal."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return Decimal(amount).scaleb(-decimals)
