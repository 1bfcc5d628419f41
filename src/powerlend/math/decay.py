"""Half-life decay in pure integer arithmetic.

The value of a quantity halving every t12 seconds, observed at time t:

    value = c0 * 2^-((t - t0) / t12)

The exponent is split into a whole number of half-lives k and a 64-bit
binary fraction r. 2^-k is an exact right shift; 2^-r is the product of
the table constants 2^(-1/2^i) for every set bit i of r. Products are
carried at 2**128 scale and truncated after each multiplication, so the
result is bit-reproducible on every platform.

Key rules:
- c0 == 0 returns 0 without touching the exponent.
- t == t0 returns c0 exactly; whole half-lives halve exactly.
- All truncation is toward zero.
- Decay is a pure computation, no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Tuple

from powerlend.errors import DomainError

FRACTION_BITS = 64
_SCALE_BITS = 128
_SCALE = 1 << _SCALE_BITS


def _build_half_roots() -> Tuple[int, ...]:
    """floor(2^(-1/2^i) * 2^128) for i = 1..64, index 0 unused."""
    with localcontext() as ctx:
        ctx.prec = 80
        ln2 = Decimal(2).ln()
        roots = [0]
        for i in range(1, FRACTION_BITS + 1):
            root = (-ln2 / Decimal(2 ** i)).exp()
            roots.append(int(root * _SCALE))
    return tuple(roots)


HALF_ROOTS: Tuple[int, ...] = _build_half_roots()


def half_life(t0: int, c0: int, t12: int, t: int) -> int:
    """Value at time t of c0 (observed at t0) with half-life t12.

    Raises DomainError if t < t0 or t12 <= 0.
    """
    if t12 <= 0:
        raise DomainError(f"Half-life must be positive, got {t12}")
    if t < t0:
        raise DomainError(f"Time {t} precedes reference time {t0}")
    if c0 < 0:
        raise DomainError(f"Decaying value must be non-negative, got {c0}")
    if c0 == 0 or t == t0:
        return c0

    elapsed = t - t0
    k, remainder = divmod(elapsed, t12)
    r = (remainder << FRACTION_BITS) // t12

    acc = c0 << _SCALE_BITS
    for i in range(1, FRACTION_BITS + 1):
        if (r >> (FRACTION_BITS - i)) & 1:
            acc = (acc * HALF_ROOTS[i]) >> _SCALE_BITS
    return acc >> (_SCALE_BITS + k)


def accrued(amount: int, t0: int, t12: int, t: int) -> int:
    """Part of amount released by time t on a rising half-life approach.

    released(t) = amount * (1 - 2^-((t - t0) / t12))
    """
    return amount - half_life(t0, amount, t12, t)


@dataclass(frozen=True)
class DecayAnchor:
    """Reference point of an exponentially decaying quantity.

    Immutable: any change to the underlying quantity produces a new
    anchor via rebase().
    """
    reference_time: int
    reference_value: int
    half_life: int

    def __post_init__(self) -> None:
        if self.half_life <= 0:
            raise DomainError(f"Half-life must be positive, got {self.half_life}")
        if self.reference_value < 0:
            raise DomainError("Anchor value must be non-negative")

    def value_at(self, t: int) -> int:
        return half_life(self.reference_time, self.reference_value, self.half_life, t)

    def released_at(self, t: int) -> int:
        """How much of reference_value has decayed away by time t."""
        return self.reference_value - self.value_at(t)

    def rebase(self, t: int, value: int) -> DecayAnchor:
        return DecayAnchor(reference_time=t, reference_value=value, half_life=self.half_life)
