"""Fixed-point arithmetic — Q64.64 helpers and half-life decay."""

from powerlend.math.decay import DecayAnchor, accrued, half_life
from powerlend.math.fixed_point import ONE, PERCENT_BASE, log2_q64, to_q64

__all__ = [
    "DecayAnchor",
    "ONE",
    "PERCENT_BASE",
    "accrued",
    "half_life",
    "log2_q64",
    "to_q64",
]
