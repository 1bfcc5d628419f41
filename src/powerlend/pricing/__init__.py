"""Rental pricing — utilization bonding curves."""

from powerlend.pricing.curves import (
    LogarithmicCurve,
    PoleSlopeCurve,
    PricingCurve,
    base_rate,
    curve_from_config,
    denormalize_fee,
)

__all__ = [
    "LogarithmicCurve",
    "PoleSlopeCurve",
    "PricingCurve",
    "base_rate",
    "curve_from_config",
    "denormalize_fee",
]
