"""Rental pricing curves — fee for renting an amount for a duration.

A flat price (base_rate * amount * duration) would make large, long rentals
free of scarcity cost. Instead every unit is priced by a multiplier f(u)
of the free fraction of the reserve at the moment it is taken:

    u(x) = (reserve - x) / reserve
    h(x) = x * f(u(x))
    fee  = (h(used + amount) - h(used)) * base_rate * duration

Because the fee is a finite difference of one function h, renting amount1
and then amount2 (with used reserve updated in between) telescopes to the
fee of renting amount1 + amount2 at once. The additivity law holds up to
integer truncation.

Curves are strategies: one class per variant, chosen at configuration
time by curve_from_config(). All values are Q64.64 integers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Mapping

from powerlend.errors import ConfigurationError, InsufficientCapacity, InvalidAmount
from powerlend.math.fixed_point import ONE, Q, log2_q64, to_q64


class PricingCurve(ABC):
    """Marginal-price multiplier over the free fraction of the reserve.

    Usage:
        curve = PoleSlopeCurve()
        fee = curve.quote(base_rate, reserve, used_reserve, amount, duration)
    """

    name: str = "abstract"

    @abstractmethod
    def multiplier(self, free_ratio: int) -> int:
        """f(u) in Q64.64 for a free fraction u in Q64.64, 0 <= u <= 1."""

    def antiderivative(self, reserve: int, x: int) -> int:
        """h(x) = x * f((reserve - x) / reserve), in base units * 2**64."""
        if x == 0:
            return 0
        free_ratio = ((reserve - x) << Q) // reserve
        return x * self.multiplier(free_ratio)

    def quote(
        self,
        base_rate: int,
        reserve: int,
        used_reserve: int,
        amount: int,
        duration: int,
    ) -> int:
        """Fee in the units of base_rate's price (see denormalize_fee).

        Args:
            base_rate: Q64.64 price per enterprise base unit per second.
            reserve: Total reserve backing rentals.
            used_reserve: Reserve already committed to rentals.
            amount: Amount to rent, in enterprise base units.
            duration: Rental duration in seconds.

        Raises:
            InvalidAmount: amount <= 0 or negative duration/rate.
            InsufficientCapacity: not enough unused reserve, or the curve
                cannot price the resulting utilization.
        """
        if amount <= 0:
            raise InvalidAmount("Rental amount must be positive")
        if duration < 0 or base_rate < 0:
            raise InvalidAmount("Duration and base rate must be non-negative")
        used_reserve = max(used_reserve, 0)
        if reserve <= 0 or used_reserve + amount > reserve:
            raise InsufficientCapacity(
                f"Cannot rent {amount}: reserve {reserve}, used {used_reserve}"
            )
        delta = self.antiderivative(reserve, used_reserve + amount) - self.antiderivative(
            reserve, used_reserve
        )
        return (delta * base_rate * duration) >> (2 * Q)


class PoleSlopeCurve(PricingCurve):
    """f(u) = (1 - pole) * slope / (u - pole) + (1 - slope).

    f(1) == 1 (an idle reserve rents at base price). The multiplier diverges
    at the pole; utilization at or past it is a hard capacity limit.
    """

    name = "pole_slope"

    def __init__(self, pole: Decimal = Decimal("0.05"), slope: Decimal = Decimal("0.3")) -> None:
        pole = Decimal(str(pole))
        slope = Decimal(str(slope))
        if not (Decimal("0") < pole < Decimal("1")):
            raise ConfigurationError(f"Pole must be in (0, 1), got {pole}")
        if not (Decimal("0") <= slope <= Decimal("1")):
            raise ConfigurationError(f"Slope must be in [0, 1], got {slope}")
        self.pole = pole
        self.slope = slope
        self._pole = to_q64(pole)
        self._floor = ONE - to_q64(slope)
        self._numerator = ((ONE - self._pole) * to_q64(slope)) >> Q

    def multiplier(self, free_ratio: int) -> int:
        if free_ratio <= self._pole:
            raise InsufficientCapacity(
                f"Utilization reaches the pricing pole ({self.pole})"
            )
        return (self._numerator << Q) // (free_ratio - self._pole) + self._floor


class LogarithmicCurve(PricingCurve):
    """f(u) = 1 - lam * log2(u).

    Soft cap: the fee grows without bound as the free fraction approaches
    zero; a fully used reserve cannot be priced.
    """

    name = "logarithmic"

    def __init__(self, lam: Decimal = Decimal("1.0")) -> None:
        lam = Decimal(str(lam))
        if lam < Decimal("0"):
            raise ConfigurationError(f"Lambda must be non-negative, got {lam}")
        self.lam = lam
        self._lam = to_q64(lam)

    def multiplier(self, free_ratio: int) -> int:
        if free_ratio <= 0:
            raise InsufficientCapacity("Reserve fully used; logarithmic curve diverges")
        # -log2(u) == log2(1/u), and 1/u >= 1 in Q64.64
        neg_log = log2_q64((ONE << Q) // free_ratio)
        return ONE + ((self._lam * neg_log) >> Q)


def curve_from_config(params: Mapping[str, Any]) -> PricingCurve:
    """Build the configured curve variant.

    params["curve"] selects the variant; the remaining keys are its
    constants as Decimal strings.
    """
    kind = params.get("curve", PoleSlopeCurve.name)
    if kind == PoleSlopeCurve.name:
        return PoleSlopeCurve(
            pole=Decimal(str(params.get("pole", "0.05"))),
            slope=Decimal(str(params.get("slope", "0.3"))),
        )
    if kind == LogarithmicCurve.name:
        return LogarithmicCurve(lam=Decimal(str(params.get("lambda", "1.0"))))
    raise ConfigurationError(f"Unknown pricing curve: {kind}")


def base_rate(
    tokens: int,
    period: int,
    price: int,
    token_decimals: int = 18,
    price_decimals: int = 18,
) -> int:
    """Q64.64 rate for "price per tokens per period".

    tokens and price are in base units of their own assets. The price is
    normalised to the enterprise token's decimals so a 6-decimal price
    asset keeps full precision; quotes made with this rate come back in
    normalised units and go through denormalize_fee().
    """
    if tokens <= 0 or period <= 0:
        raise ConfigurationError("Base rate needs positive tokens and period")
    if price < 0:
        raise ConfigurationError("Base rate price must be non-negative")
    if token_decimals > price_decimals:
        return ((price * 10 ** (token_decimals - price_decimals)) << Q) // (tokens * period)
    if token_decimals < price_decimals:
        return (price << Q) // (tokens * 10 ** (price_decimals - token_decimals) * period)
    return (price << Q) // (tokens * period)


def denormalize_fee(fee: int, token_decimals: int, price_decimals: int) -> int:
    """Convert a quote made with base_rate() into price-asset base units."""
    if token_decimals > price_decimals:
        return fee // 10 ** (token_decimals - price_decimals)
    if token_decimals < price_decimals:
        return fee * 10 ** (price_decimals - token_decimals)
    return fee
