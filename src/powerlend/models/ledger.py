"""Ledger models — assets, reserve state, stakes, rentals and energy.

All monetary values are integers in token base units. No floats in finance.

Invariants enforced by these models and the ledgers that own them:
- reserve >= 0 at all times
- total_shares == 0 iff nobody holds a stake position with shares
- a rental's end_time never precedes its start_time
- a holder's energy never exceeds their balance
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

from powerlend.math.decay import DecayAnchor


@dataclass(frozen=True)
class Asset:
    """A fungible token, identified by symbol."""
    symbol: str
    decimals: int = 18

    def __str__(self) -> str:
        return self.symbol


@dataclass
class StreamingPayment:
    """Rental income not yet released into the reserve.

    anchor.reference_value is the unreleased remainder at
    anchor.reference_time; it decays with the streaming half-life and
    the decayed part is what stakers have earned.
    """
    anchor: DecayAnchor

    def remaining_at(self, t: int) -> int:
        return self.anchor.value_at(t)

    def released_at(self, t: int) -> int:
        return self.anchor.released_at(t)


@dataclass
class ReserveState:
    """The single mutable aggregate behind the reserve ledger."""
    reserve: int = 0
    used_reserve: int = 0
    total_shares: int = 0
    streaming: List[StreamingPayment] = field(default_factory=list)
    flushed_at: int = 0


class StakeStatus(str, enum.Enum):
    """Lifecycle of a stake position.

    ACTIVE → INERT      (principal decreased to zero, reward unclaimed)
    ACTIVE → CLOSED     (unstaked)
    INERT → ACTIVE      (stake increased again)
    INERT → CLOSED      (unstaked, or reward claimed leaving no shares)
    """
    ACTIVE = "active"
    INERT = "inert"
    CLOSED = "closed"


@dataclass
class StakePosition:
    """Shares-based ownership of the pooled reserve.

    amount is the tracked principal; the redeemable value at time t is
    shares * reserve(t) / total_shares(t).
    """
    stake_id: int
    owner: str
    amount: int
    shares: int
    created_at: int

    @property
    def status(self) -> StakeStatus:
        if self.amount > 0:
            return StakeStatus.ACTIVE
        if self.shares > 0:
            return StakeStatus.INERT
        return StakeStatus.CLOSED


@dataclass
class RentalAgreement:
    """An active rental of power tokens against the reserve.

    Mutable: extend_rental moves end_time forward, transfer_rental
    changes the renter (current receipt holder).
    """
    rental_id: int
    power_token: str
    renter: str
    rental_amount: int
    start_time: int
    end_time: int
    gc_fee: int = 0

    def __post_init__(self) -> None:
        if self.end_time < self.start_time:
            raise ValueError(
                f"Rental end {self.end_time} precedes start {self.start_time}"
            )

    def is_expired(self, now: int) -> bool:
        return now > self.end_time


@dataclass(frozen=True)
class RentalFeeQuote:
    """Breakdown of a rental payment.

    pool_fee, service_fee, gc_fee and total are in payment-asset units.
    pool_fee_enterprise and gc_fee_enterprise are what the reserve and
    the returner's deposit receive in enterprise-asset units.

    Invariant: total == pool_fee + service_fee + gc_fee
    """
    payment_asset: str
    pool_fee: int
    service_fee: int
    gc_fee: int
    total: int
    pool_fee_enterprise: int
    gc_fee_enterprise: int


@dataclass
class EnergyAccount:
    """Per-holder energy state for one power token.

    Energy charges toward the balance: the gap between balance and energy
    halves every gap-halving period. anchor.reference_value is that gap
    at the last balance-changing event.
    """
    owner: str
    balance: int
    anchor: DecayAnchor

    def energy_at(self, t: int) -> int:
        return self.balance - self.anchor.value_at(t)


@dataclass(frozen=True)
class StakeInfo:
    """Read-only view of a stake position."""
    stake_id: int
    owner: str
    amount: int
    shares: int
    reward: int
    status: StakeStatus


@dataclass(frozen=True)
class ReserveInfo:
    """Observable state of the reserve at a point in time."""
    reserve: int
    used_reserve: int
    available_reserve: int
    total_shares: int
    streaming_remaining: int
    timestamp: int
    shutdown: bool = False
    streaming_halving_period: Optional[int] = None
