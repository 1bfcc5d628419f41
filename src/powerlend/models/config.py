"""Service and enterprise configuration models.

Percentages are basis points (300 == 3%). Periods are seconds. Rates are
Q64.64 integers built with powerlend.pricing.base_rate().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from powerlend.errors import ConfigurationError
from powerlend.math.fixed_point import PERCENT_BASE
from powerlend.models.ledger import Asset


@dataclass
class ServiceConfig:
    """Configuration of one registered service (power token).

    Mutable only through the PowerToken admin setters.
    """
    name: str
    symbol: str
    base_asset: Asset
    base_rate: int
    service_fee_percent: int
    min_rental_period: int
    max_rental_period: int
    min_gc_fee: int
    gap_halving_period: int
    transfer_enabled: bool = False

    def validate(self) -> None:
        if not self.name:
            raise ConfigurationError("Service name must not be empty")
        if not self.symbol:
            raise ConfigurationError("Service symbol must not be empty")
        if self.base_rate < 0:
            raise ConfigurationError("Base rate must be non-negative")
        if not (0 <= self.service_fee_percent <= PERCENT_BASE):
            raise ConfigurationError(
                f"Service fee percent must be in [0, {PERCENT_BASE}], "
                f"got {self.service_fee_percent}"
            )
        if self.min_rental_period < 0 or self.max_rental_period < self.min_rental_period:
            raise ConfigurationError(
                f"Invalid rental period limits: "
                f"[{self.min_rental_period}, {self.max_rental_period}]"
            )
        if self.min_gc_fee < 0:
            raise ConfigurationError("Minimum GC fee must be non-negative")
        if self.gap_halving_period <= 0:
            raise ConfigurationError("Gap halving period must be positive")


@dataclass
class EnterpriseConfig:
    """Enterprise-wide parameters shared by all of its services."""
    name: str
    enterprise_asset: Asset
    gc_fee_percent: int = 0
    renter_only_return_period: int = 12 * 3600
    enterprise_only_collection_period: int = 12 * 3600
    streaming_reserve_halving_period: int = 7 * 86400
    streaming_immediate_percent: int = 0
    collector: Optional[str] = None

    def __post_init__(self) -> None:
        if self.collector is None:
            self.collector = f"collector:{self.name}"

    @property
    def vault(self) -> str:
        """Account holding the enterprise's tokens."""
        return f"enterprise:{self.name}"

    def validate(self) -> None:
        if not self.name:
            raise ConfigurationError("Enterprise name must not be empty")
        if not (0 <= self.gc_fee_percent <= PERCENT_BASE):
            raise ConfigurationError("GC fee percent out of range")
        if not (0 <= self.streaming_immediate_percent <= PERCENT_BASE):
            raise ConfigurationError("Streaming immediate percent out of range")
        if self.renter_only_return_period < 0 or self.enterprise_only_collection_period < 0:
            raise ConfigurationError("Return periods must be non-negative")
        if self.streaming_reserve_halving_period <= 0:
            raise ConfigurationError("Streaming reserve halving period must be positive")
