"""Core data models for powerlend."""

from powerlend.models.config import EnterpriseConfig, ServiceConfig
from powerlend.models.ledger import (
    Asset,
    EnergyAccount,
    RentalAgreement,
    RentalFeeQuote,
    ReserveInfo,
    ReserveState,
    StakeInfo,
    StakePosition,
    StakeStatus,
    StreamingPayment,
)

__all__ = [
    "Asset",
    "EnergyAccount",
    "EnterpriseConfig",
    "RentalAgreement",
    "RentalFeeQuote",
    "ReserveInfo",
    "ReserveState",
    "ServiceConfig",
    "StakeInfo",
    "StakePosition",
    "StakeStatus",
    "StreamingPayment",
]
