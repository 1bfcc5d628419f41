"""Error taxonomy for the rental engine.

Every failure is a local, synchronous validation error. Nothing is retried
in the background: the caller re-quotes and resubmits. All errors derive
from ValueError so callers that only care about "rejected input" can catch
that.
"""

from __future__ import annotations


class PowerlendError(ValueError):
    """Base class for all engine errors."""


class DomainError(PowerlendError):
    """Bad math input: non-positive half-life, time before the anchor."""


class InvalidAmount(PowerlendError):
    """Amount is zero, negative or exceeds what the record holds."""


class InsufficientLiquidity(PowerlendError):
    """Withdrawal exceeds the unused part of the reserve."""


class InsufficientCapacity(PowerlendError):
    """Rental exceeds the capacity the pricing curve can serve."""


class SlippageExceeded(PowerlendError):
    """Quoted payment exceeds the caller-supplied bound."""


class UnsupportedPair(PowerlendError):
    """Converter cannot price or execute the requested asset pair."""


class InvalidCaller(PowerlendError):
    """Caller is not permitted to act on the record at this time."""


class TransferNotAllowed(PowerlendError):
    """Transfer blocked by policy or by the holder's energy."""


class InsufficientBalance(PowerlendError):
    """Token balance too small for the requested debit."""


class InvalidRentalPeriod(PowerlendError):
    """Rental period outside the service's configured limits."""


class PaymentAssetDisabled(PowerlendError):
    """Payment attempted in an asset the enterprise does not accept."""


class EnterpriseShutdown(PowerlendError):
    """Operation disabled because the enterprise is winding down."""


class ConfigurationError(PowerlendError):
    """Invalid service, enterprise or policy configuration."""


class UnknownRecord(PowerlendError):
    """No stake, rental or service exists under the given key."""
