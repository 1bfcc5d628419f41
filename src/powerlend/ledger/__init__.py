"""Ledgers — token balances, energy and the pooled reserve."""

from powerlend.ledger.energy import EnergyLedger
from powerlend.ledger.reserve import ReserveLedger
from powerlend.ledger.tokens import TokenLedger

__all__ = ["EnergyLedger", "ReserveLedger", "TokenLedger"]
