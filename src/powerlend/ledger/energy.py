"""Energy ledger — per-holder charge and locked balances of a power token.

Energy charges toward the holder's balance along a half-life curve: the
gap between balance and energy halves every gap-halving period. A fresh
wrap of 1000 tokens therefore carries 500 energy after one period and 750
after two. Services read energy to meter access; it does not restrict
movement of the holder's own tokens.

Key rules:
- energy_at(t) <= balance at all times.
- A balance increase keeps the current energy and re-anchors the gap, so
  incoming tokens start uncharged.
- A balance decrease caps energy at the new balance.
- An account whose balance reaches zero is removed.
- Free transfers need the service's transfer policy enabled and are limited
  to the unlocked balance. Locked tokens (backing live rentals) only move
  with their rental.

The token layer must call on_transfer() after every mint, burn and
transfer of the power token; balances are read back from the TokenLedger.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Any, Dict, Optional

from powerlend.errors import DomainError, InvalidAmount, TransferNotAllowed
from powerlend.ledger.tokens import TokenLedger
from powerlend.math.decay import DecayAnchor
from powerlend.models.ledger import EnergyAccount

logger = logging.getLogger(__name__)


class EnergyLedger:
    """Energy anchors and locked balances for one power token.

    Usage:
        energy = EnergyLedger(tokens, "PWR", gap_halving_period=86400)
        tokens.mint("PWR", "alice", 1000)
        energy.on_transfer(None, "alice", 1000, now=t0)
        energy.energy_at("alice", t0 + 86400)  # 500
    """

    def __init__(self, tokens: TokenLedger, asset: str, gap_halving_period: int) -> None:
        self._tokens = tokens
        self._asset = asset
        self._gap_halving_period = gap_halving_period
        self._accounts: Dict[str, EnergyAccount] = {}
        self._locked: Dict[str, int] = {}

    @property
    def gap_halving_period(self) -> int:
        return self._gap_halving_period

    def set_gap_halving_period(self, period: int) -> None:
        """Apply a new half-life to every existing anchor.

        Anchors keep their reference point; only the rate of charge changes.
        """
        if period <= 0:
            raise DomainError(f"Gap halving period must be positive, got {period}")
        self._gap_halving_period = period
        for owner, account in self._accounts.items():
            self._accounts[owner] = dataclasses.replace(
                account,
                anchor=dataclasses.replace(account.anchor, half_life=period),
            )

    # ------------------------------------------------------------------
    # Hook
    # ------------------------------------------------------------------

    def on_transfer(
        self,
        sender: Optional[str],
        recipient: Optional[str],
        amount: int,
        now: int,
    ) -> None:
        """Re-anchor both parties after amount moved between them.

        sender is None for a mint, recipient is None for a burn.
        """
        logger.debug("%s moved %d: %s -> %s", self._asset, amount, sender, recipient)
        if sender is not None:
            self._reanchor(sender, now)
        if recipient is not None and recipient != sender:
            self._reanchor(recipient, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def account(self, owner: str) -> Optional[EnergyAccount]:
        return self._accounts.get(owner)

    def energy_at(self, owner: str, t: int) -> int:
        account = self._accounts.get(owner)
        if account is None:
            return 0
        return account.energy_at(t)

    def locked_balance(self, owner: str) -> int:
        return self._locked.get(owner, 0)

    def available_balance(self, owner: str) -> int:
        """Balance not backing a live rental."""
        balance = self._tokens.balance_of(self._asset, owner)
        return max(0, balance - self.locked_balance(owner))

    def available_for_transfer(self, owner: str) -> int:
        return self.available_balance(owner)

    def authorize_transfer(self, owner: str, amount: int, transfer_enabled: bool) -> None:
        """Raise TransferNotAllowed unless owner may move amount freely."""
        if not transfer_enabled:
            raise TransferNotAllowed(f"Transfers of {self._asset} are disabled")
        available = self.available_for_transfer(owner)
        if amount > available:
            raise TransferNotAllowed(
                f"{owner} may transfer at most {available} {self._asset}, "
                f"requested {amount}"
            )

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def lock(self, owner: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("Lock amount must be positive")
        self._locked[owner] = self._locked.get(owner, 0) + amount

    def unlock(self, owner: str, amount: int) -> None:
        locked = self._locked.get(owner, 0)
        if amount <= 0 or amount > locked:
            raise InvalidAmount(f"Cannot unlock {amount}, {owner} has {locked} locked")
        if locked == amount:
            del self._locked[owner]
        else:
            self._locked[owner] = locked - amount

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return copy.deepcopy(self._accounts), dict(self._locked), self._gap_halving_period

    def restore(self, snapshot: Any) -> None:
        accounts, locked, period = snapshot
        self._accounts = copy.deepcopy(accounts)
        self._locked = dict(locked)
        self._gap_halving_period = period

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reanchor(self, owner: str, now: int) -> None:
        balance = self._tokens.balance_of(self._asset, owner)
        previous = self._accounts.get(owner)
        energy = previous.energy_at(now) if previous is not None else 0
        if balance == 0:
            self._accounts.pop(owner, None)
            return
        energy = min(energy, balance)
        self._accounts[owner] = EnergyAccount(
            owner=owner,
            balance=balance,
            anchor=DecayAnchor(
                reference_time=now,
                reference_value=balance - energy,
                half_life=self._gap_halving_period,
            ),
        )
        logger.debug(
            "energy %s/%s: balance=%d energy=%d", self._asset, owner, balance, energy
        )
