"""Power token — one registered service of an enterprise.

A power token is a 1:1 wrapper of the enterprise asset that grants access
to a service. Holders get it either by wrapping enterprise tokens (swap-in)
or by renting it against the enterprise reserve. Rented tokens are locked
to the renter until the rental is returned.

Key rules:
- wrap/unwrap are 1:1 with the enterprise asset; wrapped tokens are held
  in the power token's own account.
- Only unlocked balance can be unwrapped or transferred.
- Free transfers are disabled until enable_transfer_forever().
- Every mint, burn and transfer re-anchors energy for both parties.
- Holder and admin mutations run inside the owning enterprise's atomic
  section, so they are serialised with every other ledger mutation.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Dict, Iterator, Optional

from powerlend.errors import InvalidAmount, InsufficientBalance
from powerlend.ledger.energy import EnergyLedger
from powerlend.ledger.tokens import TokenLedger
from powerlend.models.config import ServiceConfig
from powerlend.models.ledger import Asset

logger = logging.getLogger(__name__)

ConfigListener = Callable[[str, Dict[str, Any], int], None]
AtomicSection = Callable[[Optional[int]], ContextManager[int]]


class PowerToken:
    """Service configuration, balances and energy of one power token.

    Usage:
        token = enterprise.register_service(...)
        token.wrap("alice", 1000, now=t0)
        token.energy_at("alice", t0 + token.config.gap_halving_period)  # 500
    """

    def __init__(
        self,
        config: ServiceConfig,
        enterprise_asset: Asset,
        tokens: TokenLedger,
        on_config_changed: Optional[ConfigListener] = None,
        atomic: Optional[AtomicSection] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.enterprise_asset = enterprise_asset
        self.asset = Asset(symbol=config.symbol, decimals=enterprise_asset.decimals)
        self.account = f"power:{config.symbol}"
        self._tokens = tokens
        self._energy = EnergyLedger(tokens, config.symbol, config.gap_halving_period)
        self._on_config_changed = on_config_changed
        self._atomic = atomic if atomic is not None else self._local_atomic
        self._lock = threading.RLock()

    @property
    def symbol(self) -> str:
        return self.config.symbol

    @property
    def energy(self) -> EnergyLedger:
        return self._energy

    # ------------------------------------------------------------------
    # Holder operations
    # ------------------------------------------------------------------

    def wrap(self, holder: str, amount: int, now: Optional[int] = None) -> None:
        """Swap enterprise tokens into power tokens 1:1."""
        with self._atomic(now) as now:
            self._tokens.transfer(self.enterprise_asset.symbol, holder, self.account, amount)
            self._tokens.mint(self.symbol, holder, amount)
            self._energy.on_transfer(None, holder, amount, now)
        logger.debug("%s wrapped %d %s", holder, amount, self.symbol)

    def unwrap(self, holder: str, amount: int, now: Optional[int] = None) -> None:
        """Swap unlocked power tokens back into enterprise tokens 1:1."""
        with self._atomic(now) as now:
            if amount <= 0:
                raise InvalidAmount("Unwrap amount must be positive")
            available = self._energy.available_balance(holder)
            if amount > available:
                raise InsufficientBalance(
                    f"{holder} can unwrap at most {available} {self.symbol}, requested {amount}"
                )
            self._tokens.burn(self.symbol, holder, amount)
            self._energy.on_transfer(holder, None, amount, now)
            self._tokens.transfer(self.enterprise_asset.symbol, self.account, holder, amount)

    def transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        now: Optional[int] = None,
    ) -> None:
        with self._atomic(now) as now:
            if amount <= 0:
                raise InvalidAmount("Transfer amount must be positive")
            self._energy.authorize_transfer(sender, amount, self.config.transfer_enabled)
            self._tokens.transfer(self.symbol, sender, recipient, amount)
            self._energy.on_transfer(sender, recipient, amount, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, holder: str) -> int:
        return self._tokens.balance_of(self.symbol, holder)

    def energy_at(self, holder: str, t: int) -> int:
        return self._energy.energy_at(holder, t)

    def available_balance(self, holder: str) -> int:
        return self._energy.available_balance(holder)

    def available_for_transfer(self, holder: str) -> int:
        return self._energy.available_for_transfer(holder)

    def is_transfer_enabled(self) -> bool:
        return self.config.transfer_enabled

    # ------------------------------------------------------------------
    # Rental plumbing (driven by the enterprise)
    # ------------------------------------------------------------------

    def mint_rental(self, renter: str, amount: int, now: int) -> None:
        self._tokens.mint(self.symbol, renter, amount)
        self._energy.on_transfer(None, renter, amount, now)
        self._energy.lock(renter, amount)

    def burn_rental(self, renter: str, amount: int, now: int) -> None:
        # Locked since mint_rental, so the renter still holds every rented token.
        self._energy.unlock(renter, amount)
        self._tokens.burn(self.symbol, renter, amount)
        self._energy.on_transfer(renter, None, amount, now)
    def move_rental(self, sender: str, recipient: str, amount: int, now: int) -> None:
        self._energy.unlock(sender, amount)
        self._tokens.transfer(self.symbol, sender, recipient, amount)
        self._energy.on_transfer(sender, recipient, amount, now)
        self._energy.lock(recipient, amount)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def enable_transfer_forever(self, now: Optional[int] = None) -> None:
        """Allow free transfers. There is no way to disable them again."""
        self._update_config(now, transfer_enabled=True)

    def set_base_rate(
        self,
        base_rate: int,
        base_asset: Asset,
        min_gc_fee: int,
        now: Optional[int] = None,
    ) -> None:
        self._update_config(
            now,
            base_rate=base_rate,
            base_asset=base_asset,
            min_gc_fee=min_gc_fee,
        )

    def set_service_fee_percent(self, percent: int, now: Optional[int] = None) -> None:
        self._update_config(now, service_fee_percent=percent)

    def set_rental_period_limits(
        self,
        min_rental_period: int,
        max_rental_period: int,
        now: Optional[int] = None,
    ) -> None:
        self._update_config(
            now,
            min_rental_period=min_rental_period,
            max_rental_period=max_rental_period,
        )

    def set_gap_halving_period(self, period: int, now: Optional[int] = None) -> None:
        with self._atomic(now) as now:
            self._update_config(now, gap_halving_period=period)
            self._energy.set_gap_halving_period(period)

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return copy.deepcopy(self.config), self._energy.snapshot()

    def restore(self, snapshot: Any) -> None:
        config, energy = snapshot
        self.config = copy.deepcopy(config)
        self._energy.restore(energy)

    @contextmanager
    def _local_atomic(self, now: Optional[int] = None) -> Iterator[int]:
        """Atomic section for a power token not owned by an enterprise."""
        with self._lock:
            tokens, own = self._tokens.snapshot(), self.snapshot()
            try:
                yield _resolve_now(now)
            except Exception:
                self._tokens.restore(tokens)
                self.restore(own)
                raise

    def _update_config(self, now: Optional[int], **changes: Any) -> None:
        with self._atomic(now) as now:
            updated = dataclasses.replace(self.config, **changes)
            updated.validate()
            self.config = updated
            if self._on_config_changed is not None:
                payload = {
                    key: (value.symbol if isinstance(value, Asset) else value)
                    for key, value in changes.items()
                }
                self._on_config_changed(self.symbol, payload, now)


def _resolve_now(now: Optional[int]) -> int:
    if now is None:
        return int(time.time())
    return now
