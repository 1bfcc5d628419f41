"""Token ledger — in-memory balances for every asset the engine touches.

Stands in for the external token layer: enterprise tokens, payment
assets and power tokens are all plain (asset, account) -> balance
entries. Accounts are opaque strings.

Key rules:
- Balances never go negative; an overdraft raises InsufficientBalance.
- Amounts must be positive.
- total_supply(asset) always equals the sum of the asset's balances.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Tuple

from powerlend.errors import InsufficientBalance, InvalidAmount


class TokenLedger:
    """Multi-asset balance book.

    Usage:
        tokens = TokenLedger()
        tokens.mint("ENT", "alice", 1000)
        tokens.transfer("ENT", "alice", "bob", 250)
        tokens.balance_of("ENT", "bob")  # 250
    """

    def __init__(self) -> None:
        self._balances: Dict[str, Dict[str, int]] = {}
        self._supply: Dict[str, int] = {}

    def balance_of(self, asset: str, account: str) -> int:
        return self._balances.get(asset, {}).get(account, 0)

    def total_supply(self, asset: str) -> int:
        return self._supply.get(asset, 0)

    def holders(self, asset: str) -> Dict[str, int]:
        """Copy of the non-zero balances of an asset."""
        return dict(self._balances.get(asset, {}))

    def mint(self, asset: str, account: str, amount: int) -> None:
        self._check_amount(amount)
        self._credit(asset, account, amount)
        self._supply[asset] = self._supply.get(asset, 0) + amount

    def burn(self, asset: str, account: str, amount: int) -> None:
        self._check_amount(amount)
        self._debit(asset, account, amount)
        self._supply[asset] -= amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        self._check_amount(amount)
        self._debit(asset, sender, amount)
        self._credit(asset, recipient, amount)

    def snapshot(self) -> Tuple[Dict[str, Dict[str, int]], Dict[str, int]]:
        return copy.deepcopy(self._balances), dict(self._supply)

    def restore(self, snapshot: Any) -> None:
        balances, supply = snapshot
        self._balances = copy.deepcopy(balances)
        self._supply = dict(supply)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _check_amount(amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Token amount must be positive, got {amount}")

    def _credit(self, asset: str, account: str, amount: int) -> None:
        book = self._balances.setdefault(asset, {})
        book[account] = book.get(account, 0) + amount

    def _debit(self, asset: str, account: str, amount: int) -> None:
        book = self._balances.setdefault(asset, {})
        balance = book.get(account, 0)
        if balance < amount:
            raise InsufficientBalance(
                f"{account} holds {balance} {asset}, needs {amount}"
            )
        remaining = balance - amount
        if remaining:
            book[account] = remaining
        else:
            del book[account]
