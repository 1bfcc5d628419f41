"""Asset converters — express and settle fees in alternate payment assets.

A converter quotes (estimate_convert) and executes (convert) the exchange
of one asset into another. Execution follows a push model: the caller has
already transferred the source amount to converter.account, and the
converter pays the target amount out of its own balance to the recipient.

Key rules:
- Same-asset conversion is the identity, with no fee, on every converter.
- Any other pair the converter does not know raises UnsupportedPair.
- Quotes and executions agree exactly for the same inputs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Tuple

from powerlend.errors import InvalidAmount, UnsupportedPair
from powerlend.ledger.tokens import TokenLedger
from powerlend.models.ledger import Asset

logger = logging.getLogger(__name__)


class Converter(ABC):
    """Quote and execute asset-to-asset conversion against a TokenLedger."""

    def __init__(self, tokens: TokenLedger, account: str) -> None:
        self._tokens = tokens
        self.account = account

    @abstractmethod
    def estimate_convert(self, source: Asset, amount: int, target: Asset) -> int:
        """Amount of target received for amount of source."""

    def convert(self, source: Asset, amount: int, target: Asset, recipient: str) -> int:
        """Pay recipient the converted amount.

        The caller must have transferred amount of source to self.account.

        Returns:
            The amount of target paid to recipient.
        """
        if amount <= 0:
            raise InvalidAmount("Conversion amount must be positive")
        out = self.estimate_convert(source, amount, target)
        if out > 0:
            self._tokens.transfer(target.symbol, self.account, recipient, out)
        logger.debug("converted %d %s -> %d %s for %s", amount, source, out, target, recipient)
        return out


class DefaultConverter(Converter):
    """Identity-only converter: the enterprise accepts its own asset."""

    def __init__(self, tokens: TokenLedger, account: str = "converter:default") -> None:
        super().__init__(tokens, account)

    def estimate_convert(self, source: Asset, amount: int, target: Asset) -> int:
        if source.symbol != target.symbol:
            raise UnsupportedPair(f"Cannot convert {source} to {target}")
        return amount


class FixedRateConverter(Converter):
    """Converter with administratively set exchange rates.

    Usage:
        converter = FixedRateConverter(tokens)
        converter.set_rate(usdc, ent, Decimal("0.35"))  # 1 USDC = 0.35 ENT
        converter.estimate_convert(usdc, 1_000_000, ent)  # 0.35e18
    """

    def __init__(self, tokens: TokenLedger, account: str = "converter:fixed") -> None:
        super().__init__(tokens, account)
        self._rates: Dict[Tuple[str, str], Tuple[int, int]] = {}

    def set_rate(self, source: Asset, target: Asset, rate: Decimal) -> None:
        """Register "rate whole target tokens per whole source token".

        The inverse pair is registered at the same time.
        """
        rate = Decimal(str(rate))
        if rate <= 0:
            raise InvalidAmount(f"Conversion rate must be positive, got {rate}")
        numerator, denominator = rate.as_integer_ratio()
        self._rates[(source.symbol, target.symbol)] = (
            numerator * 10 ** target.decimals,
            denominator * 10 ** source.decimals,
        )
        self._rates[(target.symbol, source.symbol)] = (
            denominator * 10 ** source.decimals,
            numerator * 10 ** target.decimals,
        )

    def estimate_convert(self, source: Asset, amount: int, target: Asset) -> int:
        if source.symbol == target.symbol:
            return amount
        ratio = self._rates.get((source.symbol, target.symbol))
        if ratio is None:
            raise UnsupportedPair(f"No rate registered for {source} -> {target}")
        numerator, denominator = ratio
        return amount * numerator // denominator
