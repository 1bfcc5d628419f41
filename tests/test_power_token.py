"""Tests for power tokens — proves wrapping, locking and the transfer gate."""

import pytest

from powerlend.errors import (
    ConfigurationError,
    InsufficientBalance,
    InvalidAmount,
    TransferNotAllowed,
)
from powerlend.ledger.tokens import TokenLedger
from powerlend.models.config import ServiceConfig
from powerlend.models.ledger import Asset
from powerlend.power_token import PowerToken

ENT = Asset("ENT", 18)
DAY = 86400
T0 = 1_000_000


def _make_config(**overrides) -> ServiceConfig:
    defaults = dict(
        name="Compute",
        symbol="CPU",
        base_asset=ENT,
        base_rate=1,
        service_fee_percent=300,
        min_rental_period=0,
        max_rental_period=30 * DAY,
        min_gc_fee=0,
        gap_halving_period=DAY,
    )
    defaults.update(overrides)
    return ServiceConfig(**defaults)


@pytest.fixture
def tokens() -> TokenLedger:
    ledger = TokenLedger()
    ledger.mint("ENT", "alice", 1000)
    return ledger


@pytest.fixture
def changes() -> list:
    return []


@pytest.fixture
def token(tokens: TokenLedger, changes: list) -> PowerToken:
    return PowerToken(
        _make_config(),
        ENT,
        tokens,
        on_config_changed=lambda symbol, payload, now: changes.append((symbol, payload, now)),
    )


class TestWrapping:
    def test_wrap_is_one_to_one(self, tokens: TokenLedger, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        assert token.balance_of("alice") == 1000
        assert tokens.balance_of("ENT", "alice") == 0
        assert tokens.balance_of("ENT", token.account) == 1000

    def test_wrapped_tokens_charge_energy(self, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        assert token.energy_at("alice", T0) == 0
        assert token.energy_at("alice", T0 + DAY) == 500

    def test_unwrap_returns_enterprise_tokens(self, tokens: TokenLedger, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        token.unwrap("alice", 400, now=T0 + 1)
        assert token.balance_of("alice") == 600
        assert tokens.balance_of("ENT", "alice") == 400

    def test_wrap_more_than_held_rejected(self, token: PowerToken) -> None:
        with pytest.raises(InsufficientBalance):
            token.wrap("alice", 1001, now=T0)

    def test_unwrap_zero_rejected(self, token: PowerToken) -> None:
        with pytest.raises(InvalidAmount):
            token.unwrap("alice", 0, now=T0)

    def test_asset_shares_enterprise_decimals(self, token: PowerToken) -> None:
        assert token.asset == Asset("CPU", 18)
        assert token.symbol == "CPU"


class TestTransfers:
    def test_disabled_by_default(self, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        assert not token.is_transfer_enabled()
        with pytest.raises(TransferNotAllowed):
            token.transfer("alice", "bob", 1, now=T0 + 100 * DAY)

    def test_wrapped_tokens_move_at_once(self, token: PowerToken) -> None:
        token.enable_transfer_forever(now=T0)
        token.wrap("alice", 1000, now=T0)
        token.transfer("alice", "bob", 1000, now=T0)
        assert token.balance_of("alice") == 0
        assert token.balance_of("bob") == 1000

    def test_transfer_limited_to_unlocked_balance(self, token: PowerToken) -> None:
        token.enable_transfer_forever(now=T0)
        token.wrap("alice", 1000, now=T0)
        token.mint_rental("alice", 100, now=T0)
        assert token.available_for_transfer("alice") == 1000
        with pytest.raises(TransferNotAllowed):
            token.transfer("alice", "bob", 1001, now=T0)
        assert token.balance_of("alice") == 1100

    def test_recipient_starts_uncharged(self, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        token.enable_transfer_forever(now=T0)
        token.transfer("alice", "bob", 500, now=T0 + DAY)
        assert token.energy_at("alice", T0 + DAY) == 500
        assert token.energy_at("bob", T0 + DAY) == 0
        assert token.energy_at("bob", T0 + 2 * DAY) == 250
        assert token.available_for_transfer("bob") == 500


class TestRentalLocks:
    def test_rented_tokens_are_locked(self, token: PowerToken) -> None:
        token.enable_transfer_forever(now=T0)
        token.mint_rental("bob", 100, now=T0)
        assert token.balance_of("bob") == 100
        assert token.available_balance("bob") == 0
        with pytest.raises(InsufficientBalance):
            token.unwrap("bob", 1, now=T0 + 100 * DAY)
        with pytest.raises(TransferNotAllowed):
            token.transfer("bob", "carol", 1, now=T0 + 100 * DAY)

    def test_burn_rental_releases_lock(self, token: PowerToken) -> None:
        token.mint_rental("bob", 100, now=T0)
        token.burn_rental("bob", 100, now=T0 + DAY)
        assert token.balance_of("bob") == 0
        assert token.energy.locked_balance("bob") == 0

    def test_move_rental_moves_lock(self, token: PowerToken) -> None:
        token.mint_rental("bob", 100, now=T0)
        token.move_rental("bob", "carol", 100, now=T0 + 1)
        assert token.balance_of("carol") == 100
        assert token.energy.locked_balance("carol") == 100
        assert token.energy.locked_balance("bob") == 0


class TestAdmin:
    def test_config_change_notifies_listener(self, token: PowerToken, changes: list) -> None:
        token.set_service_fee_percent(500, now=T0)
        assert token.config.service_fee_percent == 500
        assert changes == [("CPU", {"service_fee_percent": 500}, T0)]

    def test_base_asset_reported_by_symbol(self, token: PowerToken, changes: list) -> None:
        usdc = Asset("USDC", 6)
        token.set_base_rate(42, usdc, 10, now=T0)
        assert token.config.base_asset == usdc
        assert changes[-1][1] == {"base_rate": 42, "base_asset": "USDC", "min_gc_fee": 10}

    def test_invalid_change_leaves_config(self, token: PowerToken, changes: list) -> None:
        with pytest.raises(ConfigurationError):
            token.set_rental_period_limits(10, 5, now=T0)
        assert token.config.max_rental_period == 30 * DAY
        assert changes == []

    def test_gap_halving_period_rescales_energy(self, token: PowerToken) -> None:
        token.wrap("alice", 1000, now=T0)
        token.set_gap_halving_period(DAY // 2, now=T0)
        assert token.config.gap_halving_period == DAY // 2
        assert token.energy_at("alice", T0 + DAY // 2) == 500

    def test_invalid_service_config_rejected(self, tokens: TokenLedger) -> None:
        with pytest.raises(ConfigurationError):
            PowerToken(_make_config(service_fee_percent=10_001), ENT, tokens)

    def test_snapshot_restore(self, token: PowerToken) -> None:
        snapshot = token.snapshot()
        token.enable_transfer_forever(now=T0)
        token.restore(snapshot)
        assert not token.is_transfer_enabled()

    def test_failing_listener_rolls_back_change(self, tokens: TokenLedger) -> None:
        def reject(symbol, payload, now) -> None:
            raise RuntimeError("audit unavailable")

        token = PowerToken(_make_config(), ENT, tokens, on_config_changed=reject)
        token.wrap("alice", 1000, now=T0)
        with pytest.raises(RuntimeError):
            token.set_gap_halving_period(DAY // 2, now=T0)
        assert token.config.gap_halving_period == DAY
        assert token.energy.gap_halving_period == DAY
        assert token.balance_of("alice") == 1000
