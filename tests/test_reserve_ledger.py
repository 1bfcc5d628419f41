"""Tests for the reserve ledger — proves share accounting and streaming hold."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from powerlend.errors import (
    DomainError,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidCaller,
    UnknownRecord,
)
from powerlend.ledger.reserve import ReserveLedger
from powerlend.math.decay import half_life
from powerlend.models.ledger import StakeStatus
from powerlend.pricing.curves import PoleSlopeCurve, base_rate

PERIOD = 7 * 86400
T0 = 1_000_000


@pytest.fixture
def ledger() -> ReserveLedger:
    return ReserveLedger(streaming_halving_period=PERIOD, created_at=T0)


class TestStaking:
    def test_lone_staker_gets_exact_amount_back(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        assert position.shares == 1000
        assert ledger.unstake(position.stake_id, T0 + 10) == 1000
        assert ledger.total_shares == 0

    def test_income_is_shared_pro_rata(self, ledger: ReserveLedger) -> None:
        alice = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        assert ledger.reserve_at(T0 + PERIOD) == 1050

        bob = ledger.stake("bob", 1050, T0 + PERIOD)
        assert bob.shares == 1000

        later = T0 + 2 * PERIOD
        assert ledger.reserve_at(later) == 2125
        assert ledger.stake_value(alice.stake_id, later) == 1062
        assert ledger.stake_value(bob.stake_id, later) == 1062

    def test_late_staker_cannot_capture_streamed_fee(self, ledger: ReserveLedger) -> None:
        ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(1000, T0)
        bob = ledger.stake("bob", 1000, T0)
        assert ledger.staking_reward(bob.stake_id, T0) == 0

    def test_increase_stake(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.increase_stake(position.stake_id, 500, T0)
        assert position.amount == 1500
        assert position.shares == 1500

    def test_decrease_burns_ceiled_shares(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        ledger.decrease_stake(position.stake_id, 100, T0 + PERIOD)
        # ceil(100 * 1000 / 1050)
        assert position.shares == 1000 - 96
        assert position.amount == 900

    def test_decrease_to_zero_leaves_inert_position(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        ledger.decrease_stake(position.stake_id, 1000, T0 + PERIOD)
        assert position.shares == 47
        assert position.status == StakeStatus.INERT
        assert ledger.staking_reward(position.stake_id, T0 + PERIOD) == 50

    def test_decrease_more_than_principal_rejected(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        with pytest.raises(InvalidAmount):
            ledger.decrease_stake(position.stake_id, 1001, T0)

    def test_zero_stake_rejected(self, ledger: ReserveLedger) -> None:
        with pytest.raises(InvalidAmount):
            ledger.stake("alice", 0, T0)

    def test_unknown_stake(self, ledger: ReserveLedger) -> None:
        with pytest.raises(UnknownRecord, match="Unknown stake ID"):
            ledger.get_stake(42)

    def test_transfer_stake_changes_owner(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.transfer_stake(position.stake_id, "bob")
        assert ledger.get_stake(position.stake_id).owner == "bob"

    def test_last_unstake_takes_unreleased_income(self, ledger: ReserveLedger) -> None:
        alice = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        # 1050 released plus the 50 still streaming
        assert ledger.unstake(alice.stake_id, T0 + PERIOD) == 1100
        assert ledger.total_shares == 0
        assert ledger.streaming_remaining(T0 + PERIOD) == 0
        assert ledger.reserve_at(T0 + 10 * PERIOD) == 0

    def test_next_staker_starts_from_empty_pool(self, ledger: ReserveLedger) -> None:
        alice = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        ledger.unstake(alice.stake_id, T0 + PERIOD)
        bob = ledger.stake("bob", 1000, T0 + PERIOD)
        assert bob.shares == 1000
        assert ledger.stake_value(bob.stake_id, T0 + 200 * PERIOD) == 1000

    def test_decrease_burning_last_shares_closes_pool(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        assert ledger.decrease_stake(position.stake_id, 1000, T0) == 1100
        assert ledger.total_shares == 0
        assert ledger.reserve_at(T0 + PERIOD) == 0
        with pytest.raises(UnknownRecord):
            ledger.get_stake(position.stake_id)


class TestClaim:
    def test_claim_pays_reward_and_rebases(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        reward = ledger.claim_staking_reward(position.stake_id, T0 + PERIOD)
        assert reward == 50
        assert position.shares == 952
        assert ledger.stake_value(position.stake_id, T0 + PERIOD) == 1000

    def test_claim_without_reward_changes_nothing(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        assert ledger.claim_staking_reward(position.stake_id, T0 + PERIOD) == 0
        assert position.shares == 1000
        assert ledger.reserve_at(T0 + PERIOD) == 1000

    def test_claim_on_inert_position_closes_it(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        ledger.decrease_stake(position.stake_id, 1000, T0 + PERIOD)
        # released reward 50 plus the 50 still streaming to the last shares
        assert ledger.claim_staking_reward(position.stake_id, T0 + PERIOD) == 100
        assert ledger.total_shares == 0
        assert ledger.reserve_at(T0 + 10 * PERIOD) == 0
        with pytest.raises(UnknownRecord):
            ledger.get_stake(position.stake_id)


class TestLiquidity:
    def test_used_reserve_blocks_withdrawal(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.open_rental("PWR", "bob", 600, T0, T0 + 100)
        with pytest.raises(InsufficientLiquidity):
            ledger.decrease_stake(position.stake_id, 500, T0)
        with pytest.raises(InsufficientLiquidity):
            ledger.unstake(position.stake_id, T0)
        ledger.decrease_stake(position.stake_id, 400, T0)

    def test_returned_rental_frees_blocked_unstake(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        rental = ledger.open_rental("PWR", "bob", 600, T0, T0 + 100)
        with pytest.raises(InsufficientLiquidity):
            ledger.unstake(position.stake_id, T0 + 50)
        ledger.close_rental(rental.rental_id, T0 + 100)
        assert ledger.unstake(position.stake_id, T0 + 100) == 1000

    def test_streamed_income_frees_blocked_decrease(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.open_rental("PWR", "bob", 600, T0, T0 + 10 * PERIOD)
        ledger.record_rental_payment(400, T0)
        with pytest.raises(InsufficientLiquidity):
            ledger.decrease_stake(position.stake_id, 500, T0)
        # 200 released after one half-life: available 1200 - 600
        assert ledger.decrease_stake(position.stake_id, 500, T0 + PERIOD) == 500
        assert position.amount == 500
        # ceil(500 * 1000 / 1200)
        assert position.shares == 1000 - 417

    def test_liquidity_check_can_be_lifted(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        ledger.open_rental("PWR", "bob", 600, T0, T0 + 100)
        assert ledger.unstake(position.stake_id, T0, enforce_liquidity=False) == 1000

    def test_available_reserve(self, ledger: ReserveLedger) -> None:
        ledger.stake("alice", 1000, T0)
        rental = ledger.open_rental("PWR", "bob", 600, T0, T0 + 100)
        assert ledger.available_reserve(T0) == 400
        ledger.close_rental(rental.rental_id, T0 + 100)
        assert ledger.available_reserve(T0 + 100) == 1000


class TestStreaming:
    def test_same_half_life_payments_merge(self, ledger: ReserveLedger) -> None:
        ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        ledger.record_rental_payment(100, T0 + PERIOD)
        assert ledger.streaming_remaining(T0 + PERIOD) == 150
        assert ledger.streaming_remaining(T0 + 2 * PERIOD) == 75
        assert ledger.reserve_at(T0 + 2 * PERIOD) == 1125

    def test_different_half_lives_stream_separately(self, ledger: ReserveLedger) -> None:
        ledger.record_rental_payment(100, T0)
        ledger.streaming_halving_period = PERIOD // 7
        ledger.record_rental_payment(100, T0)
        day = T0 + PERIOD // 7
        assert ledger.streaming_remaining(day) == half_life(T0, 100, PERIOD, day) + 50
        assert ledger.streaming_remaining(T0 + PERIOD) == 50 + (100 >> 7)

    def test_immediate_share_credited_at_once(self) -> None:
        ledger = ReserveLedger(
            streaming_halving_period=PERIOD,
            streaming_immediate_percent=2000,
            created_at=T0,
        )
        ledger.stake("alice", 1000, T0)
        ledger.record_rental_payment(100, T0)
        assert ledger.reserve_at(T0) == 1020
        assert ledger.streaming_remaining(T0) == 80

    def test_flush_reports_released_amount(self, ledger: ReserveLedger) -> None:
        ledger.record_rental_payment(100, T0)
        assert ledger.flush(T0 + PERIOD) == 50
        assert ledger.flush(T0 + PERIOD) == 0

    def test_time_cannot_go_backwards(self, ledger: ReserveLedger) -> None:
        ledger.flush(T0 + 10)
        with pytest.raises(DomainError):
            ledger.flush(T0 + 9)

    def test_negative_payment_rejected(self, ledger: ReserveLedger) -> None:
        with pytest.raises(InvalidAmount):
            ledger.record_rental_payment(-1, T0)


class TestRentals:
    def test_quote_uses_used_reserve(self, ledger: ReserveLedger) -> None:
        ledger.stake("alice", 10 ** 24, T0)
        rate = base_rate(100 * 10 ** 18, 86400, 3 * 10 ** 18)
        curve = PoleSlopeCurve()
        idle = ledger.quote_rental(curve, rate, 10 ** 22, 86400, T0)
        ledger.open_rental("PWR", "bob", 5 * 10 ** 23, T0, T0 + 86400)
        busy = ledger.quote_rental(curve, rate, 10 ** 22, 86400, T0)
        assert busy > idle
        assert ledger.quote_rental(curve, rate, 10 ** 22, 86400, T0, exclude=5 * 10 ** 23) == idle

    def test_extend_expired_rental_counts_from_now(self, ledger: ReserveLedger) -> None:
        rental = ledger.open_rental("PWR", "bob", 10, T0, T0 + 100)
        ledger.extend_rental(rental.rental_id, 10, T0 + 150)
        assert rental.end_time == T0 + 160

    def test_extend_live_rental_counts_from_end(self, ledger: ReserveLedger) -> None:
        rental = ledger.open_rental("PWR", "bob", 10, T0, T0 + 100)
        ledger.extend_rental(rental.rental_id, 10, T0 + 50)
        assert rental.end_time == T0 + 110

    def test_unknown_rental(self, ledger: ReserveLedger) -> None:
        with pytest.raises(UnknownRecord, match="Unknown rental ID"):
            ledger.close_rental(7, T0)


class TestReturnWindows:
    @pytest.fixture
    def rental(self, ledger: ReserveLedger):
        return ledger.open_rental("PWR", "bob", 10, T0, T0 + 100)

    def _check(self, ledger: ReserveLedger, rental, caller: str, now: int, shutdown: bool = False) -> None:
        ledger.return_permission(
            rental,
            caller=caller,
            collector="collector",
            now=now,
            renter_only_return_period=10,
            enterprise_only_collection_period=10,
            shutdown=shutdown,
        )

    def test_renter_may_return_any_time(self, ledger: ReserveLedger, rental) -> None:
        self._check(ledger, rental, "bob", T0 + 1)

    def test_collector_waits_for_renter_window(self, ledger: ReserveLedger, rental) -> None:
        with pytest.raises(InvalidCaller):
            self._check(ledger, rental, "collector", T0 + 105)
        self._check(ledger, rental, "collector", T0 + 110)

    def test_stranger_waits_for_collection_window(self, ledger: ReserveLedger, rental) -> None:
        with pytest.raises(InvalidCaller):
            self._check(ledger, rental, "mallory", T0 + 115)
        self._check(ledger, rental, "mallory", T0 + 120)

    def test_shutdown_lifts_windows(self, ledger: ReserveLedger, rental) -> None:
        self._check(ledger, rental, "mallory", T0 + 1, shutdown=True)


class TestSnapshot:
    def test_restore_undoes_mutations(self, ledger: ReserveLedger) -> None:
        position = ledger.stake("alice", 1000, T0)
        snapshot = ledger.snapshot()
        ledger.record_rental_payment(100, T0 + 1)
        ledger.unstake(position.stake_id, T0 + 2)
        ledger.restore(snapshot)
        assert ledger.get_stake(position.stake_id).shares == 1000
        assert ledger.reserve_at(T0 + PERIOD) == 1000
        assert ledger.flushed_at == T0


class TestConservation:
    @given(
        amounts=st.lists(st.integers(min_value=10 ** 6, max_value=10 ** 12), min_size=1, max_size=6),
        fee=st.integers(min_value=0, max_value=10 ** 6),
        elapsed=st.integers(min_value=0, max_value=10 * PERIOD),
    )
    @settings(max_examples=100)
    def test_payouts_equal_deposits_and_fees(self, amounts, fee: int, elapsed: int) -> None:
        ledger = ReserveLedger(streaming_halving_period=PERIOD, created_at=T0)
        positions = [ledger.stake(f"staker{i}", amount, T0) for i, amount in enumerate(amounts)]
        ledger.record_rental_payment(fee, T0)
        now = T0 + elapsed
        paid = sum(ledger.unstake(p.stake_id, now) for p in positions)
        assert paid == sum(amounts) + fee
        assert ledger.reserve_at(now) == 0
        assert ledger.total_shares == 0
