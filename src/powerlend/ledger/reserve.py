"""Reserve ledger — pooled stake, streamed rental income and used reserve.

Stakers own the reserve through shares. A position's redeemable value is
shares * reserve / total_shares, so income that grows the reserve grows
every position pro rata without touching the positions themselves.

Rental income is not credited at once. Each pool fee enters a streaming
queue and is released into the reserve along a half-life curve, so a
staker who joins just before a large rental cannot capture its fee.

Key rules:
- Every mutation first flushes the queue at `now`: accrued income moves
  into the reserve, payments sharing a half-life collapse into one anchor
  and exhausted payments are dropped.
- reserve >= 0 and total_shares >= 0 at all times, and the reserve and
  queue are empty whenever total_shares == 0: the withdrawal that burns
  the last shares pays out everything left in the pool.
- Share minting and burning round against the caller: minted shares are
  floored, burned shares are ceiled, redeemed values are floored.
- Withdrawals cannot exceed the available (unused) reserve unless the
  caller disables the liquidity check (enterprise wind-down).
- A lone staker who stakes and unstakes with no income in between gets
  exactly their amount back.

Return windows after a rental's end_time:
    [end, end + renter_only)                  renter only
    [end + renter_only, + collection)         renter or enterprise collector
    afterwards                                anyone
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from powerlend.errors import (
    DomainError,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidCaller,
    UnknownRecord,
)
from powerlend.math.decay import DecayAnchor
from powerlend.math.fixed_point import PERCENT_BASE, mul_div, mul_div_up
from powerlend.models.ledger import (
    RentalAgreement,
    ReserveState,
    StakePosition,
    StreamingPayment,
)
from powerlend.pricing.curves import PricingCurve

logger = logging.getLogger(__name__)


class ReserveLedger:
    """Single source of truth for reserve, shares, stakes and rentals.

    Usage:
        ledger = ReserveLedger(streaming_halving_period=7 * 86400)
        position = ledger.stake("alice", 1000, now=t0)
        ledger.record_rental_payment(30, now=t0)
        ledger.staking_reward(position.stake_id, now=t0 + 7 * 86400)  # 15
        value = ledger.unstake(position.stake_id, now=t0 + 7 * 86400)
    """

    def __init__(
        self,
        streaming_halving_period: int = 7 * 86400,
        streaming_immediate_percent: int = 0,
        created_at: int = 0,
    ) -> None:
        if streaming_halving_period <= 0:
            raise DomainError("Streaming halving period must be positive")
        self.streaming_halving_period = streaming_halving_period
        self.streaming_immediate_percent = streaming_immediate_percent
        self._state = ReserveState(flushed_at=created_at)
        self._stakes: Dict[int, StakePosition] = {}
        self._rentals: Dict[int, RentalAgreement] = {}
        self._next_stake_id = 1
        self._next_rental_id = 1

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def flush(self, now: int) -> int:
        """Move accrued streamed income into the reserve.

        Returns:
            The amount released by this flush.
        """
        state = self._state
        if now < state.flushed_at:
            raise DomainError(f"Time {now} precedes last flush at {state.flushed_at}")
        released = 0
        merged: Dict[int, int] = {}
        for payment in state.streaming:
            remaining = payment.remaining_at(now)
            released += payment.anchor.reference_value - remaining
            if remaining > 0:
                period = payment.anchor.half_life
                merged[period] = merged.get(period, 0) + remaining
        state.reserve += released
        state.streaming = [
            StreamingPayment(DecayAnchor(reference_time=now, reference_value=value, half_life=period))
            for period, value in merged.items()
        ]
        state.flushed_at = now
        return released

    def record_rental_payment(self, fee: int, now: int) -> None:
        """Credit a pool fee: the immediate share now, the rest streamed."""
        if fee < 0:
            raise InvalidAmount("Rental payment must be non-negative")
        self.flush(now)
        if fee == 0:
            return
        immediate = fee * self.streaming_immediate_percent // PERCENT_BASE
        streamed = fee - immediate
        self._state.reserve += immediate
        if streamed == 0:
            return
        for i, payment in enumerate(self._state.streaming):
            if payment.anchor.half_life == self.streaming_halving_period:
                self._state.streaming[i] = StreamingPayment(
                    payment.anchor.rebase(now, payment.anchor.reference_value + streamed)
                )
                break
        else:
            self._state.streaming.append(
                StreamingPayment(
                    DecayAnchor(
                        reference_time=now,
                        reference_value=streamed,
                        half_life=self.streaming_halving_period,
                    )
                )
            )
        logger.debug("rental payment %d: %d immediate, %d streamed", fee, immediate, streamed)

    # ------------------------------------------------------------------
    # Reserve views
    # ------------------------------------------------------------------

    @property
    def total_shares(self) -> int:
        return self._state.total_shares

    @property
    def used_reserve(self) -> int:
        return self._state.used_reserve

    @property
    def flushed_at(self) -> int:
        return self._state.flushed_at

    def reserve_at(self, now: int) -> int:
        """Flushed reserve plus everything the queue has released by now."""
        return self._state.reserve + sum(p.released_at(now) for p in self._state.streaming)

    def streaming_remaining(self, now: int) -> int:
        return sum(p.remaining_at(now) for p in self._state.streaming)

    def available_reserve(self, now: int) -> int:
        return max(0, self.reserve_at(now) - self._state.used_reserve)

    # ------------------------------------------------------------------
    # Stakes
    # ------------------------------------------------------------------

    def stake(self, owner: str, amount: int, now: int) -> StakePosition:
        """Open a new position worth amount.

        The first staker into an empty pool mints shares 1:1.
        """
        if amount <= 0:
            raise InvalidAmount("Stake amount must be positive")
        self.flush(now)
        shares = self._mint_shares(amount)
        position = StakePosition(
            stake_id=self._next_stake_id,
            owner=owner,
            amount=amount,
            shares=shares,
            created_at=now,
        )
        self._next_stake_id += 1
        self._stakes[position.stake_id] = position
        self._state.reserve += amount
        self._state.total_shares += shares
        logger.debug("stake %d opened: amount=%d shares=%d", position.stake_id, amount, shares)
        return position

    def increase_stake(self, stake_id: int, amount: int, now: int) -> StakePosition:
        if amount <= 0:
            raise InvalidAmount("Stake increase must be positive")
        position = self._get_stake(stake_id)
        self.flush(now)
        shares = self._mint_shares(amount)
        position.amount += amount
        position.shares += shares
        self._state.reserve += amount
        self._state.total_shares += shares
        return position

    def decrease_stake(
        self,
        stake_id: int,
        amount: int,
        now: int,
        enforce_liquidity: bool = True,
    ) -> int:
        """Withdraw part of the principal.

        Burns ceil(amount * total_shares / reserve) shares, capped at the
        position's shares. The principal may reach zero while shares remain;
        those shares are the unclaimed reward.

        Returns:
            The amount paid out: amount, plus whatever is left in the pool
            when this burns its last shares.
        """
        position = self._get_stake(stake_id)
        if amount <= 0 or amount > position.amount:
            raise InvalidAmount(
                f"Decrease must be in (0, {position.amount}], got {amount}"
            )
        self.flush(now)
        state = self._state
        if amount > state.reserve:
            raise InsufficientLiquidity(f"Reserve {state.reserve} cannot cover {amount}")
        burned = min(mul_div_up(amount, state.total_shares, state.reserve), position.shares)
        closing = burned == state.total_shares
        self._check_liquidity(state.reserve if closing else amount, enforce_liquidity)
        position.shares -= burned
        position.amount -= amount
        state.total_shares -= burned
        state.reserve -= amount
        paid = amount
        if closing:
            paid += self._close_pool()
            position.amount = 0
        if position.shares == 0 and position.amount == 0:
            del self._stakes[stake_id]
        return paid

    def unstake(self, stake_id: int, now: int, enforce_liquidity: bool = True) -> int:
        """Redeem every share of a position and close it.

        The last position out also takes the income still streaming, so the
        pool is empty whenever no shares are outstanding.

        Returns:
            The value paid out (principal plus reward).
        """
        position = self._get_stake(stake_id)
        self.flush(now)
        state = self._state
        value = self._redeemable(position)
        self._check_liquidity(value, enforce_liquidity)
        state.reserve -= value
        state.total_shares -= position.shares
        if state.total_shares == 0:
            value += self._close_pool()
        del self._stakes[stake_id]
        logger.debug("stake %d closed: value=%d", stake_id, value)
        return value

    def stake_value(self, stake_id: int, now: int) -> int:
        position = self._get_stake(stake_id)
        if self._state.total_shares == 0:
            return 0
        return mul_div(position.shares, self.reserve_at(now), self._state.total_shares)

    def staking_reward(self, stake_id: int, now: int) -> int:
        position = self._get_stake(stake_id)
        return max(0, self.stake_value(stake_id, now) - position.amount)

    def claim_staking_reward(
        self,
        stake_id: int,
        now: int,
        enforce_liquidity: bool = True,
    ) -> int:
        """Pay out the reward and re-base the position to its principal.

        Returns:
            The reward paid (0 leaves state untouched).
        """
        position = self._get_stake(stake_id)
        self.flush(now)
        state = self._state
        value = self._redeemable(position)
        reward = max(0, value - position.amount)
        if reward == 0:
            return 0
        kept_shares = mul_div(position.amount, state.total_shares, state.reserve)
        burned = position.shares - kept_shares
        closing = burned == state.total_shares
        self._check_liquidity(state.reserve if closing else reward, enforce_liquidity)
        position.shares = kept_shares
        state.total_shares -= burned
        state.reserve -= reward
        if closing:
            reward += self._close_pool()
            position.amount = 0
        if position.shares == 0 and position.amount == 0:
            del self._stakes[stake_id]
        return reward

    def transfer_stake(self, stake_id: int, new_owner: str) -> StakePosition:
        position = self._get_stake(stake_id)
        position.owner = new_owner
        return position

    def get_stake(self, stake_id: int) -> StakePosition:
        return self._get_stake(stake_id)

    def stakes(self) -> List[StakePosition]:
        return list(self._stakes.values())

    # ------------------------------------------------------------------
    # Rentals
    # ------------------------------------------------------------------

    def quote_rental(
        self,
        curve: PricingCurve,
        base_rate: int,
        amount: int,
        duration: int,
        now: int,
        exclude: int = 0,
    ) -> int:
        """Pool-fee quote against the reserve as observed at now.

        exclude is subtracted from the used reserve; an extension re-prices
        the rental as if its own amount were not yet taken.
        """
        return curve.quote(
            base_rate,
            self.reserve_at(now),
            self._state.used_reserve - exclude,
            amount,
            duration,
        )

    def open_rental(
        self,
        power_token: str,
        renter: str,
        amount: int,
        start_time: int,
        end_time: int,
        gc_fee: int = 0,
    ) -> RentalAgreement:
        if amount <= 0:
            raise InvalidAmount("Rental amount must be positive")
        self.flush(start_time)
        rental = RentalAgreement(
            rental_id=self._next_rental_id,
            power_token=power_token,
            renter=renter,
            rental_amount=amount,
            start_time=start_time,
            end_time=end_time,
            gc_fee=gc_fee,
        )
        self._next_rental_id += 1
        self._rentals[rental.rental_id] = rental
        self._state.used_reserve += amount
        return rental

    def extend_rental(self, rental_id: int, duration: int, now: int) -> RentalAgreement:
        if duration <= 0:
            raise InvalidAmount("Extension must be positive")
        rental = self._get_rental(rental_id)
        self.flush(now)
        rental.end_time = max(rental.end_time, now) + duration
        return rental

    def close_rental(self, rental_id: int, now: int) -> RentalAgreement:
        rental = self._get_rental(rental_id)
        self.flush(now)
        self._state.used_reserve -= rental.rental_amount
        del self._rentals[rental_id]
        return rental

    def transfer_rental(self, rental_id: int, new_renter: str) -> RentalAgreement:
        rental = self._get_rental(rental_id)
        rental.renter = new_renter
        return rental

    def get_rental(self, rental_id: int) -> RentalAgreement:
        return self._get_rental(rental_id)

    def rentals(self) -> List[RentalAgreement]:
        return list(self._rentals.values())

    def return_permission(
        self,
        rental: RentalAgreement,
        caller: str,
        collector: Optional[str],
        now: int,
        renter_only_return_period: int,
        enterprise_only_collection_period: int,
        shutdown: bool = False,
    ) -> None:
        """Raise InvalidCaller unless caller may return the rental at now."""
        if shutdown or caller == rental.renter:
            return
        renter_deadline = rental.end_time + renter_only_return_period
        if now < renter_deadline:
            raise InvalidCaller(
                f"Only the renter may return rental {rental.rental_id} before {renter_deadline}"
            )
        collection_deadline = renter_deadline + enterprise_only_collection_period
        if now < collection_deadline and caller != collector:
            raise InvalidCaller(
                f"Only the renter or the enterprise collector may return rental "
                f"{rental.rental_id} before {collection_deadline}"
            )

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return copy.deepcopy(
            (
                self._state,
                self._stakes,
                self._rentals,
                self._next_stake_id,
                self._next_rental_id,
                self.streaming_halving_period,
                self.streaming_immediate_percent,
            )
        )

    def restore(self, snapshot: Any) -> None:
        (
            self._state,
            self._stakes,
            self._rentals,
            self._next_stake_id,
            self._next_rental_id,
            self.streaming_halving_period,
            self.streaming_immediate_percent,
        ) = copy.deepcopy(snapshot)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _mint_shares(self, amount: int) -> int:
        state = self._state
        if state.total_shares == 0:
            return amount
        if state.reserve == 0:
            raise DomainError("Reserve is empty while shares are outstanding")
        shares = mul_div(amount, state.total_shares, state.reserve)
        if shares == 0:
            raise InvalidAmount(f"Stake of {amount} is too small to mint a share")
        return shares

    def _close_pool(self) -> int:
        """Empty the reserve and the queue once the last share is burned."""
        state = self._state
        leftover = state.reserve + sum(p.remaining_at(state.flushed_at) for p in state.streaming)
        state.reserve = 0
        state.streaming = []
        if leftover:
            logger.debug("pool closed with %d left over", leftover)
        return leftover

    def _redeemable(self, position: StakePosition) -> int:
        if self._state.total_shares == 0:
            return 0
        return mul_div(position.shares, self._state.reserve, self._state.total_shares)

    def _check_liquidity(self, amount: int, enforce: bool) -> None:
        available = self._state.reserve - self._state.used_reserve
        if enforce and amount > available:
            raise InsufficientLiquidity(
                f"Withdrawal of {amount} exceeds available reserve {max(available, 0)}"
            )

    def _get_stake(self, stake_id: int) -> StakePosition:
        position = self._stakes.get(stake_id)
        if position is None:
            raise UnknownRecord(f"Unknown stake ID: {stake_id}")
        return position

    def _get_rental(self, rental_id: int) -> RentalAgreement:
        rental = self._rentals.get(rental_id)
        if rental is None:
            raise UnknownRecord(f"Unknown rental ID: {rental_id}")
        return rental
