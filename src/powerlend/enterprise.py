"""Enterprise — facade over the reserve, its services and the payment path.

The enterprise owns the pooled reserve, the registered power tokens and
the set of accepted payment assets. It is the only component that moves
tokens between accounts on behalf of stakers and renters.

Rental payment flow:
    base fee      = curve quote in the service's base asset
    fee           = base fee converted to the payment asset
    service fee   = fee * service_fee_percent      → enterprise collector
    pool fee      = fee - service fee              → converted, streamed to reserve
    gc fee        = max(pool fee * gc_fee_percent, min_gc_fee)
                                                   → held, paid to whoever returns

Key rules:
- Every public mutation, including wrap, unwrap, transfer and admin
  changes made directly on a registered power token, runs under one
  re-entrant lock and is all-or-nothing: any exception restores every
  ledger to its prior state.
- Quote and execution are computed from the same state, so the slippage
  bound (max_payment) is checked against exactly what is charged.
- After shutdown_forever(), stake, increase, rent and extend are disabled;
  withdrawals skip the liquidity check and return windows are lifted.
- An audit event is appended for every successful mutation when an
  EventLog is attached.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from powerlend.conversion.converter import Converter, DefaultConverter
from powerlend.errors import (
    ConfigurationError,
    EnterpriseShutdown,
    InvalidCaller,
    InvalidRentalPeriod,
    PaymentAssetDisabled,
    SlippageExceeded,
    TransferNotAllowed,
    UnknownRecord,
)
from powerlend.ledger.reserve import ReserveLedger
from powerlend.ledger.tokens import TokenLedger
from powerlend.math.fixed_point import PERCENT_BASE
from powerlend.models.config import EnterpriseConfig, ServiceConfig
from powerlend.models.ledger import (
    Asset,
    RentalAgreement,
    RentalFeeQuote,
    ReserveInfo,
    StakeInfo,
    StakePosition,
)
from powerlend.persistence.event_log import EventKind, EventLog, EventRecord
from powerlend.policy.resolver import PolicyResolver
from powerlend.power_token import PowerToken
from powerlend.pricing.curves import PoleSlopeCurve, PricingCurve, denormalize_fee

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PARAMS: Dict[str, int] = {
    "gap_halving_period": 86400,
    "service_fee_percent": 0,
    "min_rental_period": 0,
    "max_rental_period": 365 * 86400,
    "min_gc_fee": 0,
}

ADMIN_ACTOR = "admin"


class Enterprise:
    """Stake, rent and return against one pooled reserve.

    Usage:
        tokens = TokenLedger()
        enterprise = Enterprise(EnterpriseConfig("Acme", Asset("ACME")), tokens)
        power = enterprise.register_service(
            "Compute", "CPU", base_rate=rate, base_asset=Asset("ACME"),
        )
        position = enterprise.stake("alice", 10_000 * ONE_TOKEN, now=t0)
        rental = enterprise.rent(
            "CPU", "ACME", 100 * ONE_TOKEN, 86400, max_payment, "bob", now=t0,
        )
        enterprise.return_rental(rental.rental_id, "bob", now=t0 + 86400)
    """

    def __init__(
        self,
        config: EnterpriseConfig,
        tokens: TokenLedger,
        converter: Optional[Converter] = None,
        curve: Optional[PricingCurve] = None,
        event_log: Optional[EventLog] = None,
        service_defaults: Optional[Dict[str, int]] = None,
        created_at: int = 0,
    ) -> None:
        config.validate()
        self.config = config
        self._tokens = tokens
        self._converter = converter if converter is not None else DefaultConverter(tokens)
        self._curve = curve if curve is not None else PoleSlopeCurve()
        self._event_log = event_log
        self._event_counter = event_log.count if event_log is not None else 0
        self._service_defaults = dict(DEFAULT_SERVICE_PARAMS)
        if service_defaults:
            self._service_defaults.update(service_defaults)
        self._reserve = ReserveLedger(
            streaming_halving_period=config.streaming_reserve_halving_period,
            streaming_immediate_percent=config.streaming_immediate_percent,
            created_at=created_at,
        )
        self._services: Dict[str, PowerToken] = {}
        self._payment_assets: Dict[str, Asset] = {
            config.enterprise_asset.symbol: config.enterprise_asset,
        }
        self._shutdown = False
        self._lock = threading.RLock()

    @classmethod
    def from_policy(
        cls,
        resolver: PolicyResolver,
        name: str,
        enterprise_asset: Asset,
        tokens: TokenLedger,
        converter: Optional[Converter] = None,
        event_log: Optional[EventLog] = None,
        created_at: int = 0,
    ) -> Enterprise:
        """Build an enterprise from the parameters in a config directory."""
        return cls(
            resolver.enterprise_config(name, enterprise_asset),
            tokens,
            converter=converter,
            curve=resolver.pricing_curve(),
            event_log=event_log,
            service_defaults=resolver.service_defaults(),
            created_at=created_at,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enterprise_asset(self) -> Asset:
        return self.config.enterprise_asset

    @property
    def vault(self) -> str:
        return self.config.vault

    @property
    def curve(self) -> PricingCurve:
        return self._curve

    @property
    def converter(self) -> Converter:
        return self._converter

    @property
    def reserve_ledger(self) -> ReserveLedger:
        return self._reserve

    def is_shutdown(self) -> bool:
        return self._shutdown

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def register_service(
        self,
        name: str,
        symbol: str,
        base_rate: int,
        base_asset: Asset,
        service_fee_percent: Optional[int] = None,
        min_rental_period: Optional[int] = None,
        max_rental_period: Optional[int] = None,
        min_gc_fee: Optional[int] = None,
        gap_halving_period: Optional[int] = None,
        transfer_enabled: bool = False,
        now: Optional[int] = None,
    ) -> PowerToken:
        """Register a new power token.

        Parameters left as None take the enterprise's service defaults.

        Raises:
            ConfigurationError: duplicate symbol or invalid parameters.
        """
        with self._atomic(now) as now:
            if symbol in self._services or symbol in self._payment_assets:
                raise ConfigurationError(f"Symbol already in use: {symbol}")
            defaults = self._service_defaults
            config = ServiceConfig(
                name=name,
                symbol=symbol,
                base_asset=base_asset,
                base_rate=base_rate,
                service_fee_percent=_or_default(service_fee_percent, defaults, "service_fee_percent"),
                min_rental_period=_or_default(min_rental_period, defaults, "min_rental_period"),
                max_rental_period=_or_default(max_rental_period, defaults, "max_rental_period"),
                min_gc_fee=_or_default(min_gc_fee, defaults, "min_gc_fee"),
                gap_halving_period=_or_default(gap_halving_period, defaults, "gap_halving_period"),
                transfer_enabled=transfer_enabled,
            )
            service = PowerToken(
                config,
                self.enterprise_asset,
                self._tokens,
                on_config_changed=self._on_service_config_changed,
                atomic=self._atomic,
            )
            self._services[symbol] = service
            self._record(
                EventKind.SERVICE_REGISTERED,
                ADMIN_ACTOR,
                {"symbol": symbol, "name": name, "base_asset": base_asset.symbol,
                 "base_rate": base_rate},
                now,
            )
            logger.info("registered service %s (%s)", name, symbol)
            return service

    def get_service(self, symbol: str) -> PowerToken:
        service = self._services.get(symbol)
        if service is None:
            raise UnknownRecord(f"Unknown power token: {symbol}")
        return service

    def services(self) -> List[PowerToken]:
        return list(self._services.values())

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    def stake(self, owner: str, amount: int, now: Optional[int] = None) -> StakePosition:
        with self._atomic(now) as now:
            self._require_active()
            self._tokens.transfer(self.enterprise_asset.symbol, owner, self.vault, amount)
            position = self._reserve.stake(owner, amount, now)
            self._record_stake(position.stake_id, owner, amount, "stake", now)
            return position

    def increase_stake(
        self,
        stake_id: int,
        amount: int,
        caller: str,
        now: Optional[int] = None,
    ) -> StakePosition:
        with self._atomic(now) as now:
            self._require_active()
            self._require_stake_owner(stake_id, caller)
            self._tokens.transfer(self.enterprise_asset.symbol, caller, self.vault, amount)
            position = self._reserve.increase_stake(stake_id, amount, now)
            self._record_stake(stake_id, caller, amount, "increase", now)
            return position

    def decrease_stake(
        self,
        stake_id: int,
        amount: int,
        caller: str,
        now: Optional[int] = None,
    ) -> StakePosition:
        with self._atomic(now) as now:
            self._require_stake_owner(stake_id, caller)
            position = self._reserve.get_stake(stake_id)
            paid = self._reserve.decrease_stake(
                stake_id, amount, now, enforce_liquidity=not self._shutdown
            )
            self._tokens.transfer(self.enterprise_asset.symbol, self.vault, caller, paid)
            self._record_stake(stake_id, caller, -paid, "decrease", now)
            return position

    def unstake(self, stake_id: int, caller: str, now: Optional[int] = None) -> int:
        """Close a position and pay out its full value.

        Returns:
            The amount of enterprise tokens paid to the caller.
        """
        with self._atomic(now) as now:
            self._require_stake_owner(stake_id, caller)
            value = self._reserve.unstake(stake_id, now, enforce_liquidity=not self._shutdown)
            if value > 0:
                self._tokens.transfer(self.enterprise_asset.symbol, self.vault, caller, value)
            self._record_stake(stake_id, caller, -value, "unstake", now)
            return value

    def claim_staking_reward(self, stake_id: int, caller: str, now: Optional[int] = None) -> int:
        with self._atomic(now) as now:
            self._require_stake_owner(stake_id, caller)
            reward = self._reserve.claim_staking_reward(
                stake_id, now, enforce_liquidity=not self._shutdown
            )
            if reward > 0:
                self._tokens.transfer(self.enterprise_asset.symbol, self.vault, caller, reward)
                self._record(
                    EventKind.STAKING_REWARD_CLAIMED,
                    caller,
                    {"stake_id": stake_id, "reward": reward},
                    now,
                )
            return reward

    def transfer_stake(
        self,
        stake_id: int,
        sender: str,
        recipient: str,
        now: Optional[int] = None,
    ) -> StakePosition:
        with self._atomic(now) as now:
            self._require_stake_owner(stake_id, sender)
            position = self._reserve.transfer_stake(stake_id, recipient)
            self._record_stake(stake_id, sender, 0, "transfer", now, recipient=recipient)
            return position

    # ------------------------------------------------------------------
    # Renting
    # ------------------------------------------------------------------

    def estimate_rental_fee(
        self,
        power_token: str,
        payment_asset: str,
        amount: int,
        duration: int,
        now: Optional[int] = None,
    ) -> RentalFeeQuote:
        with self._lock:
            now = _resolve_now(now)
            service = self.get_service(power_token)
            self._check_rental_period(service, duration)
            return self._quote(service, self._payment_asset(payment_asset), amount, duration, now)

    def rent(
        self,
        power_token: str,
        payment_asset: str,
        amount: int,
        duration: int,
        max_payment: int,
        renter: str,
        now: Optional[int] = None,
    ) -> RentalAgreement:
        """Rent amount of power_token for duration seconds.

        Raises:
            EnterpriseShutdown: the enterprise is winding down.
            InvalidRentalPeriod: duration outside the service limits.
            PaymentAssetDisabled: payment_asset is not accepted.
            InsufficientCapacity: the reserve cannot serve the rental.
            SlippageExceeded: the total payment exceeds max_payment.
        """
        with self._atomic(now) as now:
            self._require_active()
            service = self.get_service(power_token)
            self._check_rental_period(service, duration)
            payment = self._payment_asset(payment_asset)
            quote = self._quote(service, payment, amount, duration, now)
            self._check_slippage(quote, max_payment)
            self._collect_payment(renter, payment, quote)
            self._reserve.record_rental_payment(quote.pool_fee_enterprise, now)
            rental = self._reserve.open_rental(
                power_token,
                renter,
                amount,
                start_time=now,
                end_time=now + duration,
                gc_fee=quote.gc_fee_enterprise,
            )
            service.mint_rental(renter, amount, now)
            self._record(
                EventKind.RENTED,
                renter,
                {
                    "rental_id": rental.rental_id,
                    "power_token": power_token,
                    "amount": amount,
                    "end_time": rental.end_time,
                    "payment_asset": payment.symbol,
                    "pool_fee": quote.pool_fee,
                    "service_fee": quote.service_fee,
                    "gc_fee": quote.gc_fee,
                },
                now,
            )
            logger.info(
                "rental %d: %d %s to %s until %d",
                rental.rental_id, amount, power_token, renter, rental.end_time,
            )
            return rental

    def extend_rental_period(
        self,
        rental_id: int,
        payment_asset: str,
        duration: int,
        max_payment: int,
        caller: str,
        now: Optional[int] = None,
    ) -> RentalAgreement:
        """Push a rental's end time out by duration.

        The extension is priced as a fresh rental of the same amount with the
        rental's own amount excluded from the used reserve. No GC fee is
        charged again.
        """
        with self._atomic(now) as now:
            self._require_active()
            rental = self._reserve.get_rental(rental_id)
            if caller != rental.renter:
                raise InvalidCaller(f"Only the renter may extend rental {rental_id}")
            service = self.get_service(rental.power_token)
            new_end = max(rental.end_time, now) + duration
            if duration <= 0 or new_end - now > service.config.max_rental_period:
                raise InvalidRentalPeriod(
                    f"Extension to {new_end} exceeds max rental period "
                    f"{service.config.max_rental_period}"
                )
            payment = self._payment_asset(payment_asset)
            quote = self._quote(
                service,
                payment,
                rental.rental_amount,
                duration,
                now,
                exclude=rental.rental_amount,
                with_gc_fee=False,
            )
            self._check_slippage(quote, max_payment)
            self._collect_payment(caller, payment, quote)
            self._reserve.record_rental_payment(quote.pool_fee_enterprise, now)
            rental = self._reserve.extend_rental(rental_id, duration, now)
            self._record(
                EventKind.RENTAL_PERIOD_EXTENDED,
                caller,
                {
                    "rental_id": rental_id,
                    "end_time": rental.end_time,
                    "payment_asset": payment.symbol,
                    "pool_fee": quote.pool_fee,
                    "service_fee": quote.service_fee,
                },
                now,
            )
            return rental

    def return_rental(self, rental_id: int, caller: str, now: Optional[int] = None) -> RentalAgreement:
        """Burn the rented tokens, release the reserve and pay the GC fee.

        Raises:
            InvalidCaller: caller is outside their return window.
        """
        with self._atomic(now) as now:
            rental = self._reserve.get_rental(rental_id)
            self._reserve.return_permission(
                rental,
                caller,
                self.config.collector,
                now,
                self.config.renter_only_return_period,
                self.config.enterprise_only_collection_period,
                shutdown=self._shutdown,
            )
            service = self.get_service(rental.power_token)
            service.burn_rental(rental.renter, rental.rental_amount, now)
            rental = self._reserve.close_rental(rental_id, now)
            if rental.gc_fee > 0:
                self._tokens.transfer(self.enterprise_asset.symbol, self.vault, caller, rental.gc_fee)
            self._record(
                EventKind.RENTAL_RETURNED,
                caller,
                {"rental_id": rental_id, "renter": rental.renter, "gc_fee": rental.gc_fee},
                now,
            )
            return rental

    def transfer_rental(
        self,
        rental_id: int,
        sender: str,
        recipient: str,
        now: Optional[int] = None,
    ) -> RentalAgreement:
        """Hand a live rental, and its locked power tokens, to recipient."""
        with self._atomic(now) as now:
            rental = self._reserve.get_rental(rental_id)
            if sender != rental.renter:
                raise InvalidCaller(f"{sender} does not hold rental {rental_id}")
            service = self.get_service(rental.power_token)
            if not service.is_transfer_enabled():
                raise TransferNotAllowed(f"Transfers of {service.symbol} are disabled")
            if rental.is_expired(now):
                raise TransferNotAllowed(f"Rental {rental_id} expired at {rental.end_time}")
            service.move_rental(sender, recipient, rental.rental_amount, now)
            rental = self._reserve.transfer_rental(rental_id, recipient)
            self._record(
                EventKind.RENTAL_TRANSFERRED,
                sender,
                {"rental_id": rental_id, "recipient": recipient},
                now,
            )
            return rental

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def shutdown_forever(self, now: Optional[int] = None) -> None:
        with self._atomic(now) as now:
            if self._shutdown:
                return
            self._shutdown = True
            self._record(EventKind.ENTERPRISE_SHUTDOWN, ADMIN_ACTOR, {}, now)
            logger.warning("enterprise %s shut down", self.name)

    def enable_payment_asset(self, asset: Asset, now: Optional[int] = None) -> None:
        with self._atomic(now) as now:
            if asset.symbol in self._services:
                raise ConfigurationError(f"Power token {asset.symbol} cannot be a payment asset")
            self._payment_assets[asset.symbol] = asset
            self._record(
                EventKind.PAYMENT_ASSET_CHANGED,
                ADMIN_ACTOR,
                {"asset": asset.symbol, "enabled": True},
                now,
            )

    def disable_payment_asset(self, symbol: str, now: Optional[int] = None) -> None:
        with self._atomic(now) as now:
            if symbol == self.enterprise_asset.symbol:
                raise ConfigurationError("The enterprise asset is always accepted")
            if self._payment_assets.pop(symbol, None) is None:
                raise UnknownRecord(f"Payment asset not enabled: {symbol}")
            self._record(
                EventKind.PAYMENT_ASSET_CHANGED,
                ADMIN_ACTOR,
                {"asset": symbol, "enabled": False},
                now,
            )

    def payment_assets(self) -> List[Asset]:
        return list(self._payment_assets.values())

    def set_converter(self, converter: Converter, now: Optional[int] = None) -> None:
        with self._atomic(now) as now:
            self._converter = converter
            self._record_config({"converter": converter.account}, now)

    def set_gc_fee_percent(self, percent: int, now: Optional[int] = None) -> None:
        self._update_config(now, gc_fee_percent=percent)

    def set_streaming_reserve_halving_period(self, period: int, now: Optional[int] = None) -> None:
        """Applies to payments recorded from now on."""
        with self._atomic(now) as now:
            self._update_config(now, streaming_reserve_halving_period=period)
            self._reserve.streaming_halving_period = period

    def set_return_periods(
        self,
        renter_only_return_period: int,
        enterprise_only_collection_period: int,
        now: Optional[int] = None,
    ) -> None:
        self._update_config(
            now,
            renter_only_return_period=renter_only_return_period,
            enterprise_only_collection_period=enterprise_only_collection_period,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_reserve(self, now: Optional[int] = None) -> int:
        with self._lock:
            return self._reserve.reserve_at(_resolve_now(now))

    def get_available_reserve(self, now: Optional[int] = None) -> int:
        with self._lock:
            return self._reserve.available_reserve(_resolve_now(now))

    def get_used_reserve(self) -> int:
        return self._reserve.used_reserve

    def get_stake(self, stake_id: int, now: Optional[int] = None) -> StakeInfo:
        with self._lock:
            now = _resolve_now(now)
            position = self._reserve.get_stake(stake_id)
            return StakeInfo(
                stake_id=position.stake_id,
                owner=position.owner,
                amount=position.amount,
                shares=position.shares,
                reward=self._reserve.staking_reward(stake_id, now),
                status=position.status,
            )

    def get_staking_reward(self, stake_id: int, now: Optional[int] = None) -> int:
        with self._lock:
            return self._reserve.staking_reward(stake_id, _resolve_now(now))

    def get_rental_agreement(self, rental_id: int) -> RentalAgreement:
        return copy.copy(self._reserve.get_rental(rental_id))

    def get_info(self, now: Optional[int] = None) -> ReserveInfo:
        with self._lock:
            now = _resolve_now(now)
            return ReserveInfo(
                reserve=self._reserve.reserve_at(now),
                used_reserve=self._reserve.used_reserve,
                available_reserve=self._reserve.available_reserve(now),
                total_shares=self._reserve.total_shares,
                streaming_remaining=self._reserve.streaming_remaining(now),
                timestamp=now,
                shutdown=self._shutdown,
                streaming_halving_period=self._reserve.streaming_halving_period,
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextmanager
    def _atomic(self, now: Optional[int] = None) -> Iterator[int]:
        """Serialise a mutation and roll every ledger back if it fails."""
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield _resolve_now(now)
            except Exception:
                self._restore(snapshot)
                raise

    def _snapshot(self) -> Any:
        return {
            "tokens": self._tokens.snapshot(),
            "reserve": self._reserve.snapshot(),
            "services": {s: svc.snapshot() for s, svc in self._services.items()},
            "service_symbols": list(self._services),
            "payment_assets": dict(self._payment_assets),
            "config": copy.deepcopy(self.config),
            "converter": self._converter,
            "shutdown": self._shutdown,
        }

    def _restore(self, snapshot: Any) -> None:
        self._tokens.restore(snapshot["tokens"])
        self._reserve.restore(snapshot["reserve"])
        for symbol in list(self._services):
            if symbol not in snapshot["service_symbols"]:
                del self._services[symbol]
        for symbol, state in snapshot["services"].items():
            self._services[symbol].restore(state)
        self._payment_assets = snapshot["payment_assets"]
        self.config = snapshot["config"]
        self._converter = snapshot["converter"]
        self._shutdown = snapshot["shutdown"]

    def _quote(
        self,
        service: PowerToken,
        payment: Asset,
        amount: int,
        duration: int,
        now: int,
        exclude: int = 0,
        with_gc_fee: bool = True,
    ) -> RentalFeeQuote:
        config = service.config
        normalised = self._reserve.quote_rental(
            self._curve, config.base_rate, amount, duration, now, exclude=exclude
        )
        base_fee = denormalize_fee(
            normalised, self.enterprise_asset.decimals, config.base_asset.decimals
        )
        fee = self._converter.estimate_convert(config.base_asset, base_fee, payment)
        service_fee = fee * config.service_fee_percent // PERCENT_BASE
        pool_fee = fee - service_fee
        gc_fee = 0
        if with_gc_fee:
            min_gc_fee = 0
            if config.min_gc_fee > 0:
                min_gc_fee = self._converter.estimate_convert(
                    self.enterprise_asset, config.min_gc_fee, payment
                )
            gc_fee = max(pool_fee * self.config.gc_fee_percent // PERCENT_BASE, min_gc_fee)
        return RentalFeeQuote(
            payment_asset=payment.symbol,
            pool_fee=pool_fee,
            service_fee=service_fee,
            gc_fee=gc_fee,
            total=pool_fee + service_fee + gc_fee,
            pool_fee_enterprise=self._to_enterprise(payment, pool_fee),
            gc_fee_enterprise=self._to_enterprise(payment, gc_fee),
        )

    def _to_enterprise(self, payment: Asset, amount: int) -> int:
        if amount == 0:
            return 0
        return self._converter.estimate_convert(payment, amount, self.enterprise_asset)

    def _collect_payment(self, payer: str, payment: Asset, quote: RentalFeeQuote) -> None:
        if quote.service_fee > 0:
            self._tokens.transfer(payment.symbol, payer, self.config.collector, quote.service_fee)
        if payment.symbol == self.enterprise_asset.symbol:
            held = quote.pool_fee + quote.gc_fee
            if held > 0:
                self._tokens.transfer(payment.symbol, payer, self.vault, held)
            return
        for amount in (quote.pool_fee, quote.gc_fee):
            if amount > 0:
                self._tokens.transfer(payment.symbol, payer, self._converter.account, amount)
                self._converter.convert(payment, amount, self.enterprise_asset, self.vault)

    @staticmethod
    def _check_slippage(quote: RentalFeeQuote, max_payment: int) -> None:
        if quote.total > max_payment:
            raise SlippageExceeded(
                f"Rental costs {quote.total} {quote.payment_asset}, "
                f"max payment is {max_payment}"
            )

    @staticmethod
    def _check_rental_period(service: PowerToken, duration: int) -> None:
        config = service.config
        if not (config.min_rental_period <= duration <= config.max_rental_period) or duration <= 0:
            raise InvalidRentalPeriod(
                f"Rental period {duration} outside "
                f"[{config.min_rental_period}, {config.max_rental_period}]"
            )

    def _payment_asset(self, symbol: str) -> Asset:
        asset = self._payment_assets.get(symbol)
        if asset is None:
            raise PaymentAssetDisabled(f"Payment asset not enabled: {symbol}")
        return asset

    def _require_active(self) -> None:
        if self._shutdown:
            raise EnterpriseShutdown(f"Enterprise {self.name} is shut down")

    def _require_stake_owner(self, stake_id: int, caller: str) -> None:
        position = self._reserve.get_stake(stake_id)
        if position.owner != caller:
            raise InvalidCaller(f"{caller} does not own stake {stake_id}")

    def _update_config(self, now: Optional[int], **changes: Any) -> None:
        with self._atomic(now) as now:
            for key, value in changes.items():
                setattr(self.config, key, value)
            self.config.validate()
            self._record_config(changes, now)

    def _on_service_config_changed(self, symbol: str, changes: Dict[str, Any], now: int) -> None:
        with self._lock:
            self._record_config({"power_token": symbol, **changes}, now)

    def _record_config(self, changes: Dict[str, Any], now: int) -> None:
        self._record(EventKind.CONFIG_CHANGED, ADMIN_ACTOR, dict(changes), now)

    def _record_stake(
        self,
        stake_id: int,
        actor: str,
        delta: int,
        action: str,
        now: int,
        recipient: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"stake_id": stake_id, "action": action, "delta": delta}
        if recipient is not None:
            payload["recipient"] = recipient
        self._record(EventKind.STAKE_CHANGED, actor, payload, now)

    def _next_event_id(self) -> str:
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record(self, kind: EventKind, actor: str, payload: Dict[str, Any], now: int) -> None:
        if self._event_log is None:
            return
        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor_id=actor,
            payload=payload,
            timestamp=now,
        )
        self._event_log.append(event)


def _or_default(value: Optional[int], defaults: Dict[str, int], key: str) -> int:
    return defaults[key] if value is None else value


def _resolve_now(now: Optional[int]) -> int:
    if now is None:
        return int(time.time())
    return now
