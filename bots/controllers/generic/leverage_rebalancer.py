import logging
import threading
import time
from dataclasses import asdict, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .leverage_domain.bounds_policy import BoundsPolicy
from .leverage_domain.chunk_planner import ChunkPlanner
from .leverage_domain.components import (
    ZERO,
    ActionCode,
    Caller,
    ChunkPlan,
    ChunkRebalance,
    ControllerContext,
    Decision,
    Direction,
    ExchangeSettings,
    ExecutionSettings,
    IncentiveSettings,
    MethodologySettings,
    PositionSnapshot,
    SettingsBundle,
    TradeInstruction,
    TradeSide,
)
from .leverage_domain.errors import (
    AuthorizationFailed,
    ConfigurationInvalid,
    CooldownNotElapsed,
    PreconditionFailed,
)
from .leverage_domain.events import (
    Disengaged,
    Engaged,
    EventBus,
    Rebalanced,
    RebalanceIterated,
    Reinvested,
    RipcordCalled,
    SettingsUpdated,
)
from .leverage_domain.incentive import IncentiveController
from .leverage_domain.io import InstructionFactory, PositionLedger, RewardCustody, SnapshotBuilder, TradeVenue
from .leverage_domain.leverage_math import LeverageMath
from .leverage_domain.rebalance_fsm import RebalanceStateMachine


class LeverageRebalancerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = ""
    controller_type: str = "generic"
    controller_name: str = "leverage_rebalancer"
    legs: int = 1

    operator: str = "operator"
    authorized_callers: List[str] = Field(default_factory=list, json_schema_extra={"is_updatable": True})
    anyone_callable: bool = Field(default=False, json_schema_extra={"is_updatable": True})

    target_leverage_ratio: Decimal = Field(default=Decimal("2"), json_schema_extra={"is_updatable": True})
    min_leverage_ratio: Decimal = Field(default=Decimal("1.7"), json_schema_extra={"is_updatable": True})
    max_leverage_ratio: Decimal = Field(default=Decimal("2.3"), json_schema_extra={"is_updatable": True})
    recentering_speed: Decimal = Field(default=Decimal("0.05"), json_schema_extra={"is_updatable": True})
    rebalance_interval: int = Field(default=86400, json_schema_extra={"is_updatable": True})
    reinvest_interval: int = Field(default=0, json_schema_extra={"is_updatable": True})

    twap_cooldown_period: int = Field(default=3000, json_schema_extra={"is_updatable": True})
    slippage_tolerance: Decimal = Field(default=Decimal("0.01"), json_schema_extra={"is_updatable": True})

    incentivized_twap_cooldown_period: int = Field(default=60, json_schema_extra={"is_updatable": True})
    incentivized_slippage_tolerance: Decimal = Field(default=Decimal("0.05"), json_schema_extra={"is_updatable": True})
    reward_amount: Decimal = Field(default=Decimal("1"), json_schema_extra={"is_updatable": True})
    incentivized_leverage_ratio: Decimal = Field(default=Decimal("2.6"), json_schema_extra={"is_updatable": True})

    exchange_name: str = "paper_perpetual"
    spot_exchange_name: str = "paper_spot"
    twap_max_trade_size: Decimal = Field(default=Decimal("20"), json_schema_extra={"is_updatable": True})
    incentivized_twap_max_trade_size: Decimal = Field(default=Decimal("25"), json_schema_extra={"is_updatable": True})
    base_asset: str = "vBASE"
    quote_asset: str = "vQUOTE"
    spot_asset: str = "BASE"
    collateral_asset: str = "USDC"
    routing: Dict[str, Any] = Field(default_factory=dict)

    # Paper account seed, used when the controller runs against in-memory venues.
    initial_collateral: Decimal = Decimal("0")
    initial_cash: Decimal = Decimal("0")
    initial_price: Decimal = Decimal("1")
    total_supply: Decimal = Decimal("1")
    incentive_balance: Decimal = Decimal("0")
    performance_fee: Decimal = Decimal("0")

    @field_validator("legs")
    @classmethod
    def _check_legs(cls, value: int) -> int:
        if value not in (1, 2):
            raise ValueError("legs must be 1 (leverage) or 2 (basis)")
        return value

    def methodology(self) -> MethodologySettings:
        return MethodologySettings(
            target_leverage_ratio=self.target_leverage_ratio,
            min_leverage_ratio=self.min_leverage_ratio,
            max_leverage_ratio=self.max_leverage_ratio,
            recentering_speed=self.recentering_speed,
            rebalance_interval=self.rebalance_interval,
            reinvest_interval=self.reinvest_interval,
        )

    def execution(self) -> ExecutionSettings:
        return ExecutionSettings(
            twap_cooldown_period=self.twap_cooldown_period,
            slippage_tolerance=self.slippage_tolerance,
        )

    def incentive(self) -> IncentiveSettings:
        return IncentiveSettings(
            incentivized_twap_cooldown_period=self.incentivized_twap_cooldown_period,
            incentivized_slippage_tolerance=self.incentivized_slippage_tolerance,
            reward_amount=self.reward_amount,
            incentivized_leverage_ratio=self.incentivized_leverage_ratio,
        )

    def exchange(self) -> ExchangeSettings:
        return ExchangeSettings(
            exchange_name=self.exchange_name,
            twap_max_trade_size=self.twap_max_trade_size,
            incentivized_twap_max_trade_size=self.incentivized_twap_max_trade_size,
            base_asset=self.base_asset,
            quote_asset=self.quote_asset,
            spot_asset=self.spot_asset,
            collateral_asset=self.collateral_asset,
            routing=dict(self.routing),
        )

    def to_settings(self) -> SettingsBundle:
        return SettingsBundle(
            methodology=self.methodology(),
            execution=self.execution(),
            incentive=self.incentive(),
            exchange=self.exchange(),
        )


class RebalanceOrchestrator:
    """Leverage controller for one perp position, optionally paired with a spot leg.

    Every operation reads the ledger once, validates before it trades, and writes the
    cooldown timestamps last. Operations are serialised by a re-entrant lock so the HTTP
    workers and the keeper loop never interleave.
    """

    _logger: Optional[logging.Logger] = None

    @classmethod
    def logger(cls) -> logging.Logger:
        if cls._logger is None:
            cls._logger = logging.getLogger(__name__)
        return cls._logger

    def __init__(
        self,
        config: LeverageRebalancerConfig,
        *,
        ledger: PositionLedger,
        perp_venue: TradeVenue,
        custody: RewardCustody,
        spot_venue: Optional[TradeVenue] = None,
        clock: Callable[[], float] = time.time,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config
        self._legs = config.legs
        if self._legs == 2 and spot_venue is None:
            raise ConfigurationInvalid("Basis controller requires a spot venue")
        self._policy = BoundsPolicy(legs=self._legs)
        self._settings = self._policy.validate(config.to_settings())

        self._ledger = ledger
        self._perp = perp_venue
        self._spot = spot_venue
        self._clock = clock
        self._events = event_bus or EventBus(config.id)
        self._fsm = RebalanceStateMachine(
            legs=self._legs,
            ctx=ControllerContext(
                authorized_callers=set(config.authorized_callers),
                anyone_callable=config.anyone_callable,
            ),
        )
        self._incentive = IncentiveController(custody, balance=config.incentive_balance)
        self._snapshot_builder = SnapshotBuilder(ledger=ledger)
        self._instructions = InstructionFactory(exchange=lambda: self._settings.exchange)
        self._lock = threading.RLock()

    @property
    def legs(self) -> int:
        return self._legs

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def context(self) -> ControllerContext:
        return self._fsm.ctx

    @property
    def settings(self) -> SettingsBundle:
        return self._settings

    # ---- state-mutating operations -------------------------------------------------

    def engage(self, caller: Caller) -> ChunkPlan:
        with self._lock:
            self._require_operator(caller)
            snapshot = self._snapshot()
            self._require_supply(snapshot)
            if snapshot.collateral_value <= 0:
                raise PreconditionFailed("Collateral balance must be > 0")
            if snapshot.base_balance != 0:
                raise PreconditionFailed("Base position must NOT exist")

            settings = self._settings
            target = settings.methodology.target_leverage_ratio
            total = LeverageMath.engage_rebalance_notional(
                snapshot.collateral_value, snapshot.base_price, target, self._legs
            )
            plan = ChunkPlanner.plan(total, settings.exchange.twap_max_trade_size)
            self._execute_chunk(snapshot, plan.chunk, settings.execution.slippage_tolerance)
            self._fsm.apply_chunk(plan, twap_target=target, start_leverage=ZERO)

            self._events.publish(
                Engaged(
                    prev_leverage=ZERO,
                    new_leverage=self._current_leverage(),
                    chunk_notional=plan.chunk,
                    total_notional=plan.total,
                )
            )
            self._fsm.record_reinvest(snapshot.now)
            self._fsm.record_trade(snapshot.now)
            return plan

    def rebalance(self, caller: Caller) -> ChunkPlan:
        with self._lock:
            self._require_direct_caller(caller)
            self._require_allowed_caller(caller)
            snapshot = self._snapshot()
            current = self._require_engaged(snapshot)
            settings = self._settings
            if self._fsm.ctx.in_twap:
                raise PreconditionFailed("Must call iterate")
            self._require_below_incentivized(current)

            m = settings.methodology
            outside = LeverageMath.is_outside_bounds(current, m.min_leverage_ratio, m.max_leverage_ratio)
            if not (outside or self._fsm.cooldown_elapsed(snapshot.now, m.rebalance_interval)):
                raise CooldownNotElapsed("Cooldown not elapsed or not valid leverage ratio")

            next_leverage = LeverageMath.next_leverage_ratio(current, m)
            total = LeverageMath.total_rebalance_notional(snapshot.base_balance, current, next_leverage, self._legs)
            plan = ChunkPlanner.plan(total, settings.exchange.twap_max_trade_size)
            self._execute_chunk(snapshot, plan.chunk, settings.execution.slippage_tolerance)
            self._fsm.apply_chunk(plan, twap_target=next_leverage, start_leverage=current)

            self._events.publish(
                Rebalanced(
                    prev_leverage=current,
                    new_leverage=self._current_leverage(),
                    chunk_notional=plan.chunk,
                    total_notional=plan.total,
                )
            )
            self._fsm.record_trade(snapshot.now)
            return plan

    def iterate_rebalance(self, caller: Caller) -> ChunkPlan:
        with self._lock:
            self._require_direct_caller(caller)
            self._require_allowed_caller(caller)
            snapshot = self._snapshot()
            current = self._require_engaged(snapshot)
            settings = self._settings
            ctx = self._fsm.ctx
            if not ctx.in_twap:
                raise PreconditionFailed("Not in TWAP state")
            self._require_below_incentivized(current)
            self._fsm.require_cooldown(
                snapshot.now, settings.execution.twap_cooldown_period, "TWAP cooldown must have elapsed"
            )

            if self._fsm.is_advantageous_move(current):
                ctx.clear_twap()
                plan = ChunkPlan(chunk=ZERO, total=ZERO)
                self._log_metric_event("advantageous_move", leverage=current)
                self._events.publish(
                    RebalanceIterated(
                        prev_leverage=current,
                        new_leverage=current,
                        chunk_notional=ZERO,
                        total_notional=ZERO,
                    )
                )
                self._fsm.record_trade(snapshot.now)
                return plan

            # Target stays the ratio computed before the TWAP began.
            twap_target = ctx.twap_leverage_ratio
            total = LeverageMath.total_rebalance_notional(snapshot.base_balance, current, twap_target, self._legs)
            plan = ChunkPlanner.plan(total, settings.exchange.twap_max_trade_size)
            self._execute_chunk(snapshot, plan.chunk, settings.execution.slippage_tolerance)
            self._fsm.apply_chunk(plan, twap_target=twap_target, start_leverage=ctx.twap_start_leverage_ratio)

            self._events.publish(
                RebalanceIterated(
                    prev_leverage=current,
                    new_leverage=self._current_leverage(),
                    chunk_notional=plan.chunk,
                    total_notional=plan.total,
                )
            )
            self._fsm.record_trade(snapshot.now)
            return plan

    def ripcord(self, caller: Caller) -> Decimal:
        with self._lock:
            self._require_direct_caller(caller)
            snapshot = self._snapshot()
            current = self._require_engaged(snapshot)
            settings = self._settings
            incentive = settings.incentive
            self._fsm.require_cooldown(
                snapshot.now, incentive.incentivized_twap_cooldown_period, "TWAP cooldown must have elapsed"
            )
            if abs(current) <= abs(incentive.incentivized_leverage_ratio):
                raise PreconditionFailed("Must be above incentivized leverage ratio")

            target = settings.methodology.max_leverage_ratio
            total = LeverageMath.total_rebalance_notional(snapshot.base_balance, current, target, self._legs)
            plan = ChunkPlanner.plan(total, settings.exchange.incentivized_twap_max_trade_size)
            self._execute_chunk(snapshot, plan.chunk, incentive.incentivized_slippage_tolerance)
            self._fsm.ctx.clear_twap()
            reward = self._incentive.pay(caller.principal, incentive.reward_amount)

            self._events.publish(
                RipcordCalled(
                    prev_leverage=current,
                    new_leverage=self._current_leverage(),
                    chunk_notional=plan.chunk,
                    reward_paid=reward,
                    caller=caller.principal,
                )
            )
            self._fsm.record_trade(snapshot.now)
            return reward

    def disengage(self, caller: Caller) -> ChunkPlan:
        with self._lock:
            self._require_operator(caller)
            snapshot = self._snapshot()
            current = self._require_engaged(snapshot)
            settings = self._settings
            self._fsm.require_cooldown(
                snapshot.now, settings.execution.twap_cooldown_period, "TWAP cooldown must have elapsed"
            )

            plan = ChunkPlanner.plan(-snapshot.base_balance, settings.exchange.twap_max_trade_size)
            spot_amount = snapshot.spot_balance
            if plan.continues_twap:
                spot_amount = min(abs(plan.chunk), snapshot.spot_balance)
            self._execute_chunk(snapshot, plan.chunk, settings.execution.slippage_tolerance, spot_amount=spot_amount)
            self._fsm.ctx.clear_twap()

            self._events.publish(
                Disengaged(
                    prev_leverage=current,
                    new_leverage=self._current_leverage(),
                    chunk_notional=plan.chunk,
                    total_notional=plan.total,
                )
            )
            self._fsm.record_trade(snapshot.now)
            return plan

    def reinvest(self, caller: Caller) -> Decimal:
        with self._lock:
            if self._legs != 2:
                raise PreconditionFailed("Reinvest is only available with a spot leg")
            self._require_operator(caller)
            snapshot = self._snapshot()
            self._require_engaged(snapshot)
            settings = self._settings
            if not self._fsm.reinvest_elapsed(snapshot.now, settings.methodology.reinvest_interval):
                raise CooldownNotElapsed("Reinvestment interval not elapsed")

            funding = self._ledger.withdraw_funding()
            deposited = ZERO
            spot_bought = ZERO
            if funding > 0:
                deposited = funding / 2
                self._ledger.deposit(deposited)
                spot_instruction = self._instructions.build_spot_trade(
                    venue=self._spot.name,
                    side=TradeSide.BUY,
                    amount=funding - deposited,
                    price=snapshot.base_price,
                    slippage=settings.execution.slippage_tolerance,
                    amount_in_is_quote=True,
                )
                spot_fill = self._spot.execute(spot_instruction)
                spot_bought = spot_fill.base_delta
                perp_instruction = self._instructions.build_perp_trade(
                    venue=self._perp.name,
                    chunk=Direction.SHORT.apply(spot_bought),
                    price=snapshot.base_price,
                    slippage=settings.execution.slippage_tolerance,
                )
                if perp_instruction is not None:
                    self._perp.execute(perp_instruction)

            self._events.publish(
                Reinvested(funding_amount=funding, collateral_deposited=deposited, spot_bought=spot_bought)
            )
            self._fsm.record_reinvest(snapshot.now)
            return funding

    def deposit(self, caller: Caller, collateral_units: Decimal) -> Decimal:
        with self._lock:
            self._require_operator(caller)
            snapshot = self._snapshot()
            self._require_supply(snapshot)
            amount = collateral_units * snapshot.total_supply
            self._ledger.deposit(amount)
            self._log_metric_event("deposit", units=collateral_units, amount=amount)
            return amount

    def withdraw(self, caller: Caller, collateral_units: Decimal) -> Decimal:
        with self._lock:
            self._require_operator(caller)
            snapshot = self._snapshot()
            self._require_supply(snapshot)
            amount = collateral_units * snapshot.total_supply
            self._ledger.withdraw(amount)
            self._log_metric_event("withdraw", units=collateral_units, amount=amount)
            return amount

    # ---- advisory ------------------------------------------------------------------

    def should_rebalance(self) -> ActionCode:
        with self._lock:
            decision = self._fsm.evaluate(self._snapshot(), self._settings)
            self._log_decision(decision)
            return decision.action

    def should_rebalance_with_bounds(self, custom_min: Decimal, custom_max: Decimal) -> ActionCode:
        with self._lock:
            decision = self._fsm.evaluate_with_bounds(self._snapshot(), self._settings, custom_min, custom_max)
            self._log_decision(decision)
            return decision.action

    def get_chunk_rebalance_notional(self) -> ChunkRebalance:
        with self._lock:
            snapshot = self._snapshot()
            current = self._fsm.current_leverage(snapshot)
            if current == 0:
                return ChunkRebalance(notional=ZERO, sell_asset_a="", buy_asset_a="")

            settings = self._settings
            max_trade = settings.exchange.twap_max_trade_size
            if abs(current) > abs(settings.incentive.incentivized_leverage_ratio):
                target = settings.methodology.max_leverage_ratio
                max_trade = settings.exchange.incentivized_twap_max_trade_size
            elif self._fsm.ctx.in_twap:
                target = self._fsm.ctx.twap_leverage_ratio
            else:
                target = LeverageMath.next_leverage_ratio(current, settings.methodology)

            total = LeverageMath.total_rebalance_notional(snapshot.base_balance, current, target, self._legs)
            chunk = ChunkPlanner.plan_chunk(total, max_trade)
            return self._chunk_assets(chunk)

    def get_current_leverage_ratio(self) -> Decimal:
        with self._lock:
            return self._current_leverage()

    def get_methodology(self) -> MethodologySettings:
        return self._settings.methodology

    def get_execution(self) -> ExecutionSettings:
        return self._settings.execution

    def get_incentive(self) -> IncentiveSettings:
        return self._settings.incentive

    def get_exchange_settings(self) -> ExchangeSettings:
        return self._settings.exchange

    def get_current_incentive_reward(self) -> Decimal:
        with self._lock:
            current = self._current_leverage()
            incentive = self._settings.incentive
            if abs(current) <= abs(incentive.incentivized_leverage_ratio):
                return ZERO
            return self._incentive.reward_for(incentive.reward_amount)

    def incentive_balance(self) -> Decimal:
        return self._incentive.balance

    def status(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = self._snapshot()
            current = self._fsm.current_leverage(snapshot)
            ctx = self._fsm.ctx
            return {
                "controller_id": self.config.id,
                "controller_name": self.config.controller_name,
                "legs": self._legs,
                "phase": self._fsm.phase(current).value,
                "leverage_ratio": current,
                "twap_leverage_ratio": ctx.twap_leverage_ratio,
                "last_trade_timestamp": ctx.last_trade_timestamp,
                "last_reinvest_timestamp": ctx.last_reinvest_timestamp,
                "collateral_value": snapshot.collateral_value,
                "base_balance": snapshot.base_balance,
                "spot_balance": snapshot.spot_balance,
                "base_price": snapshot.base_price,
                "incentive_balance": self._incentive.balance,
                "authorized_callers": sorted(ctx.authorized_callers),
                "anyone_callable": ctx.anyone_callable,
            }

    # ---- configuration -------------------------------------------------------------

    def set_methodology_settings(self, caller: Caller, methodology: MethodologySettings) -> None:
        self._update_settings(caller, "methodology", methodology=methodology)

    def set_execution_settings(self, caller: Caller, execution: ExecutionSettings) -> None:
        self._update_settings(caller, "execution", execution=execution)

    def set_incentive_settings(self, caller: Caller, incentive: IncentiveSettings) -> None:
        self._update_settings(caller, "incentive", incentive=incentive)

    def set_exchange_settings(self, caller: Caller, exchange: ExchangeSettings) -> None:
        self._update_settings(caller, "exchange", exchange=exchange)

    def update_authorized_callers(self, caller: Caller, callers: Sequence[str], statuses: Sequence[bool]) -> None:
        with self._lock:
            self._require_operator(caller)
            self._fsm.require_not_in_progress()
            if len(callers) != len(statuses):
                raise ConfigurationInvalid("Array length mismatch")
            allowed = self._fsm.ctx.authorized_callers
            for principal, status in zip(callers, statuses):
                if status:
                    allowed.add(principal)
                else:
                    allowed.discard(principal)
            self._events.publish(
                SettingsUpdated(
                    group="authorized_callers",
                    values={principal: status for principal, status in zip(callers, statuses)},
                )
            )

    def update_anyone_callable(self, caller: Caller, status: bool) -> None:
        with self._lock:
            self._require_operator(caller)
            self._fsm.require_not_in_progress()
            self._fsm.ctx.anyone_callable = status
            self._events.publish(SettingsUpdated(group="anyone_callable", values={"status": status}))

    def withdraw_incentive_balance(self, caller: Caller) -> Decimal:
        with self._lock:
            self._require_operator(caller)
            self._fsm.require_not_in_progress()
            amount = self._incentive.withdraw_balance(caller.principal)
            self._log_metric_event("incentive_withdrawn", recipient=caller.principal, amount=amount)
            return amount

    def fund_incentive(self, amount: Decimal) -> Decimal:
        with self._lock:
            balance = self._incentive.fund(amount)
            self._log_metric_event("incentive_funded", amount=amount, balance=balance)
            return balance

    def _update_settings(self, caller: Caller, group: str, **changes: Any) -> None:
        with self._lock:
            self._require_operator(caller)
            self._fsm.require_not_in_progress()
            candidate = replace(self._settings, **changes)
            self._policy.validate(candidate)
            self._settings = candidate
            self._events.publish(SettingsUpdated(group=group, values=asdict(changes[group])))

    # ---- internals -----------------------------------------------------------------

    def _snapshot(self) -> PositionSnapshot:
        return self._snapshot_builder.build(now=self._clock())

    def _current_leverage(self) -> Decimal:
        return self._fsm.current_leverage(self._snapshot_builder.build(now=self._clock()))

    def _require_operator(self, caller: Caller) -> None:
        if caller.principal != self.config.operator:
            raise AuthorizationFailed("Must be operator")

    def _require_allowed_caller(self, caller: Caller) -> None:
        ctx = self._fsm.ctx
        if not ctx.anyone_callable and caller.principal not in ctx.authorized_callers:
            raise AuthorizationFailed("Address not permitted to call")

    @staticmethod
    def _require_direct_caller(caller: Caller) -> None:
        if caller.relayed:
            raise AuthorizationFailed("Caller must be a direct principal")

    @staticmethod
    def _require_supply(snapshot: PositionSnapshot) -> None:
        if snapshot.total_supply <= 0:
            raise PreconditionFailed("Outstanding shares must be > 0")

    def _require_engaged(self, snapshot: PositionSnapshot) -> Decimal:
        self._require_supply(snapshot)
        current = self._fsm.current_leverage(snapshot)
        if current == 0:
            raise PreconditionFailed("Current leverage ratio must NOT be 0")
        return current

    def _require_below_incentivized(self, current: Decimal) -> None:
        if abs(current) > abs(self._settings.incentive.incentivized_leverage_ratio):
            raise PreconditionFailed("Must be below incentivized leverage ratio")

    def _execute_chunk(
        self,
        snapshot: PositionSnapshot,
        chunk: Decimal,
        slippage: Decimal,
        spot_amount: Optional[Decimal] = None,
    ) -> None:
        if chunk == 0:
            return
        price = snapshot.base_price
        perp_instruction = self._instructions.build_perp_trade(
            venue=self._perp.name, chunk=chunk, price=price, slippage=slippage
        )
        spot_instruction = None
        if self._legs == 2:
            amount = abs(chunk) if spot_amount is None else spot_amount
            if chunk < 0:
                # Perp exposure grew, so the spot hedge is bought with collateral pulled from the perp account.
                side = TradeSide.BUY
            else:
                side = TradeSide.SELL
                amount = min(amount, snapshot.spot_balance)
            spot_instruction = self._instructions.build_spot_trade(
                venue=self._spot.name, side=side, amount=amount, price=price, slippage=slippage
            )

        self._perp.execute(perp_instruction)
        if spot_instruction is None:
            return
        try:
            self._execute_spot_leg(spot_instruction)
        except Exception:
            self.logger().warning(
                "Spot leg failed, unwinding perp chunk | controller=%s chunk=%s", self.config.id, chunk
            )
            unwind = self._instructions.build_perp_trade(
                venue=self._perp.name, chunk=-chunk, price=price, slippage=slippage
            )
            self._perp.execute(unwind)
            raise

    def _execute_spot_leg(self, instruction: TradeInstruction) -> None:
        if instruction.side == TradeSide.SELL:
            fill = self._spot.execute(instruction)
            self._ledger.deposit(fill.quote_delta)
            return
        self._ledger.withdraw(instruction.limit)
        try:
            fill = self._spot.execute(instruction)
        except Exception:
            self._ledger.deposit(instruction.limit)
            raise
        self._ledger.deposit(instruction.limit + fill.quote_delta)

    def _chunk_assets(self, chunk: Decimal) -> ChunkRebalance:
        exchange = self._settings.exchange
        if chunk >= 0:
            sell_a, buy_a = exchange.quote_asset, exchange.base_asset
            sell_b, buy_b = exchange.spot_asset, exchange.collateral_asset
        else:
            sell_a, buy_a = exchange.base_asset, exchange.quote_asset
            sell_b, buy_b = exchange.collateral_asset, exchange.spot_asset
        if self._legs == 1:
            sell_b = buy_b = ""
        return ChunkRebalance(
            notional=chunk,
            sell_asset_a=sell_a,
            buy_asset_a=buy_a,
            sell_asset_b=sell_b,
            buy_asset_b=buy_b,
        )

    def _log_decision(self, decision: Decision) -> None:
        if decision.action == ActionCode.NONE:
            return
        self.logger().info(
            "Decision %s/%s | controller=%s",
            decision.action.name,
            decision.reason or "",
            self.config.id,
        )

    def _log_metric_event(self, event: str, **fields: Any) -> None:
        parts: List[str] = []
        for key, value in fields.items():
            if value is None:
                continue
            parts.append(f"{key}={value}")
        payload = " ".join(parts)
        if payload:
            self.logger().info("metric_%s | controller=%s %s", event, self.config.id, payload)
