from decimal import Decimal
from typing import Optional, Tuple

from .bounds_policy import BoundsPolicy
from .components import (
    ActionCode,
    ChunkPlan,
    ControllerContext,
    ControllerPhase,
    Decision,
    PositionSnapshot,
    SettingsBundle,
)
from .errors import CooldownNotElapsed, PreconditionFailed
from .leverage_math import LeverageMath


class RebalanceStateMachine:
    """Owns the TWAP marker and cooldown timestamps and answers "what should happen next".

    Timestamps are only written through ``record_*`` so callers can keep the write as
    the last effect of an operation.
    """

    def __init__(self, *, legs: int = 1, ctx: Optional[ControllerContext] = None) -> None:
        self._legs = legs
        self.ctx = ctx or ControllerContext()

    @property
    def legs(self) -> int:
        return self._legs

    @staticmethod
    def current_leverage(snapshot: PositionSnapshot) -> Decimal:
        return LeverageMath.current_leverage_ratio(snapshot.collateral_value, snapshot.position_notional)

    def phase(self, current_leverage: Decimal) -> ControllerPhase:
        if current_leverage == 0:
            return ControllerPhase.IDLE
        if self.ctx.in_twap:
            return ControllerPhase.ENGAGED_TWAP
        return ControllerPhase.ENGAGED_STABLE

    def evaluate(
        self,
        snapshot: PositionSnapshot,
        settings: SettingsBundle,
        bounds: Optional[Tuple[Decimal, Decimal]] = None,
    ) -> Decision:
        m = settings.methodology
        lower, upper = bounds if bounds is not None else (m.min_leverage_ratio, m.max_leverage_ratio)
        current = self.current_leverage(snapshot)
        phase = self.phase(current)
        now = snapshot.now

        if phase == ControllerPhase.IDLE:
            return Decision(ActionCode.NONE, "idle")

        incentivized = settings.incentive.incentivized_leverage_ratio
        if abs(current) > abs(incentivized) and self.cooldown_elapsed(
            now, settings.incentive.incentivized_twap_cooldown_period
        ):
            return Decision(ActionCode.RIPCORD, "above_incentivized_leverage")

        if phase == ControllerPhase.ENGAGED_TWAP:
            if self.cooldown_elapsed(now, settings.execution.twap_cooldown_period):
                return Decision(ActionCode.ITERATE_TWAP, "twap_cooldown_elapsed")
            return Decision(ActionCode.NONE, "twap_cooldown_pending")

        outside = LeverageMath.is_outside_bounds(current, lower, upper)
        if outside and self.cooldown_elapsed(now, m.rebalance_interval):
            return Decision(ActionCode.REBALANCE, "outside_bounds")

        if (
            self._legs == 2
            and not outside
            and self.reinvest_elapsed(now, m.reinvest_interval)
        ):
            return Decision(ActionCode.REINVEST, "reinvest_interval_elapsed")

        return Decision(ActionCode.NONE, "within_bounds" if not outside else "rebalance_interval_pending")

    def evaluate_with_bounds(
        self,
        snapshot: PositionSnapshot,
        settings: SettingsBundle,
        custom_min: Decimal,
        custom_max: Decimal,
    ) -> Decision:
        bounds = BoundsPolicy.validate_custom_bounds(settings.methodology, custom_min, custom_max)
        return self.evaluate(snapshot, settings, bounds=bounds)

    def cooldown_elapsed(self, now: float, period: float) -> bool:
        return now - self.ctx.last_trade_timestamp >= period

    def reinvest_elapsed(self, now: float, period: float) -> bool:
        return now - self.ctx.last_reinvest_timestamp >= period

    def require_cooldown(self, now: float, period: float, reason: str) -> None:
        if not self.cooldown_elapsed(now, period):
            raise CooldownNotElapsed(reason)

    def require_not_in_progress(self) -> None:
        if self.ctx.in_twap:
            raise PreconditionFailed("Rebalance is currently in progress")

    def apply_chunk(self, plan: ChunkPlan, twap_target: Decimal, start_leverage: Decimal) -> None:
        if plan.continues_twap:
            self.ctx.twap_leverage_ratio = twap_target
            self.ctx.twap_start_leverage_ratio = start_leverage
        else:
            self.ctx.clear_twap()

    def is_advantageous_move(self, current: Decimal) -> bool:
        """True when price has already carried leverage past the stored TWAP target."""
        twap = self.ctx.twap_leverage_ratio
        start = self.ctx.twap_start_leverage_ratio
        if twap == 0:
            return False
        levering = abs(twap) > abs(start)
        if levering:
            return abs(current) >= abs(twap)
        return abs(current) <= abs(twap)

    def record_trade(self, now: float) -> None:
        self.ctx.last_trade_timestamp = now

    def record_reinvest(self, now: float) -> None:
        self.ctx.last_reinvest_timestamp = now
