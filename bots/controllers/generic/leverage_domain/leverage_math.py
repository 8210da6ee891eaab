from decimal import Decimal

from ...shared.fixed_point import ONE, precise_div, precise_mul

from .components import ZERO, Direction, Leverage, MethodologySettings
from .errors import PreconditionFailed


class LeverageMath:
    @staticmethod
    def current_leverage_ratio(collateral_value: Decimal, position_notional: Decimal) -> Decimal:
        if collateral_value <= 0 or position_notional == 0:
            return ZERO
        return precise_div(position_notional, collateral_value)

    @staticmethod
    def next_leverage_ratio(current: Decimal, methodology: MethodologySettings) -> Decimal:
        """Move |current| toward |target| by the recentering speed, clamp, then re-sign.

        A flat position takes the target's direction.
        """
        target = Leverage.split(methodology.target_leverage_ratio)
        cur = Leverage.split(current, fallback=target.direction)
        speed = methodology.recentering_speed

        raw = precise_mul(target.magnitude, speed) + precise_mul(cur.magnitude, ONE - speed)
        clamped = LeverageMath.clamp_magnitude(
            raw,
            abs(methodology.min_leverage_ratio),
            abs(methodology.max_leverage_ratio),
        )
        direction = cur.direction if current != 0 else target.direction
        return Leverage(direction=direction, magnitude=clamped).signed

    @staticmethod
    def clamp_magnitude(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
        return min(max(value, lower), upper)

    @staticmethod
    def total_rebalance_notional(
        base_balance: Decimal,
        current: Decimal,
        next_leverage: Decimal,
        legs: int = 1,
    ) -> Decimal:
        if current == 0:
            raise PreconditionFailed("Current leverage ratio must NOT be 0")
        delta = next_leverage - current
        if legs == 1:
            return precise_div(precise_mul(base_balance, delta), current)
        # The paired spot leg moves with the perp leg, hence the (1 - next) factor.
        denominator = precise_mul(current, ONE - next_leverage)
        return precise_div(precise_mul(base_balance, delta), denominator)

    @staticmethod
    def engage_rebalance_notional(
        collateral_value: Decimal,
        base_price: Decimal,
        target: Decimal,
        legs: int = 1,
    ) -> Decimal:
        if base_price <= 0:
            raise PreconditionFailed("Base price must be > 0")
        funding = collateral_value if legs == 1 else precise_div(collateral_value, Decimal(legs))
        return precise_div(precise_mul(funding, target), base_price)

    @staticmethod
    def is_outside_bounds(current: Decimal, lower: Decimal, upper: Decimal) -> bool:
        magnitude = abs(current)
        return magnitude < abs(lower) or magnitude > abs(upper)

    @staticmethod
    def is_levering(current: Decimal, target: Decimal) -> bool:
        return abs(target) > abs(current)

    @staticmethod
    def direction_of(value: Decimal) -> Direction:
        return Direction.of(value)
