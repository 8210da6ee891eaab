from decimal import Decimal
from typing import Optional, Tuple

from .components import (
    Direction,
    ExchangeSettings,
    ExecutionSettings,
    IncentiveSettings,
    MethodologySettings,
    SettingsBundle,
)
from .errors import ConfigurationInvalid


class BoundsPolicy:
    """Settings invariants, checked against the whole bundle so cross-group rules hold.

    ``legs == 2`` is the basis variant, which only runs short and needs a reinvest interval.
    """

    def __init__(self, legs: int = 1) -> None:
        if legs not in (1, 2):
            raise ConfigurationInvalid(f"Unsupported leg count {legs}")
        self._legs = legs

    @property
    def legs(self) -> int:
        return self._legs

    def validate(self, bundle: SettingsBundle) -> SettingsBundle:
        self.validate_methodology(bundle.methodology)
        self._validate_interval_ordering(bundle.methodology, bundle.execution)
        self.validate_execution(bundle.execution)
        self._validate_cooldown_ordering(bundle.execution, bundle.incentive)
        self.validate_incentive(bundle.incentive, bundle.methodology)
        self.validate_exchange(bundle.exchange)
        return bundle

    def validate_methodology(self, m: MethodologySettings) -> None:
        target = m.target_leverage_ratio
        if target == 0:
            raise ConfigurationInvalid("Must be valid target leverage")
        if self._legs == 2 and target > 0:
            raise ConfigurationInvalid("Must be valid target leverage")
        direction = Direction.of(target)
        if (
            m.min_leverage_ratio == 0
            or Direction.of(m.min_leverage_ratio) is not direction
            or abs(m.min_leverage_ratio) > abs(target)
        ):
            raise ConfigurationInvalid("Must be valid min leverage")
        if Direction.of(m.max_leverage_ratio) is not direction or abs(m.max_leverage_ratio) < abs(target):
            raise ConfigurationInvalid("Must be valid max leverage")
        if m.recentering_speed <= 0 or m.recentering_speed > 1:
            raise ConfigurationInvalid("Must be valid recentering speed")
        if self._legs == 2 and m.reinvest_interval <= 0:
            raise ConfigurationInvalid("Reinvest interval must be > 0")

    @staticmethod
    def validate_execution(e: ExecutionSettings) -> None:
        if e.slippage_tolerance < 0 or e.slippage_tolerance >= 1:
            raise ConfigurationInvalid("Slippage tolerance must be <100%")

    @staticmethod
    def validate_incentive(i: IncentiveSettings, m: MethodologySettings) -> None:
        if i.incentivized_slippage_tolerance < 0 or i.incentivized_slippage_tolerance >= 1:
            raise ConfigurationInvalid("Incentivized slippage tolerance must be <100%")
        if i.incentivized_leverage_ratio == 0 or Direction.of(i.incentivized_leverage_ratio) is not m.direction:
            raise ConfigurationInvalid("Must be valid incentivized leverage ratio")
        if abs(i.incentivized_leverage_ratio) <= abs(m.max_leverage_ratio):
            raise ConfigurationInvalid("Incentivized leverage ratio must be > max leverage ratio")
        if i.reward_amount < 0:
            raise ConfigurationInvalid("Reward amount must be >= 0")

    @staticmethod
    def validate_exchange(x: ExchangeSettings) -> None:
        if x.twap_max_trade_size <= 0:
            raise ConfigurationInvalid("Max TWAP trade size must not be 0")
        if x.incentivized_twap_max_trade_size < x.twap_max_trade_size:
            raise ConfigurationInvalid("Incentivized max TWAP trade size must be >= max TWAP trade size")

    @staticmethod
    def _validate_interval_ordering(m: MethodologySettings, e: ExecutionSettings) -> None:
        if m.rebalance_interval <= e.twap_cooldown_period:
            raise ConfigurationInvalid("Rebalance interval must be greater than TWAP cooldown period")

    @staticmethod
    def _validate_cooldown_ordering(e: ExecutionSettings, i: IncentiveSettings) -> None:
        if e.twap_cooldown_period <= i.incentivized_twap_cooldown_period:
            raise ConfigurationInvalid("TWAP cooldown must be greater than incentivized TWAP cooldown")

    @staticmethod
    def validate_custom_bounds(
        m: MethodologySettings,
        custom_min: Decimal,
        custom_max: Decimal,
    ) -> Tuple[Decimal, Decimal]:
        """Custom bounds may only tighten the configured band."""
        direction = m.direction
        for value in (custom_min, custom_max):
            if value == 0 or Direction.of(value) is not direction:
                raise ConfigurationInvalid("Custom bounds must be valid")
        if abs(custom_min) < abs(m.min_leverage_ratio) or abs(custom_max) > abs(m.max_leverage_ratio):
            raise ConfigurationInvalid("Custom bounds must be valid")
        if abs(custom_min) > abs(custom_max):
            raise ConfigurationInvalid("Custom bounds must be valid")
        return custom_min, custom_max

    def first_violation(self, bundle: SettingsBundle) -> Optional[str]:
        try:
            self.validate(bundle)
        except ConfigurationInvalid as exc:
            return exc.reason
        return None
