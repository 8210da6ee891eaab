from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Set, Tuple

ZERO = Decimal("0")
ONE_DECIMAL = Decimal("1")


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    @classmethod
    def of(cls, value: Decimal) -> "Direction":
        return cls.SHORT if value < 0 else cls.LONG

    def apply(self, magnitude: Decimal) -> Decimal:
        magnitude = abs(magnitude)
        return -magnitude if self is Direction.SHORT else magnitude


@dataclass(frozen=True)
class Leverage:
    """Unsigned magnitude plus an explicit direction tag."""

    direction: Direction
    magnitude: Decimal

    @classmethod
    def split(cls, signed: Decimal, fallback: Optional[Direction] = None) -> "Leverage":
        if signed == 0 and fallback is not None:
            return cls(direction=fallback, magnitude=ZERO)
        return cls(direction=Direction.of(signed), magnitude=abs(signed))

    @property
    def signed(self) -> Decimal:
        return self.direction.apply(self.magnitude)


class ActionCode(IntEnum):
    NONE = 0
    REBALANCE = 1
    ITERATE_TWAP = 2
    RIPCORD = 3
    REINVEST = 4


class ControllerPhase(str, Enum):
    IDLE = "IDLE"
    ENGAGED_STABLE = "ENGAGED_STABLE"
    ENGAGED_TWAP = "ENGAGED_TWAP"


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class MethodologySettings:
    target_leverage_ratio: Decimal
    min_leverage_ratio: Decimal
    max_leverage_ratio: Decimal
    recentering_speed: Decimal
    rebalance_interval: int
    reinvest_interval: int = 0

    @property
    def direction(self) -> Direction:
        return Direction.of(self.target_leverage_ratio)


@dataclass(frozen=True)
class ExecutionSettings:
    twap_cooldown_period: int
    slippage_tolerance: Decimal


@dataclass(frozen=True)
class IncentiveSettings:
    incentivized_twap_cooldown_period: int
    incentivized_slippage_tolerance: Decimal
    reward_amount: Decimal
    incentivized_leverage_ratio: Decimal


@dataclass(frozen=True)
class ExchangeSettings:
    exchange_name: str
    twap_max_trade_size: Decimal
    incentivized_twap_max_trade_size: Decimal
    base_asset: str = "vBASE"
    quote_asset: str = "vQUOTE"
    spot_asset: str = "BASE"
    collateral_asset: str = "USDC"
    routing: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SettingsBundle:
    methodology: MethodologySettings
    execution: ExecutionSettings
    incentive: IncentiveSettings
    exchange: ExchangeSettings


@dataclass
class ControllerContext:
    last_trade_timestamp: float = 0.0
    last_reinvest_timestamp: float = 0.0
    twap_leverage_ratio: Decimal = ZERO
    twap_start_leverage_ratio: Decimal = ZERO
    authorized_callers: Set[str] = field(default_factory=set)
    anyone_callable: bool = False

    @property
    def in_twap(self) -> bool:
        return self.twap_leverage_ratio != 0

    def clear_twap(self) -> None:
        self.twap_leverage_ratio = ZERO
        self.twap_start_leverage_ratio = ZERO


@dataclass(frozen=True)
class PositionSnapshot:
    now: float
    collateral_value: Decimal
    base_balance: Decimal
    base_price: Decimal
    total_supply: Decimal
    spot_balance: Decimal = ZERO

    @property
    def position_notional(self) -> Decimal:
        return self.base_balance * self.base_price

    @property
    def engaged(self) -> bool:
        return self.base_balance != 0 and self.collateral_value > 0


@dataclass(frozen=True)
class Caller:
    principal: str
    relayed: bool = False


@dataclass(frozen=True)
class TradeInstruction:
    venue: str
    side: TradeSide
    asset: str
    amount: Decimal
    # BUY: max quote paid (or min base received when amount_in_is_quote); SELL: min quote received.
    limit: Decimal
    amount_in_is_quote: bool = False
    routing: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fill:
    instruction: TradeInstruction
    base_delta: Decimal
    quote_delta: Decimal


@dataclass(frozen=True)
class ChunkPlan:
    chunk: Decimal
    total: Decimal

    @property
    def continues_twap(self) -> bool:
        return abs(self.chunk) < abs(self.total)


@dataclass(frozen=True)
class ChunkRebalance:
    notional: Decimal
    sell_asset_a: str
    buy_asset_a: str
    sell_asset_b: str = ""
    buy_asset_b: str = ""

    def as_tuple(self) -> Tuple[Decimal, str, str, str, str]:
        return (self.notional, self.sell_asset_a, self.buy_asset_a, self.sell_asset_b, self.buy_asset_b)


@dataclass(frozen=True)
class Decision:
    action: ActionCode = ActionCode.NONE
    reason: str = ""
