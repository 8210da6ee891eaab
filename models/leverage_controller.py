"""
Models for the leverage controller API.
Covers advisory queries, operation results and settings updates.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================
# Advisory Models
# ============================================

class ShouldRebalanceResponse(BaseModel):
    """Action the keeper should take next."""
    controller_id: str
    action: int = Field(description="0=NONE, 1=REBALANCE, 2=ITERATE_TWAP, 3=RIPCORD, 4=REINVEST")
    action_name: str


class ChunkRebalanceResponse(BaseModel):
    """Signed notional of the next chunk and the assets traded on each leg."""
    controller_id: str
    notional: Decimal
    sell_asset_a: str
    buy_asset_a: str
    sell_asset_b: str = ""
    buy_asset_b: str = ""


class IncentiveResponse(BaseModel):
    controller_id: str
    current_reward: Decimal
    balance: Decimal
    settings: Dict[str, Any]


class ControllerStatusResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    controller_id: str
    controller_name: str
    legs: int
    phase: str
    leverage_ratio: Decimal
    twap_leverage_ratio: Decimal
    last_trade_timestamp: float
    last_reinvest_timestamp: float


# ============================================
# Operation Models
# ============================================

class OperationResponse(BaseModel):
    """Result of a state-mutating operation."""
    controller_id: str
    operation: str
    chunk_notional: Optional[Decimal] = None
    total_notional: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    leverage_ratio: Decimal
    twap_leverage_ratio: Decimal


class CollateralRequest(BaseModel):
    collateral_units: Decimal = Field(gt=0, description="Collateral units per outstanding share")


class FundIncentiveRequest(BaseModel):
    amount: Decimal = Field(gt=0)


# ============================================
# Settings Models
# ============================================

class MethodologySettingsRequest(BaseModel):
    target_leverage_ratio: Decimal
    min_leverage_ratio: Decimal
    max_leverage_ratio: Decimal
    recentering_speed: Decimal
    rebalance_interval: int
    reinvest_interval: int = 0


class ExecutionSettingsRequest(BaseModel):
    twap_cooldown_period: int
    slippage_tolerance: Decimal


class IncentiveSettingsRequest(BaseModel):
    incentivized_twap_cooldown_period: int
    incentivized_slippage_tolerance: Decimal
    reward_amount: Decimal
    incentivized_leverage_ratio: Decimal


class ExchangeSettingsRequest(BaseModel):
    exchange_name: str
    twap_max_trade_size: Decimal
    incentivized_twap_max_trade_size: Decimal
    base_asset: str = "vBASE"
    quote_asset: str = "vQUOTE"
    spot_asset: str = "BASE"
    collateral_asset: str = "USDC"
    routing: Dict[str, Any] = Field(default_factory=dict)


class AuthorizedCallersRequest(BaseModel):
    callers: List[str]
    statuses: List[bool]


class AnyoneCallableRequest(BaseModel):
    status: bool
