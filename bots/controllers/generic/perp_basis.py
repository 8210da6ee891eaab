from decimal import Decimal
from typing import Callable, Optional

from pydantic import Field, field_validator

from . import leverage_rebalancer
from .leverage_domain.events import EventBus
from .leverage_domain.io import PositionLedger, RewardCustody, TradeVenue


class PerpBasisConfig(leverage_rebalancer.LeverageRebalancerConfig):
    """Delta-neutral basis: short perp hedged by a spot leg, funding reinvested periodically."""

    controller_name: str = "perp_basis"
    legs: int = Field(default=2, json_schema_extra={"hidden": True})
    exchange_name: str = "paper_perpetual"
    spot_exchange_name: str = "paper_spot"

    target_leverage_ratio: Decimal = Field(default=Decimal("-1"), json_schema_extra={"is_updatable": True})
    min_leverage_ratio: Decimal = Field(default=Decimal("-0.9"), json_schema_extra={"is_updatable": True})
    max_leverage_ratio: Decimal = Field(default=Decimal("-1.1"), json_schema_extra={"is_updatable": True})
    reinvest_interval: int = Field(default=604800, json_schema_extra={"is_updatable": True})
    slippage_tolerance: Decimal = Field(default=Decimal("0.15"), json_schema_extra={"is_updatable": True})
    incentivized_slippage_tolerance: Decimal = Field(default=Decimal("0.15"), json_schema_extra={"is_updatable": True})
    incentivized_leverage_ratio: Decimal = Field(default=Decimal("-1.3"), json_schema_extra={"is_updatable": True})
    performance_fee: Decimal = Decimal("0.1")

    @field_validator("legs", mode="after")
    @classmethod
    def validate_legs(cls, v):
        if v != 2:
            raise ValueError("perp_basis pairs the perp with a spot leg (legs=2)")
        return v


class PerpBasisController(leverage_rebalancer.RebalanceOrchestrator):
    def __init__(
        self,
        config: PerpBasisConfig,
        *,
        ledger: PositionLedger,
        perp_venue: TradeVenue,
        spot_venue: TradeVenue,
        custody: RewardCustody,
        clock: Optional[Callable[[], float]] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        kwargs = {"clock": clock} if clock is not None else {}
        super().__init__(
            config,
            ledger=ledger,
            perp_venue=perp_venue,
            spot_venue=spot_venue,
            custody=custody,
            event_bus=event_bus,
            **kwargs,
        )
