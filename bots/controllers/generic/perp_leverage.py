from typing import Callable, Optional

from pydantic import Field, field_validator

from . import leverage_rebalancer
from .leverage_domain.events import EventBus
from .leverage_domain.io import PositionLedger, RewardCustody, TradeVenue


class PerpLeverageConfig(leverage_rebalancer.LeverageRebalancerConfig):
    controller_name: str = "perp_leverage"
    legs: int = Field(default=1, json_schema_extra={"hidden": True})
    exchange_name: str = "paper_perpetual"

    @field_validator("legs", mode="after")
    @classmethod
    def validate_legs(cls, v):
        if v != 1:
            raise ValueError("perp_leverage trades a single perp leg (legs=1)")
        return v


class PerpLeverageController(leverage_rebalancer.RebalanceOrchestrator):
    """Keeps a single perpetual position at a target leverage; long or short."""

    def __init__(
        self,
        config: PerpLeverageConfig,
        *,
        ledger: PositionLedger,
        perp_venue: TradeVenue,
        custody: RewardCustody,
        clock: Optional[Callable[[], float]] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        kwargs = {"clock": clock} if clock is not None else {}
        super().__init__(
            config,
            ledger=ledger,
            perp_venue=perp_venue,
            custody=custody,
            event_bus=event_bus,
            **kwargs,
        )
