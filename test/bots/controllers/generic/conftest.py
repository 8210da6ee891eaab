from decimal import Decimal

import pytest

from bots.controllers.generic.leverage_domain.components import Caller
from bots.controllers.generic.leverage_domain.paper import (
    PaperLedger,
    PaperPerpVenue,
    PaperRewardCustody,
    PaperSpotVenue,
)
from bots.controllers.generic.perp_basis import PerpBasisConfig, PerpBasisController
from bots.controllers.generic.perp_leverage import PerpLeverageConfig, PerpLeverageController


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


OPERATOR = Caller("operator")
KEEPER = Caller("keeper")
STRANGER = Caller("stranger")


def short_leverage_config(**overrides) -> PerpLeverageConfig:
    values = dict(
        id="eth_short",
        operator=OPERATOR.principal,
        authorized_callers=[KEEPER.principal],
        target_leverage_ratio=Decimal("-1"),
        min_leverage_ratio=Decimal("-0.9"),
        max_leverage_ratio=Decimal("-1.1"),
        incentivized_leverage_ratio=Decimal("-1.3"),
        twap_max_trade_size=Decimal("200"),
        incentivized_twap_max_trade_size=Decimal("250"),
        incentive_balance=Decimal("5"),
    )
    values.update(overrides)
    return PerpLeverageConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_leverage(clock):
    """Builds a single-leg controller on a paper ledger seeded with the given position."""

    def _make(ledger=None, **overrides):
        ledger = ledger or PaperLedger(collateral=Decimal("1000"), price=Decimal("10"), supply=Decimal("10"))
        config = short_leverage_config(**overrides)
        custody = PaperRewardCustody()
        controller = PerpLeverageController(
            config,
            ledger=ledger,
            perp_venue=PaperPerpVenue(config.exchange_name, ledger),
            custody=custody,
            clock=clock,
        )
        return controller, ledger, custody

    return _make


@pytest.fixture
def make_basis(clock):
    def _make(ledger=None, **overrides):
        ledger = ledger or PaperLedger(
            collateral=Decimal("1000"),
            price=Decimal("10"),
            supply=Decimal("10"),
            performance_fee=Decimal("0.1"),
        )
        values = dict(
            id="eth_basis",
            operator=OPERATOR.principal,
            authorized_callers=[KEEPER.principal],
            twap_max_trade_size=Decimal("100"),
            incentivized_twap_max_trade_size=Decimal("125"),
            incentive_balance=Decimal("5"),
        )
        values.update(overrides)
        config = PerpBasisConfig(**values)
        custody = PaperRewardCustody()
        controller = PerpBasisController(
            config,
            ledger=ledger,
            perp_venue=PaperPerpVenue(config.exchange_name, ledger),
            spot_venue=PaperSpotVenue(config.spot_exchange_name, ledger),
            custody=custody,
            clock=clock,
        )
        return controller, ledger, custody

    return _make
