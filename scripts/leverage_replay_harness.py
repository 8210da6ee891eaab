#!/usr/bin/env python3
import argparse
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from bots.controllers.generic.leverage_domain.components import ActionCode, Caller
from bots.controllers.generic.leverage_domain.errors import LeverageControllerError
from bots.controllers.generic.leverage_domain.paper import (
    PaperLedger,
    PaperPerpVenue,
    PaperRewardCustody,
    PaperSpotVenue,
)
from bots.controllers.generic.leverage_rebalancer import RebalanceOrchestrator
from bots.controllers.generic.perp_basis import PerpBasisConfig, PerpBasisController
from bots.controllers.generic.perp_leverage import PerpLeverageConfig, PerpLeverageController

OPERATOR = Caller("operator")
KEEPER = Caller("keeper")


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._time = start

    def __call__(self) -> float:
        return self._time

    def advance(self, seconds: float) -> float:
        self._time += seconds
        return self._time


@dataclass
class Step:
    label: str
    advance_sec: float
    price: Optional[Decimal] = None
    funding: Optional[Decimal] = None
    operations: List[str] = field(default_factory=list)


@dataclass
class Scenario:
    name: str
    controller: RebalanceOrchestrator
    ledger: PaperLedger
    custody: PaperRewardCustody
    clock: FakeClock
    steps: List[Step]


def _build_leverage(args, clock: FakeClock):
    ledger = PaperLedger(
        collateral=_to_decimal(args.collateral),
        price=_to_decimal(args.price),
        supply=Decimal("100"),
    )
    custody = PaperRewardCustody()
    config = PerpLeverageConfig(
        id="replay_leverage",
        operator=OPERATOR.principal,
        authorized_callers=[KEEPER.principal],
        target_leverage_ratio=_to_decimal(args.target),
        min_leverage_ratio=_to_decimal(args.target) * Decimal("0.85"),
        max_leverage_ratio=_to_decimal(args.target) * Decimal("1.15"),
        incentivized_leverage_ratio=_to_decimal(args.target) * Decimal("1.35"),
        twap_max_trade_size=_to_decimal(args.twap_max_trade_size),
        incentivized_twap_max_trade_size=_to_decimal(args.twap_max_trade_size) * Decimal("1.25"),
        incentive_balance=Decimal("5"),
    )
    controller = PerpLeverageController(
        config,
        ledger=ledger,
        perp_venue=PaperPerpVenue(config.exchange_name, ledger),
        custody=custody,
        clock=clock,
    )
    return controller, ledger, custody


def _build_basis(args, clock: FakeClock):
    ledger = PaperLedger(
        collateral=_to_decimal(args.collateral),
        price=_to_decimal(args.price),
        supply=Decimal("100"),
        performance_fee=Decimal("0.1"),
    )
    custody = PaperRewardCustody()
    config = PerpBasisConfig(
        id="replay_basis",
        operator=OPERATOR.principal,
        authorized_callers=[KEEPER.principal],
        twap_max_trade_size=_to_decimal(args.twap_max_trade_size),
        incentivized_twap_max_trade_size=_to_decimal(args.twap_max_trade_size) * Decimal("1.25"),
        incentive_balance=Decimal("5"),
    )
    controller = PerpBasisController(
        config,
        ledger=ledger,
        perp_venue=PaperPerpVenue(config.exchange_name, ledger),
        spot_venue=PaperSpotVenue(config.spot_exchange_name, ledger),
        custody=custody,
        clock=clock,
    )
    return controller, ledger, custody


def _scenario_price_drift(args) -> Scenario:
    clock = FakeClock()
    controller, ledger, custody = _build_leverage(args, clock)
    price = _to_decimal(args.price)
    steps = [
        Step("engage", 0, operations=["engage"]),
        Step("twap cooldown", 3000),
        Step("price +8%", 3600, price=price * Decimal("1.08")),
        Step("price +15%", 86400, price=price * Decimal("1.15")),
        Step("twap cooldown", 3000),
        Step("price back to entry", 86400, price=price),
        Step("quiet day", 86400),
    ]
    return Scenario("price_drift", controller, ledger, custody, clock, steps)


def _scenario_ripcord(args) -> Scenario:
    clock = FakeClock()
    controller, ledger, custody = _build_leverage(args, clock)
    price = _to_decimal(args.price)
    crash = price * Decimal("0.75") if controller.settings.methodology.target_leverage_ratio > 0 else price * Decimal("1.25")
    steps = [
        Step("engage", 0, operations=["engage"]),
        Step("twap cooldown", 3000),
        Step("sharp move", 120, price=crash),
        Step("same instant, second ripcord", 0, operations=["ripcord"]),
        Step("incentivized cooldown", 60),
        Step("settle", 3000),
    ]
    return Scenario("ripcord", controller, ledger, custody, clock, steps)


def _scenario_basis_reinvest(args) -> Scenario:
    clock = FakeClock()
    controller, ledger, custody = _build_basis(args, clock)
    steps = [
        Step("engage", 0, operations=["engage"]),
        Step("twap cooldown", 3000),
        Step("funding accrues", 3 * 86400, funding=Decimal("150")),
        Step("reinvest window", 5 * 86400, funding=Decimal("200"), operations=["reinvest"]),
        Step("quiet day", 86400),
    ]
    return Scenario("basis_reinvest", controller, ledger, custody, clock, steps)


def _keeper_operation(controller: RebalanceOrchestrator, action: ActionCode):
    return {
        ActionCode.REBALANCE: controller.rebalance,
        ActionCode.ITERATE_TWAP: controller.iterate_rebalance,
        ActionCode.RIPCORD: controller.ripcord,
    }.get(action)


def _run_operation(controller: RebalanceOrchestrator, name: str) -> str:
    caller = KEEPER if name in ("rebalance", "iterate_rebalance", "ripcord") else OPERATOR
    try:
        result = getattr(controller, name)(caller)
    except LeverageControllerError as exc:
        return f"{name} rejected: {type(exc).__name__}({exc.reason})"
    return f"{name} ok: {result}"


def _run_steps(scenario: Scenario) -> None:
    controller = scenario.controller
    for idx, step in enumerate(scenario.steps, start=1):
        now = scenario.clock.advance(step.advance_sec)
        if step.price is not None:
            scenario.ledger.set_price(step.price)
        if step.funding is not None:
            scenario.ledger.accrue_funding(step.funding)

        print(f"[{idx:02d}] t={now:.0f} {step.label}")
        for name in step.operations:
            print(f"  {_run_operation(controller, name)}")

        action = controller.should_rebalance()
        operation = _keeper_operation(controller, action)
        if operation is not None:
            print(f"  keeper {action.name}: {_run_operation(controller, operation.__name__)}")

        status = controller.status()
        print(
            "  phase=%s leverage=%s twap=%s price=%s base=%s spot=%s"
            % (
                status["phase"],
                status["leverage_ratio"],
                status["twap_leverage_ratio"],
                status["base_price"],
                status["base_balance"],
                status["spot_balance"],
            )
        )
    print(f"  rewards paid: {dict(scenario.custody.transfers)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Leverage controller replay harness.")
    parser.add_argument(
        "--scenario",
        default="price_drift",
        choices=["price_drift", "ripcord", "basis_reinvest", "full"],
    )
    parser.add_argument("--price", type=float, default=2000.0)
    parser.add_argument("--collateral", type=float, default=10000.0)
    parser.add_argument("--target", type=float, default=2.0)
    parser.add_argument("--twap-max-trade-size", type=float, default=20.0)
    args = parser.parse_args()

    builders = {
        "price_drift": _scenario_price_drift,
        "ripcord": _scenario_ripcord,
        "basis_reinvest": _scenario_basis_reinvest,
    }
    names = list(builders) if args.scenario == "full" else [args.scenario]
    for name in names:
        scenario = builders[name](args)
        print(f"\n=== {scenario.name} ===")
        _run_steps(scenario)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
