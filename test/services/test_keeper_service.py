import asyncio
import unittest
from decimal import Decimal

from bots.controllers.generic.leverage_domain.components import ActionCode, Caller
from services.controller_registry import ControllerRegistry
from services.keeper_service import KeeperService


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _leverage_raw(**overrides):
    raw = {
        "id": "eth_2x",
        "controller_name": "perp_leverage",
        "operator": "admin",
        "authorized_callers": ["keeper"],
        "initial_collateral": "1000",
        "initial_price": "10",
        "total_supply": "10",
        "incentive_balance": "5",
        "twap_max_trade_size": "1000",
        "incentivized_twap_max_trade_size": "1000",
    }
    raw.update(overrides)
    return raw


def _basis_raw(**overrides):
    raw = {
        "id": "eth_basis",
        "controller_name": "perp_basis",
        "operator": "admin",
        "authorized_callers": ["keeper"],
        "initial_collateral": "1000",
        "initial_price": "10",
        "total_supply": "10",
        "twap_max_trade_size": "100",
        "incentivized_twap_max_trade_size": "125",
    }
    raw.update(overrides)
    return raw


class KeeperServiceTests(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.registry = ControllerRegistry(clock=self.clock)

    def test_idle_controllers_are_left_alone(self):
        self.registry.register(_leverage_raw())
        keeper = KeeperService(self.registry)

        self.assertEqual(asyncio.run(keeper.run_once()), {})

    def test_runs_advised_rebalance(self):
        controller = self.registry.register(_leverage_raw())
        controller.engage(Caller("admin"))
        ledger = self.registry.entry("eth_2x").ledger
        ledger.set_price(Decimal("8.5"))
        self.clock.now += 86400
        self.assertEqual(controller.should_rebalance(), ActionCode.REBALANCE)

        taken = asyncio.run(KeeperService(self.registry).run_once())

        self.assertEqual(taken, {"eth_2x": ActionCode.REBALANCE})
        self.assertFalse(controller.context.in_twap)
        self.assertGreaterEqual(controller.get_current_leverage_ratio(), Decimal("1.7"))

    def test_runs_ripcord_with_keeper_principal(self):
        controller = self.registry.register(_leverage_raw())
        controller.engage(Caller("admin"))
        entry = self.registry.entry("eth_2x")
        entry.ledger.set_price(Decimal("8"))
        self.clock.now += 60

        taken = asyncio.run(KeeperService(self.registry, principal="keeper").run_once())

        self.assertEqual(taken, {"eth_2x": ActionCode.RIPCORD})
        self.assertEqual(entry.custody.received("keeper"), Decimal("1"))

    def test_rejection_is_logged_and_skipped(self):
        controller = self.registry.register(_leverage_raw(authorized_callers=[]))
        controller.engage(Caller("admin"))
        self.registry.entry("eth_2x").ledger.set_price(Decimal("8.5"))
        self.clock.now += 86400

        with self.assertLogs("services.keeper_service", level="WARNING") as logs:
            taken = asyncio.run(KeeperService(self.registry).run_once())

        self.assertEqual(taken, {})
        self.assertIn("Keeper REBALANCE rejected for eth_2x", logs.output[0])

    def test_reinvest_needs_operator_principal(self):
        controller = self.registry.register(_basis_raw())
        controller.engage(Caller("admin"))
        self.clock.now += 604800
        self.assertEqual(controller.should_rebalance(), ActionCode.REINVEST)

        self.assertEqual(asyncio.run(KeeperService(self.registry).run_once()), {})

        taken = asyncio.run(KeeperService(self.registry, operator="admin").run_once())
        self.assertEqual(taken, {"eth_basis": ActionCode.REINVEST})
        self.assertEqual(controller.context.last_reinvest_timestamp, self.clock.now)

    def test_start_and_stop(self):
        async def _scenario():
            keeper = KeeperService(self.registry, interval=0.01)
            keeper.start()
            keeper.start()
            await asyncio.sleep(0.03)
            keeper.stop()
            return keeper

        keeper = asyncio.run(_scenario())
        self.assertIsNone(keeper._task)


if __name__ == "__main__":
    unittest.main()
