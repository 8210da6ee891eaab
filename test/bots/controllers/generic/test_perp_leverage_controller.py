from dataclasses import replace
from decimal import Decimal

import pytest

from bots.controllers.generic.leverage_domain.components import ActionCode, Caller, ControllerPhase
from bots.controllers.generic.leverage_domain.errors import (
    AuthorizationFailed,
    ConfigurationInvalid,
    CooldownNotElapsed,
    PreconditionFailed,
)
from bots.controllers.generic.leverage_domain.leverage_math import LeverageMath
from bots.controllers.generic.leverage_domain.paper import PaperLedger
from bots.controllers.generic.perp_leverage import PerpLeverageConfig

OPERATOR = Caller("operator")
KEEPER = Caller("keeper")
STRANGER = Caller("stranger")


def _short_position(base: str = "-95", price: str = "10") -> PaperLedger:
    # quote balance offsets the entry notional so collateral value stays 1000 at entry
    return PaperLedger(collateral=Decimal("1000"), price=Decimal(price), supply=Decimal("10"), base=Decimal(base))


# ---- engage -------------------------------------------------------------------------

def test_engage_from_flat_lands_on_target(make_leverage):
    controller, ledger, _ = make_leverage()

    plan = controller.engage(OPERATOR)

    assert plan.chunk == Decimal("-100")
    assert not plan.continues_twap
    assert ledger.base == Decimal("-100")
    assert controller.get_current_leverage_ratio() == Decimal("-1")
    assert not controller.context.in_twap
    assert [e.name for e in controller.events.history()] == ["engaged"]


def test_engage_above_max_trade_size_starts_twap(make_leverage, clock):
    controller, ledger, _ = make_leverage(twap_max_trade_size=Decimal("40"))

    plan = controller.engage(OPERATOR)

    assert plan.chunk == Decimal("-40")
    assert controller.context.twap_leverage_ratio == Decimal("-1")
    assert controller.context.last_trade_timestamp == clock.now
    assert controller.status()["phase"] == ControllerPhase.ENGAGED_TWAP.value
    assert controller.should_rebalance() == ActionCode.NONE

    clock.advance(3000)
    assert controller.should_rebalance() == ActionCode.ITERATE_TWAP
    controller.iterate_rebalance(KEEPER)
    clock.advance(3000)
    last = controller.iterate_rebalance(KEEPER)

    assert last.chunk == Decimal("-20")
    assert ledger.base == Decimal("-100")
    assert not controller.context.in_twap
    assert controller.get_current_leverage_ratio() == Decimal("-1")


def test_engage_rejections(make_leverage):
    controller, _, _ = make_leverage()

    with pytest.raises(AuthorizationFailed):
        controller.engage(KEEPER)
    controller.engage(OPERATOR)
    with pytest.raises(PreconditionFailed) as exc_info:
        controller.engage(OPERATOR)
    assert exc_info.value.reason == "Base position must NOT exist"


def test_engage_requires_collateral_and_supply(make_leverage):
    empty, _, _ = make_leverage(PaperLedger(collateral=Decimal("0"), price=Decimal("10")))
    no_shares, _, _ = make_leverage(PaperLedger(collateral=Decimal("1000"), price=Decimal("10"), supply=Decimal("0")))

    with pytest.raises(PreconditionFailed) as exc_info:
        empty.engage(OPERATOR)
    assert exc_info.value.reason == "Collateral balance must be > 0"
    with pytest.raises(PreconditionFailed):
        no_shares.engage(OPERATOR)


# ---- rebalance ----------------------------------------------------------------------

def test_rebalance_moves_toward_target(make_leverage):
    controller, ledger, _ = make_leverage(_short_position())
    assert controller.get_current_leverage_ratio() == Decimal("-0.95")

    plan = controller.rebalance(KEEPER)

    assert plan.total == Decimal("-0.25")
    assert ledger.base == Decimal("-95.25")
    assert controller.get_current_leverage_ratio() == Decimal("-0.9525")
    assert not controller.context.in_twap


def test_rebalance_large_move_runs_as_twap(make_leverage, clock):
    controller, ledger, _ = make_leverage(
        _short_position(),
        twap_max_trade_size=Decimal("0.1"),
        incentivized_twap_max_trade_size=Decimal("0.2"),
    )

    plan = controller.rebalance(KEEPER)
    assert plan.chunk == Decimal("-0.1")
    assert controller.context.twap_leverage_ratio == Decimal("-0.9525")

    with pytest.raises(PreconditionFailed) as exc_info:
        controller.rebalance(KEEPER)
    assert exc_info.value.reason == "Must call iterate"
    with pytest.raises(CooldownNotElapsed):
        controller.iterate_rebalance(KEEPER)

    clock.advance(3000)
    second = controller.iterate_rebalance(KEEPER)
    assert second.total == Decimal("-0.15")
    assert controller.context.twap_leverage_ratio == Decimal("-0.9525")

    clock.advance(3000)
    third = controller.iterate_rebalance(KEEPER)
    assert third.chunk == Decimal("-0.05")
    assert not controller.context.in_twap
    assert ledger.base == Decimal("-95.25")
    assert controller.get_current_leverage_ratio() == Decimal("-0.9525")


def test_iterate_clears_twap_when_price_already_moved_past_target(make_leverage, clock):
    controller, ledger, _ = make_leverage(
        _short_position(),
        twap_max_trade_size=Decimal("0.1"),
        incentivized_twap_max_trade_size=Decimal("0.2"),
    )
    controller.rebalance(KEEPER)
    clock.advance(3000)
    ledger.set_price(Decimal("10.1"))

    plan = controller.iterate_rebalance(KEEPER)

    assert plan.chunk == 0
    assert ledger.base == Decimal("-95.1")
    assert not controller.context.in_twap
    assert controller.events.history()[-1].name == "rebalance_iterated"
    assert controller.context.last_trade_timestamp == clock.now


def test_iterate_targets_stored_ratio_when_price_moves_against_twap(make_leverage, clock):
    # Known drift: each chunk is recomputed from the live snapshot toward the target
    # fixed when the TWAP began, so an adverse move widens the remaining trade.
    controller, ledger, _ = make_leverage(
        _short_position(),
        twap_max_trade_size=Decimal("0.1"),
        incentivized_twap_max_trade_size=Decimal("0.2"),
    )
    controller.rebalance(KEEPER)
    clock.advance(3000)
    ledger.set_price(Decimal("9.9"))
    current = controller.get_current_leverage_ratio()
    assert Decimal("-0.9525") < current < Decimal("-0.93")

    plan = controller.iterate_rebalance(KEEPER)

    assert controller.context.twap_leverage_ratio == Decimal("-0.9525")
    assert plan.total == LeverageMath.total_rebalance_notional(Decimal("-95.1"), current, Decimal("-0.9525"))
    recentered = LeverageMath.next_leverage_ratio(current, controller.get_methodology())
    assert plan.total != LeverageMath.total_rebalance_notional(Decimal("-95.1"), current, recentered)
    assert plan.total < Decimal("-2")
    assert plan.chunk == Decimal("-0.1")
    assert ledger.base == Decimal("-95.2")
    assert controller.context.in_twap


def test_rebalance_within_bounds_waits_for_interval(make_leverage, clock):
    controller, _, _ = make_leverage(_short_position())
    controller.rebalance(KEEPER)

    clock.advance(3600)
    with pytest.raises(CooldownNotElapsed) as exc_info:
        controller.rebalance(KEEPER)
    assert exc_info.value.reason == "Cooldown not elapsed or not valid leverage ratio"

    clock.advance(86400)
    controller.rebalance(KEEPER)


def test_rebalance_out_of_bounds_skips_interval(make_leverage, clock):
    controller, ledger, _ = make_leverage(_short_position())
    controller.rebalance(KEEPER)
    clock.advance(60)
    ledger.set_price(Decimal("10.8"))
    assert abs(controller.get_current_leverage_ratio()) > Decimal("1.1")

    controller.rebalance(KEEPER)

    assert abs(controller.get_current_leverage_ratio()) < Decimal("1.1") + Decimal("1e-12")


def test_rebalance_caller_checks(make_leverage):
    controller, _, _ = make_leverage(_short_position())

    with pytest.raises(AuthorizationFailed) as exc_info:
        controller.rebalance(STRANGER)
    assert exc_info.value.reason == "Address not permitted to call"
    with pytest.raises(AuthorizationFailed):
        controller.rebalance(Caller("keeper", relayed=True))

    controller.update_anyone_callable(OPERATOR, True)
    controller.rebalance(STRANGER)


def test_rebalance_above_incentivized_is_rejected(make_leverage):
    controller, ledger, _ = make_leverage(_short_position(base="-100"))
    ledger.set_price(Decimal("11.5"))

    with pytest.raises(PreconditionFailed):
        controller.rebalance(KEEPER)


def test_rebalance_on_flat_position_is_rejected(make_leverage):
    controller, _, _ = make_leverage()

    with pytest.raises(PreconditionFailed) as exc_info:
        controller.rebalance(KEEPER)
    assert exc_info.value.reason == "Current leverage ratio must NOT be 0"


# ---- ripcord ------------------------------------------------------------------------

def test_ripcord_pulls_back_to_max_and_pays_reward(make_leverage, clock):
    controller, ledger, custody = make_leverage(_short_position(base="-100"))
    ledger.set_price(Decimal("11.5"))
    assert controller.should_rebalance() == ActionCode.RIPCORD
    assert controller.get_current_incentive_reward() == Decimal("1")

    reward = controller.ripcord(STRANGER)

    assert reward == Decimal("1")
    assert custody.received("stranger") == Decimal("1")
    assert controller.incentive_balance() == Decimal("4")
    assert abs(controller.get_current_leverage_ratio() - Decimal("-1.1")) < Decimal("1e-12")

    with pytest.raises(CooldownNotElapsed):
        controller.ripcord(STRANGER)


def test_second_ripcord_in_same_instant_hits_cooldown_first(make_leverage, clock):
    controller, ledger, _ = make_leverage(_short_position(base="-100"))
    ledger.set_price(Decimal("11.5"))
    controller.ripcord(STRANGER)
    # still above incentivized after another leg up, but the cooldown is checked first
    ledger.set_price(Decimal("13"))

    with pytest.raises(CooldownNotElapsed):
        controller.ripcord(STRANGER)

    clock.advance(60)
    controller.ripcord(STRANGER)


def test_ripcord_reward_limited_by_pool(make_leverage):
    controller, ledger, custody = make_leverage(_short_position(base="-100"), incentive_balance=Decimal("0.01"))
    ledger.set_price(Decimal("11.5"))

    assert controller.ripcord(STRANGER) == Decimal("0.01")
    assert custody.received("stranger") == Decimal("0.01")
    assert controller.incentive_balance() == 0


def test_ripcord_clears_running_twap(make_leverage, clock):
    controller, ledger, _ = make_leverage(
        _short_position(),
        twap_max_trade_size=Decimal("0.1"),
        incentivized_twap_max_trade_size=Decimal("100"),
    )
    controller.rebalance(KEEPER)
    assert controller.context.in_twap
    clock.advance(60)
    ledger.set_price(Decimal("12"))

    controller.ripcord(STRANGER)

    assert not controller.context.in_twap


def test_ripcord_rejections(make_leverage):
    controller, ledger, _ = make_leverage(_short_position(base="-100"))

    with pytest.raises(PreconditionFailed) as exc_info:
        controller.ripcord(STRANGER)
    assert exc_info.value.reason == "Must be above incentivized leverage ratio"
    assert controller.get_current_incentive_reward() == 0

    ledger.set_price(Decimal("11.5"))
    with pytest.raises(AuthorizationFailed):
        controller.ripcord(Caller("stranger", relayed=True))


# ---- disengage ----------------------------------------------------------------------

def test_disengage_closes_position(make_leverage, clock):
    controller, ledger, _ = make_leverage()
    controller.engage(OPERATOR)
    clock.advance(3000)

    plan = controller.disengage(OPERATOR)

    assert plan.chunk == Decimal("100")
    assert ledger.base == 0
    assert ledger.collateral == Decimal("1000")
    assert controller.get_current_leverage_ratio() == 0
    assert controller.should_rebalance() == ActionCode.NONE


def test_disengage_in_chunks_respects_cooldown(make_leverage, clock):
    controller, ledger, _ = make_leverage()
    controller.engage(OPERATOR)
    exchange = controller.get_exchange_settings()
    controller.set_exchange_settings(OPERATOR, replace(exchange, twap_max_trade_size=Decimal("40")))

    with pytest.raises(CooldownNotElapsed):
        controller.disengage(OPERATOR)
    clock.advance(3000)
    controller.disengage(OPERATOR)
    assert ledger.base == Decimal("-60")
    with pytest.raises(CooldownNotElapsed):
        controller.disengage(OPERATOR)
    with pytest.raises(AuthorizationFailed):
        controller.disengage(KEEPER)


# ---- advisory -----------------------------------------------------------------------

def test_chunk_rebalance_notional_names_traded_assets(make_leverage):
    controller, _, _ = make_leverage(_short_position())

    chunk = controller.get_chunk_rebalance_notional()

    assert chunk.as_tuple() == (Decimal("-0.25"), "vBASE", "vQUOTE", "", "")


def test_chunk_rebalance_notional_when_flat(make_leverage):
    controller, _, _ = make_leverage()

    assert controller.get_chunk_rebalance_notional().notional == 0


def test_should_rebalance_with_custom_bounds(make_leverage, clock):
    controller, _, _ = make_leverage(_short_position())

    assert controller.should_rebalance_with_bounds(Decimal("-0.96"), Decimal("-1.05")) == ActionCode.REBALANCE
    with pytest.raises(ConfigurationInvalid):
        controller.should_rebalance_with_bounds(Decimal("-0.5"), Decimal("-1.05"))


# ---- settings -----------------------------------------------------------------------

def test_settings_update_is_validated_and_published(make_leverage):
    controller, _, _ = make_leverage()
    execution = controller.get_execution()

    with pytest.raises(ConfigurationInvalid):
        controller.set_execution_settings(OPERATOR, replace(execution, slippage_tolerance=Decimal("1")))
    assert controller.get_execution() == execution

    controller.set_execution_settings(OPERATOR, replace(execution, slippage_tolerance=Decimal("0.02")))
    assert controller.get_execution().slippage_tolerance == Decimal("0.02")
    assert controller.events.history("settings_updated")[-1].group == "execution"

    with pytest.raises(AuthorizationFailed):
        controller.set_execution_settings(KEEPER, execution)


def test_settings_locked_while_twap_runs(make_leverage):
    controller, _, _ = make_leverage(twap_max_trade_size=Decimal("40"))
    controller.engage(OPERATOR)

    with pytest.raises(PreconditionFailed) as exc_info:
        controller.set_methodology_settings(OPERATOR, controller.get_methodology())
    assert exc_info.value.reason == "Rebalance is currently in progress"
    with pytest.raises(PreconditionFailed):
        controller.withdraw_incentive_balance(OPERATOR)


def test_caller_lists_locked_while_twap_runs(make_leverage):
    controller, _, _ = make_leverage(twap_max_trade_size=Decimal("40"))
    controller.engage(OPERATOR)

    with pytest.raises(PreconditionFailed):
        controller.update_authorized_callers(OPERATOR, ["mallory"], [True])
    with pytest.raises(PreconditionFailed):
        controller.update_anyone_callable(OPERATOR, True)
    assert controller.context.authorized_callers == {"keeper"}
    assert controller.context.anyone_callable is False


def test_authorized_callers_update(make_leverage):
    controller, _, _ = make_leverage(_short_position())

    with pytest.raises(ConfigurationInvalid) as exc_info:
        controller.update_authorized_callers(OPERATOR, ["stranger"], [])
    assert exc_info.value.reason == "Array length mismatch"

    controller.update_authorized_callers(OPERATOR, ["stranger", "keeper"], [True, False])
    assert controller.context.authorized_callers == {"stranger"}
    with pytest.raises(AuthorizationFailed):
        controller.rebalance(KEEPER)
    controller.rebalance(STRANGER)


def test_incentive_pool_fund_and_withdraw(make_leverage):
    controller, _, custody = make_leverage()

    assert controller.fund_incentive(Decimal("2")) == Decimal("7")
    assert controller.withdraw_incentive_balance(OPERATOR) == Decimal("7")
    assert custody.received("operator") == Decimal("7")


def test_deposit_and_withdraw_scale_by_supply(make_leverage):
    ledger = PaperLedger(collateral=Decimal("1000"), cash=Decimal("100"), price=Decimal("10"), supply=Decimal("10"))
    controller, _, _ = make_leverage(ledger)

    assert controller.deposit(OPERATOR, Decimal("5")) == Decimal("50")
    assert ledger.collateral == Decimal("1050")
    assert controller.withdraw(OPERATOR, Decimal("2")) == Decimal("20")
    assert ledger.collateral == Decimal("1030")
    with pytest.raises(AuthorizationFailed):
        controller.deposit(KEEPER, Decimal("1"))


def test_reinvest_needs_spot_leg(make_leverage):
    controller, _, _ = make_leverage(_short_position())

    with pytest.raises(PreconditionFailed):
        controller.reinvest(OPERATOR)


def test_invalid_config_is_rejected_at_construction(make_leverage):
    with pytest.raises(ConfigurationInvalid):
        make_leverage(incentivized_leverage_ratio=Decimal("-1.05"))
    with pytest.raises(ValueError):
        PerpLeverageConfig(legs=2)
