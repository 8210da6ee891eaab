"""
Leverage Controllers Router - advisory queries, keeper operations and settings.
"""
import logging
from dataclasses import asdict
from decimal import Decimal
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from bots.controllers.generic.leverage_domain.components import (
    ActionCode,
    Caller,
    ChunkPlan,
    ExchangeSettings,
    ExecutionSettings,
    IncentiveSettings,
    MethodologySettings,
)
from bots.controllers.generic.leverage_domain.errors import (
    AuthorizationFailed,
    ConfigurationInvalid,
    CooldownNotElapsed,
    LeverageControllerError,
    PreconditionFailed,
)
from bots.controllers.generic.leverage_rebalancer import RebalanceOrchestrator
from deps import get_caller, get_controller_registry, get_principal
from models.leverage_controller import (
    AnyoneCallableRequest,
    AuthorizedCallersRequest,
    ChunkRebalanceResponse,
    CollateralRequest,
    ControllerStatusResponse,
    ExchangeSettingsRequest,
    ExecutionSettingsRequest,
    FundIncentiveRequest,
    IncentiveResponse,
    IncentiveSettingsRequest,
    MethodologySettingsRequest,
    OperationResponse,
    ShouldRebalanceResponse,
)
from services.controller_registry import CONTROLLER_TYPES, ControllerNotFound, ControllerRegistry
from utils.controller_schema import build_controller_config_schema

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Leverage Controllers"], prefix="/controllers")

_ERROR_STATUS = (
    (ConfigurationInvalid, 422),
    (AuthorizationFailed, 403),
    (CooldownNotElapsed, 429),
    (PreconditionFailed, 409),
)


def _http_error(exc: LeverageControllerError) -> HTTPException:
    for exc_type, status_code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=exc.reason)
    return HTTPException(status_code=400, detail=exc.reason)


def _controller(registry: ControllerRegistry, controller_id: str) -> RebalanceOrchestrator:
    try:
        return registry.get(controller_id)
    except ControllerNotFound:
        raise HTTPException(status_code=404, detail=f"Controller not found: {controller_id}")


# Controller calls block on the per-controller lock, so handlers that make them are
# plain functions served from the threadpool.
def _run(label: str, fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except HTTPException:
        raise
    except LeverageControllerError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.error(f"Error during {label}: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error during {label}: {exc}")


def _operation_response(controller: RebalanceOrchestrator, operation: str, result: Any) -> OperationResponse:
    payload: Dict[str, Any] = {
        "controller_id": controller.config.id,
        "operation": operation,
        "leverage_ratio": controller.get_current_leverage_ratio(),
        "twap_leverage_ratio": controller.context.twap_leverage_ratio,
    }
    if isinstance(result, ChunkPlan):
        payload["chunk_notional"] = result.chunk
        payload["total_notional"] = result.total
    elif isinstance(result, Decimal):
        payload["amount"] = result
    return OperationResponse(**payload)


# ============================================
# Discovery
# ============================================

@router.get("")
async def list_controllers(
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    """List registered controller ids."""
    return {"data": registry.ids()}


@router.get("/schema/{controller_name}")
async def get_controller_schema(controller_name: str, _principal: str = Depends(get_principal)):
    """Config schema, defaults and field metadata for a controller type."""
    if controller_name not in CONTROLLER_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown controller type: {controller_name}")
    config_cls, _ = CONTROLLER_TYPES[controller_name]
    return build_controller_config_schema(config_cls)


@router.get("/{controller_id}/status", response_model=ControllerStatusResponse)
def get_status(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    controller = _controller(registry, controller_id)
    return _run("status", controller.status)


# ============================================
# Advisory
# ============================================

@router.get("/{controller_id}/should-rebalance", response_model=ShouldRebalanceResponse)
def should_rebalance(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    """
    Action code the keeper should act on next.
    """
    controller = _controller(registry, controller_id)
    action: ActionCode = _run("should_rebalance", controller.should_rebalance)
    return ShouldRebalanceResponse(controller_id=controller_id, action=int(action), action_name=action.name)


@router.get("/{controller_id}/should-rebalance-with-bounds", response_model=ShouldRebalanceResponse)
def should_rebalance_with_bounds(
    controller_id: str,
    min_leverage: Decimal = Query(alias="min"),
    max_leverage: Decimal = Query(alias="max"),
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    """
    Same as should-rebalance with tightened custom bounds.
    """
    controller = _controller(registry, controller_id)
    action: ActionCode = _run(
        "should_rebalance_with_bounds",
        lambda: controller.should_rebalance_with_bounds(min_leverage, max_leverage),
    )
    return ShouldRebalanceResponse(controller_id=controller_id, action=int(action), action_name=action.name)


@router.get("/{controller_id}/chunk-rebalance-notional", response_model=ChunkRebalanceResponse)
def get_chunk_rebalance_notional(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    controller = _controller(registry, controller_id)
    chunk = _run("chunk_rebalance_notional", controller.get_chunk_rebalance_notional)
    return ChunkRebalanceResponse(controller_id=controller_id, **asdict(chunk))


@router.get("/{controller_id}/settings")
def get_settings(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    controller = _controller(registry, controller_id)
    return {
        "methodology": asdict(controller.get_methodology()),
        "execution": asdict(controller.get_execution()),
        "incentive": asdict(controller.get_incentive()),
        "exchange": asdict(controller.get_exchange_settings()),
    }


@router.get("/{controller_id}/incentive", response_model=IncentiveResponse)
def get_incentive(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    controller = _controller(registry, controller_id)
    return IncentiveResponse(
        controller_id=controller_id,
        current_reward=_run("incentive", controller.get_current_incentive_reward),
        balance=controller.incentive_balance(),
        settings=asdict(controller.get_incentive()),
    )


# ============================================
# Operations
# ============================================

_OPERATIONS: Dict[str, Callable[[RebalanceOrchestrator, Caller], Any]] = {
    "engage": lambda c, caller: c.engage(caller),
    "rebalance": lambda c, caller: c.rebalance(caller),
    "iterate-rebalance": lambda c, caller: c.iterate_rebalance(caller),
    "ripcord": lambda c, caller: c.ripcord(caller),
    "disengage": lambda c, caller: c.disengage(caller),
    "reinvest": lambda c, caller: c.reinvest(caller),
}


@router.post("/{controller_id}/deposit", response_model=OperationResponse)
def deposit(
    controller_id: str,
    request: CollateralRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    amount = _run("deposit", lambda: controller.deposit(caller, request.collateral_units))
    return _operation_response(controller, "deposit", amount)


@router.post("/{controller_id}/withdraw", response_model=OperationResponse)
def withdraw(
    controller_id: str,
    request: CollateralRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    amount = _run("withdraw", lambda: controller.withdraw(caller, request.collateral_units))
    return _operation_response(controller, "withdraw", amount)


@router.post("/{controller_id}/incentive/fund")
def fund_incentive(
    controller_id: str,
    request: FundIncentiveRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    _principal: str = Depends(get_principal),
):
    controller = _controller(registry, controller_id)
    balance = _run("fund_incentive", lambda: controller.fund_incentive(request.amount))
    return {"controller_id": controller_id, "balance": balance}


@router.post("/{controller_id}/incentive/withdraw", response_model=OperationResponse)
def withdraw_incentive_balance(
    controller_id: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    amount = _run("withdraw_incentive_balance", lambda: controller.withdraw_incentive_balance(caller))
    return _operation_response(controller, "withdraw_incentive_balance", amount)


@router.post("/{controller_id}/{operation}", response_model=OperationResponse)
def run_operation(
    controller_id: str,
    operation: str,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    """
    Run engage, rebalance, iterate-rebalance, ripcord, disengage or reinvest.
    """
    if operation not in _OPERATIONS:
        raise HTTPException(status_code=404, detail=f"Unknown operation: {operation}")
    controller = _controller(registry, controller_id)
    result = _run(operation, lambda: _OPERATIONS[operation](controller, caller))
    return _operation_response(controller, operation, result)


# ============================================
# Settings
# ============================================

@router.put("/{controller_id}/settings/methodology")
def set_methodology_settings(
    controller_id: str,
    request: MethodologySettingsRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    value = MethodologySettings(**request.model_dump())
    _run("set_methodology_settings", lambda: controller.set_methodology_settings(caller, value))
    return asdict(controller.get_methodology())


@router.put("/{controller_id}/settings/execution")
def set_execution_settings(
    controller_id: str,
    request: ExecutionSettingsRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    value = ExecutionSettings(**request.model_dump())
    _run("set_execution_settings", lambda: controller.set_execution_settings(caller, value))
    return asdict(controller.get_execution())


@router.put("/{controller_id}/settings/incentive")
def set_incentive_settings(
    controller_id: str,
    request: IncentiveSettingsRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    value = IncentiveSettings(**request.model_dump())
    _run("set_incentive_settings", lambda: controller.set_incentive_settings(caller, value))
    return asdict(controller.get_incentive())


@router.put("/{controller_id}/settings/exchange")
def set_exchange_settings(
    controller_id: str,
    request: ExchangeSettingsRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    value = ExchangeSettings(**request.model_dump())
    _run("set_exchange_settings", lambda: controller.set_exchange_settings(caller, value))
    return asdict(controller.get_exchange_settings())


@router.put("/{controller_id}/authorized-callers")
def update_authorized_callers(
    controller_id: str,
    request: AuthorizedCallersRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    _run(
        "update_authorized_callers",
        lambda: controller.update_authorized_callers(caller, request.callers, request.statuses),
    )
    return {"controller_id": controller_id, "authorized_callers": sorted(controller.context.authorized_callers)}


@router.put("/{controller_id}/anyone-callable")
def update_anyone_callable(
    controller_id: str,
    request: AnyoneCallableRequest,
    registry: ControllerRegistry = Depends(get_controller_registry),
    caller: Caller = Depends(get_caller),
):
    controller = _controller(registry, controller_id)
    _run("update_anyone_callable", lambda: controller.update_anyone_callable(caller, request.status))
    return {"controller_id": controller_id, "anyone_callable": controller.context.anyone_callable}
