"""Keeper Service.

Polls every registered controller's advisory query and invokes the matching operation.
The controllers never schedule themselves; this loop is the external caller.

Rejections (cooldowns, lost races with another keeper) are logged and retried on the
next poll.
"""
import asyncio
import logging
from typing import Callable, Dict, Optional

from bots.controllers.generic.leverage_domain.components import ActionCode, Caller
from bots.controllers.generic.leverage_domain.errors import LeverageControllerError
from bots.controllers.generic.leverage_rebalancer import RebalanceOrchestrator
from services.controller_registry import ControllerRegistry

logger = logging.getLogger(__name__)


def _operations(controller: RebalanceOrchestrator) -> Dict[ActionCode, Callable[[Caller], object]]:
    return {
        ActionCode.REBALANCE: controller.rebalance,
        ActionCode.ITERATE_TWAP: controller.iterate_rebalance,
        ActionCode.RIPCORD: controller.ripcord,
        ActionCode.REINVEST: controller.reinvest,
    }


class KeeperService:
    """Periodic keeper driving every controller in the registry."""

    def __init__(
        self,
        registry: ControllerRegistry,
        principal: str = "keeper",
        interval: float = 30.0,
        operator: Optional[str] = None,
    ):
        self.registry = registry
        self.caller = Caller(principal=principal)
        self.operator = Caller(principal=operator) if operator else None
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def start(self):
        """Start the keeper loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("KeeperService started")

    def stop(self):
        """Stop the keeper loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("KeeperService stopped")

    async def _loop(self):
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in keeper loop: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    async def run_once(self) -> Dict[str, ActionCode]:
        """Poll each controller once; returns the action taken per controller id."""
        taken: Dict[str, ActionCode] = {}
        for controller in self.registry.all():
            controller_id = controller.config.id
            action = controller.should_rebalance()
            if action == ActionCode.NONE:
                continue
            caller = self.caller
            if action == ActionCode.REINVEST:
                # Reinvest is operator-only.
                if self.operator is None:
                    logger.debug(f"Keeper skipping REINVEST on {controller_id}: no operator principal")
                    continue
                caller = self.operator
            try:
                await asyncio.to_thread(_operations(controller)[action], caller)
            except LeverageControllerError as e:
                logger.warning(f"Keeper {action.name} rejected for {controller_id}: {e}")
                continue
            taken[controller_id] = action
            logger.info(f"Keeper ran {action.name} on {controller_id}")
        return taken
