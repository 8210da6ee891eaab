"""Controller registry.

Builds leverage controllers from YAML configs and wires each one to in-memory paper
venues. Routers and the keeper look controllers up here by id.
"""
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from bots.controllers.generic.leverage_domain.events import EventBus
from bots.controllers.generic.leverage_domain.paper import (
    PaperLedger,
    PaperPerpVenue,
    PaperRewardCustody,
    PaperSpotVenue,
)
from bots.controllers.generic.leverage_rebalancer import LeverageRebalancerConfig, RebalanceOrchestrator
from bots.controllers.generic.perp_basis import PerpBasisConfig, PerpBasisController
from bots.controllers.generic.perp_leverage import PerpLeverageConfig, PerpLeverageController
from utils.controller_config import normalize_config_name, read_yaml_file, sanitize_controller_id

logger = logging.getLogger(__name__)

CONTROLLER_TYPES: Dict[str, Tuple[Type[LeverageRebalancerConfig], Type[RebalanceOrchestrator]]] = {
    "perp_leverage": (PerpLeverageConfig, PerpLeverageController),
    "perp_basis": (PerpBasisConfig, PerpBasisController),
}


class ControllerNotFound(KeyError):
    pass


@dataclass
class ControllerEntry:
    controller: RebalanceOrchestrator
    ledger: PaperLedger
    custody: PaperRewardCustody
    source: Optional[str] = None


class ControllerRegistry:
    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock
        self._entries: Dict[str, ControllerEntry] = {}
        self._lock = threading.Lock()

    def __contains__(self, controller_id: str) -> bool:
        return controller_id in self._entries

    def ids(self) -> List[str]:
        return sorted(self._entries)

    def get(self, controller_id: str) -> RebalanceOrchestrator:
        return self.entry(controller_id).controller

    def entry(self, controller_id: str) -> ControllerEntry:
        try:
            return self._entries[controller_id]
        except KeyError:
            raise ControllerNotFound(controller_id) from None

    def all(self) -> List[RebalanceOrchestrator]:
        return [self._entries[cid].controller for cid in self.ids()]

    def build(self, raw: Dict[str, Any], source: Optional[str] = None) -> ControllerEntry:
        controller_name = raw.get("controller_name", "")
        if controller_name not in CONTROLLER_TYPES:
            raise ValueError(f"Unknown controller_name {controller_name!r}")
        config_cls, controller_cls = CONTROLLER_TYPES[controller_name]
        config = config_cls(**raw)
        if not config.id:
            stem = Path(source).stem if source else controller_name
            config = config.model_copy(update={"id": sanitize_controller_id(stem)})

        ledger = PaperLedger(
            collateral=config.initial_collateral,
            cash=config.initial_cash,
            price=config.initial_price,
            supply=config.total_supply,
            performance_fee=config.performance_fee,
        )
        custody = PaperRewardCustody()
        kwargs: Dict[str, Any] = {
            "ledger": ledger,
            "perp_venue": PaperPerpVenue(config.exchange_name, ledger),
            "custody": custody,
            "event_bus": EventBus(config.id),
        }
        if config.legs == 2:
            kwargs["spot_venue"] = PaperSpotVenue(config.spot_exchange_name, ledger)
        if self._clock is not None:
            kwargs["clock"] = self._clock
        controller = controller_cls(config, **kwargs)
        return ControllerEntry(controller=controller, ledger=ledger, custody=custody, source=source)

    def register(self, raw: Dict[str, Any], source: Optional[str] = None) -> RebalanceOrchestrator:
        entry = self.build(raw, source=source)
        controller_id = entry.controller.config.id
        with self._lock:
            if controller_id in self._entries:
                raise ValueError(f"Controller {controller_id!r} already registered")
            self._entries[controller_id] = entry
        logger.info(f"Registered controller {controller_id} ({entry.controller.config.controller_name})")
        return entry.controller

    def remove(self, controller_id: str) -> None:
        with self._lock:
            if self._entries.pop(controller_id, None) is None:
                raise ControllerNotFound(controller_id)

    def load_file(self, path: Path) -> RebalanceOrchestrator:
        return self.register(read_yaml_file(path), source=str(path))

    def load_config(self, directory: str, config_name: str) -> RebalanceOrchestrator:
        return self.load_file(Path(directory) / normalize_config_name(config_name))

    def load_directory(self, directory: str) -> List[str]:
        root = Path(directory)
        if not root.is_dir():
            logger.warning(f"Controller config directory not found: {directory}")
            return []
        loaded = []
        for path in sorted(root.glob("*.y*ml")):
            try:
                controller = self.load_file(path)
            except Exception as e:
                logger.error(f"Failed to load controller config {path}: {e}", exc_info=True)
                continue
            loaded.append(controller.config.id)
        return loaded
