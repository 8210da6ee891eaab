import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerEvent:
    name = "event"

    def payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Engaged(ControllerEvent):
    name = "engaged"
    prev_leverage: Decimal
    new_leverage: Decimal
    chunk_notional: Decimal
    total_notional: Decimal


@dataclass(frozen=True)
class Rebalanced(ControllerEvent):
    name = "rebalanced"
    prev_leverage: Decimal
    new_leverage: Decimal
    chunk_notional: Decimal
    total_notional: Decimal


@dataclass(frozen=True)
class RebalanceIterated(ControllerEvent):
    name = "rebalance_iterated"
    prev_leverage: Decimal
    new_leverage: Decimal
    chunk_notional: Decimal
    total_notional: Decimal


@dataclass(frozen=True)
class RipcordCalled(ControllerEvent):
    name = "ripcord_called"
    prev_leverage: Decimal
    new_leverage: Decimal
    chunk_notional: Decimal
    reward_paid: Decimal
    caller: str = ""


@dataclass(frozen=True)
class Disengaged(ControllerEvent):
    name = "disengaged"
    prev_leverage: Decimal
    new_leverage: Decimal
    chunk_notional: Decimal
    total_notional: Decimal


@dataclass(frozen=True)
class Reinvested(ControllerEvent):
    name = "reinvested"
    funding_amount: Decimal
    collateral_deposited: Decimal
    spot_bought: Decimal


@dataclass(frozen=True)
class SettingsUpdated(ControllerEvent):
    name = "settings_updated"
    group: str
    values: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[str, ControllerEvent], None]


class EventBus:
    def __init__(self, controller_id: str = "", history_size: int = 500) -> None:
        self._controller_id = controller_id
        self._listeners: List[Listener] = []
        self._history: Deque[ControllerEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, event: ControllerEvent) -> None:
        self._history.append(event)
        logger.info(
            "event_%s | controller=%s %s",
            event.name,
            self._controller_id,
            " ".join(f"{k}={v}" for k, v in event.payload().items()),
        )
        for listener in list(self._listeners):
            try:
                listener(self._controller_id, event)
            except Exception:
                logger.exception("Event listener failed for %s", event.name)

    def history(self, name: Optional[str] = None) -> List[ControllerEvent]:
        if name is None:
            return list(self._history)
        return [e for e in self._history if e.name == name]
