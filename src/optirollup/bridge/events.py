from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List

from ..utils.config import Config


@dataclass(frozen=True)
class BridgeEvent:
    sequence: int
    type: str
    entity_id: str
    status: str
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)


class BridgeEventLog:
    """Fixed-size ring of recent bridge transitions; observability only"""

    def __init__(self, capacity: int = Config.BRIDGE_EVENT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._events: Deque[BridgeEvent] = deque(maxlen=capacity)
        self._sequence = 0

    def append(self, event_type: str, entity_id: str, status: str, timestamp: int, data: Dict[str, Any]) -> BridgeEvent:
        self._sequence += 1
        event = BridgeEvent(
            sequence=self._sequence,
            type=event_type,
            entity_id=entity_id,
            status=status,
            timestamp=timestamp,
            data=dict(data)
        )
        self._events.append(event)
        return event

    def recent(self, limit: int = 100) -> List[BridgeEvent]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    @property
    def total_recorded(self) -> int:
        return self._sequence

    def __len__(self) -> int:
        return len(self._events)
