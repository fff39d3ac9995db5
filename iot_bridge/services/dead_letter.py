#  Dead-letter buffer for deliveries that ran out of retries

from __future__ import annotations
import logging
from collections import deque
from typing import Any, Dict, List

from iot_bridge.core.patterns.observer import DeliveryEvent, DeliveryEventType, DeliveryObserver


class DeadLetterBuffer(DeliveryObserver):
    """
    Keeps the most recent terminally failed request bodies in memory.
    - When full the oldest entry is dropped (drop head), memory stays bounded.
    - Nothing is persisted; `drain()` hands the entries to whoever re-drives them.
    """

    def __init__(self, capacity: int = 1000):
        self._entries: deque[DeliveryEvent] = deque(maxlen=capacity)
        self.dropped = 0
        self.log = logging.getLogger(self.__class__.__name__)

    def get_observer_id(self) -> str:
        return "dead-letter-buffer"

    def get_interested_events(self) -> List[DeliveryEventType]:
        return [DeliveryEventType.FAILED]

    async def notify(self, event: DeliveryEvent) -> None:
        if len(self._entries) == self._entries.maxlen:
            self.dropped += 1
            self.log.warning("dead-letter buffer full, oldest entry dropped (total dropped %d)", self.dropped)
        self._entries.append(event)

    def drain(self) -> List[Dict[str, Any]]:
        bodies = [e.body for e in self._entries if e.body is not None]
        self._entries.clear()
        return bodies

    def __len__(self) -> int:
        return len(self._entries)
