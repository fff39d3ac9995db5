"""
Observer Pattern Implementation for Delivery Outcomes

Delivery workers publish what happened to each reading (delivered, failed
terminally, discarded before delivery) so that callers can plug in alerting,
spill-over storage or a dead-letter queue without touching the pipeline.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class DeliveryEventType(Enum):
    """Types of delivery outcomes."""
    DELIVERED = "delivered"
    FAILED = "failed"
    DISCARDED = "discarded"


@dataclass
class DeliveryEvent:
    """Event data for a delivery outcome."""
    event_type: DeliveryEventType
    topic: str
    device_token: Optional[str] = None
    attempts: int = 0
    body: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class DeliveryObserver(ABC):
    """Abstract base class for delivery observers."""

    @abstractmethod
    async def notify(self, event: DeliveryEvent) -> None:
        """Handle a delivery outcome."""
        pass

    @abstractmethod
    def get_observer_id(self) -> str:
        """Get unique identifier for this observer."""
        pass

    @abstractmethod
    def get_interested_events(self) -> List[DeliveryEventType]:
        """Get list of event types this observer is interested in."""
        pass


class DeliverySubject:
    """Subject that notifies observers of delivery outcomes."""

    def __init__(self):
        self._observers: List[DeliveryObserver] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, observer: DeliveryObserver) -> None:
        """Subscribe an observer to delivery outcomes."""
        if observer not in self._observers:
            self._observers.append(observer)
            self._logger.info(f"Subscribed observer: {observer.get_observer_id()}")
        else:
            self._logger.warning(f"Observer already subscribed: {observer.get_observer_id()}")

    def unsubscribe(self, observer: DeliveryObserver) -> None:
        """Unsubscribe an observer from delivery outcomes."""
        if observer in self._observers:
            self._observers.remove(observer)
            self._logger.info(f"Unsubscribed observer: {observer.get_observer_id()}")
        else:
            self._logger.warning(f"Observer not found for unsubscription: {observer.get_observer_id()}")

    async def notify_observers(self, event: DeliveryEvent) -> None:
        """Notify all interested observers of a delivery outcome."""
        interested_observers = [
            observer for observer in self._observers
            if event.event_type in observer.get_interested_events()
        ]

        if not interested_observers:
            return

        await asyncio.gather(
            *(self._safe_notify_observer(observer, event) for observer in interested_observers)
        )

    async def _safe_notify_observer(self, observer: DeliveryObserver, event: DeliveryEvent) -> None:
        """Notify a single observer; one broken observer must not hide the event from the rest."""
        try:
            await observer.notify(event)
        except Exception as e:
            self._logger.error(f"Error notifying observer {observer.get_observer_id()}: {e}", exc_info=True)

    def get_observer_count(self) -> int:
        """Get the number of registered observers."""
        return len(self._observers)

    def get_observer_ids(self) -> List[str]:
        """Get list of all registered observer IDs."""
        return [observer.get_observer_id() for observer in self._observers]
