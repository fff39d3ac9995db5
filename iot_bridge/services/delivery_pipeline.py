"""
Delivery pipeline: one independent asyncio task per decoded reading.

A reading sitting in a 30 s backoff never delays the first attempt of the
next one; there is no queue in front of the RetryEngine.
"""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

from iot_bridge.core.patterns.observer import DeliveryEvent, DeliveryEventType, DeliverySubject
from iot_bridge.models.messages import DecodedReading, DeliveryResult, InboundMessage
from iot_bridge.services.retry_engine import RetryEngine


def build_request_body(reading: DecodedReading) -> Dict[str, Any]:
    """Canonical body expected by POST /api/internal/data."""
    return {
        "deviceToken": reading.device_token,
        "topic": reading.topic,
        "data": reading.data,
        "timestamp": reading.timestamp,
        "metadata": reading.metadata.to_dict(),
    }


class DeliveryPipeline:

    def __init__(self, engine: RetryEngine, events: Optional[DeliverySubject] = None):
        self.engine = engine
        self.events = events or DeliverySubject()
        self.log = logging.getLogger(self.__class__.__name__)
        self._tasks: Set[asyncio.Task] = set()
        self.delivered = 0
        self.failed = 0
        self.abandoned = 0

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #
    def deliver(self, reading: DecodedReading) -> asyncio.Task:
        """Schedule delivery and return at once; the task is tracked until it settles."""
        return self._spawn(self._deliver(reading), name=f"deliver-{reading.metadata.message_id}")

    def report_discard(self, message: InboundMessage, reason: str) -> None:
        """Tell observers about a message the router dropped."""
        if self.events.get_observer_count() == 0:
            return
        event = DeliveryEvent(DeliveryEventType.DISCARDED, topic=message.topic, reason=reason)
        self._spawn(self.events.notify_observers(event), name="report-discard")

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Let in-flight deliveries finish for up to `timeout` seconds, then cancel the rest."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        self.log.info("draining %d in-flight deliveries (timeout %.1fs)", len(pending), timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            self.log.warning("abandoning %d deliveries still in backoff", len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    def in_flight(self) -> int:
        return len(self._tasks)

    def stats(self) -> Dict[str, Any]:
        return {
            "in_flight": self.in_flight(),
            "delivered": self.delivered,
            "failed": self.failed,
            "abandoned": self.abandoned,
        }

    # ------------------------------------------------------------------ #
    #  Internals
    # ------------------------------------------------------------------ #
    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, reading: DecodedReading) -> Optional[DeliveryResult]:
        body = build_request_body(reading)
        try:
            result = await self.engine.send(body)
        except asyncio.CancelledError:
            self.abandoned += 1
            self.log.warning("delivery abandoned at shutdown device=%s message_id=%s",
                             reading.device_token, reading.metadata.message_id)
            raise
        except Exception as e:
            self.log.exception("unexpected delivery error device=%s", reading.device_token)
            result = DeliveryResult(success=False, attempts=0, error=f"{type(e).__name__}: {e}")

        if result.success:
            self.delivered += 1
            self.log.info("delivered device=%s attempts=%d", reading.device_token, result.attempts)
            event_type = DeliveryEventType.DELIVERED
        else:
            self.failed += 1
            self.log.error("delivery failed terminally, dropping data device=%s final_attempt=%d "
                           "status=%s error=%s", reading.device_token, result.attempts,
                           result.status_code, result.error)
            event_type = DeliveryEventType.FAILED

        await self.events.notify_observers(DeliveryEvent(
            event_type,
            topic=reading.topic,
            device_token=reading.device_token,
            attempts=result.attempts,
            body=body,
            reason=result.error,
        ))
        return result
