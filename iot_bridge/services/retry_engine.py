"""Bounded exponential-backoff delivery to the ingestion endpoint."""
from __future__ import annotations
import asyncio, logging
from typing import Any, Awaitable, Callable, Dict, Optional

from iot_bridge.core.exceptions import TransportError
from iot_bridge.models.messages import (
    AttemptOutcome, DeliveryAttempt, DeliveryResult, RetryPolicy,
)
from iot_bridge.services.ingestion_client import IngestionClient, IngestionResponse

Sleep = Callable[[float], Awaitable[Any]]


class RetryEngine:
    """
    Sends one payload until the endpoint answers 2xx, the status is classified
    terminal, or the policy runs out of attempts.

    Backoff only suspends the calling task; other deliveries keep running.
    Cancelling the calling task interrupts the backoff.
    """

    def __init__(self, client: IngestionClient, policy: RetryPolicy | None = None,
                 sleep: Sleep = asyncio.sleep):
        self.client = client
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.log = logging.getLogger(self.__class__.__name__)

    async def send(self, payload: Dict[str, Any], attempt: int = 1) -> DeliveryResult:
        state = DeliveryAttempt(payload=payload, number=attempt)
        device = payload.get("deviceToken")
        last_body: Optional[Any] = None

        while True:
            response: Optional[IngestionResponse] = None
            try:
                response = await self.client.post_reading(payload)
            except TransportError as e:
                state.error = str(e)
            else:
                state.status_code = response.status_code
                last_body = response.body

            self._classify(state, response)

            if state.outcome is AttemptOutcome.SUCCESS:
                return DeliveryResult(success=True, attempts=state.number,
                                      status_code=state.status_code, response=last_body)

            self.log.error("delivery attempt %d/%d failed device=%s status=%s error=%s",
                           state.number, self.policy.max_retries, device,
                           state.status_code, state.error)

            if state.outcome is AttemptOutcome.TERMINAL:
                return DeliveryResult(success=False, attempts=state.number,
                                      status_code=state.status_code, error=state.error,
                                      response=last_body)

            state.next_delay_ms = self.policy.delay_for(state.number)
            self.log.info("retrying device=%s next_attempt=%d delay=%dms",
                          device, state.number + 1, state.next_delay_ms)
            await self._sleep(state.next_delay_ms / 1000)
            state.advance()

    def _classify(self, state: DeliveryAttempt, response: Optional[IngestionResponse]) -> None:
        if response is not None and response.ok:
            state.outcome = AttemptOutcome.SUCCESS
            return

        if response is not None:
            state.error = f"HTTP {response.status_code}"
            if self.policy.is_terminal_status(response.status_code):
                state.outcome = AttemptOutcome.TERMINAL
                return

        if state.number >= self.policy.max_retries:
            state.outcome = AttemptOutcome.TERMINAL
        else:
            state.outcome = AttemptOutcome.RETRYABLE
