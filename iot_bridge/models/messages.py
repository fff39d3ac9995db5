from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from iot_bridge.core.exceptions import ConfigurationError


###############################################################################
# 1. BROKER SIDE --------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class InboundMessage:
    """One PUBLISH as received from the broker; consumed once by the router."""
    topic: str
    payload: bytes
    qos: int = 0
    retain: bool = False
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class MessageMetadata:
    qos: int
    retain: bool
    message_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"qos": self.qos, "retain": self.retain, "messageId": self.message_id}


@dataclass(frozen=True, slots=True)
class DecodedReading:
    """A device reading ready for delivery. `data` is any JSON value, passed through untouched."""
    device_token: str
    topic: str
    data: Any
    timestamp: str                     # ISO-8601, UTC
    metadata: MessageMetadata


###############################################################################
# 2. DELIVERY SIDE ------------------------------------------------------------
###############################################################################

class AttemptOutcome(Enum):
    SUCCESS   = "success"
    RETRYABLE = "retryable"
    TERMINAL  = "terminal"


@dataclass
class DeliveryAttempt:
    """Mutable per-delivery state: created for attempt 1, advanced on every retry."""
    payload: Dict[str, Any]
    number: int = 1
    outcome: Optional[AttemptOutcome] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    next_delay_ms: Optional[int] = None

    def advance(self) -> None:
        self.number += 1
        self.outcome = None
        self.status_code = None
        self.error = None
        self.next_delay_ms = None


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    success: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    response: Any = None


###############################################################################
# 3. RETRY POLICY -------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Bounded exponential backoff without jitter.

    ``delay_for(n)`` is the pause after failed attempt ``n``; ``max_retries``
    is the total number of attempts a delivery may use.
    """
    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    factor: float = 2.0
    terminal_statuses: Tuple[int, ...] = ()

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError("retry delays must be non-negative")
        if self.factor < 1:
            raise ConfigurationError(f"factor must be >= 1, got {self.factor}")
        object.__setattr__(self, "terminal_statuses", tuple(self.terminal_statuses))

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries       = settings.RETRY_MAX_RETRIES,
            base_delay_ms     = settings.RETRY_BASE_DELAY,
            max_delay_ms      = settings.RETRY_MAX_DELAY,
            factor            = settings.RETRY_FACTOR,
            terminal_statuses = settings.RETRY_TERMINAL_STATUSES,
        )

    def delay_for(self, attempt: int) -> int:
        if attempt < 1:
            raise ValueError("attempt numbering starts at 1")
        try:
            grown = self.base_delay_ms * self.factor ** (attempt - 1)
        except OverflowError:
            return self.max_delay_ms
        return int(min(self.max_delay_ms, grown))

    def delays(self, attempts: Iterable[int] | None = None) -> List[int]:
        """Every pause a fully failing delivery goes through."""
        if attempts is None:
            attempts = range(1, self.max_retries)
        return [self.delay_for(a) for a in attempts]

    def is_terminal_status(self, status_code: int) -> bool:
        return status_code in self.terminal_statuses
