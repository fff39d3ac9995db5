"""Fixed-window rate limiter for the ingestion endpoint.

Each key (the caller's internal API key, or its IP) gets ``max_requests`` per
``window_seconds``; the window starts with the key's first request. Ended
windows are purged once per window length.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float                    # epoch seconds

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat(),
        }


class FixedWindowRateLimiter:

    def __init__(self, window_seconds: int = 60, max_requests: int = 1000,
                 clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = Lock()
        # key -> (count, reset_at)
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._last_purge = clock()

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            if now - self._last_purge > self.window_seconds:
                self._purge(now)
            count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
            if now > reset_at:
                count, reset_at = 0, now + self.window_seconds
            count += 1
            self._windows[key] = (count, reset_at)

        allowed = count <= self.max_requests
        if not allowed:
            logger.warning("rate limit exceeded count=%d limit=%d", count, self.max_requests)
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
        )

    def cleanup(self) -> int:
        """Forget windows that already ended; returns how many were dropped."""
        with self._lock:
            return self._purge(self._clock())

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._windows)

    def _purge(self, now: float) -> int:
        expired = [k for k, (_, reset_at) in self._windows.items() if now > reset_at]
        for k in expired:
            del self._windows[k]
        self._last_purge = now
        return len(expired)
