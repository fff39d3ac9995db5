"""Internal ingestion HTTP API."""

from .ingest_app import create_app
from .rate_limiter import FixedWindowRateLimiter, RateLimitDecision

__all__ = [
    'create_app',
    'FixedWindowRateLimiter',
    'RateLimitDecision'
]
