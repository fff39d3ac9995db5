"""Boundary guards of the internal ingestion API: shared-secret auth and rate limiting."""

from __future__ import annotations

import logging
import secrets
from typing import Dict, Optional

from fastapi import Header, Request, Response

from iot_bridge.api.rate_limiter import FixedWindowRateLimiter
from iot_bridge.services.ingestion_client import API_KEY_HEADER, mask_secret


logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Short-circuits a request with a JSON ``{"error": ...}`` body."""

    def __init__(self, status_code: int, payload: Dict, headers: Optional[Dict[str, str]] = None):
        super().__init__(payload.get("error"))
        self.status_code = status_code
        self.payload = payload
        self.headers = headers or {}


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


class InternalApiKeyAuth:
    """401 when the X-Internal-API-Key header is missing, 403 when it is wrong."""

    def __init__(self, expected_key: str):
        if not expected_key:
            raise ValueError("internal API key must not be empty")
        self._expected = expected_key

    def __call__(
        self,
        request: Request,
        x_internal_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
    ) -> None:
        if not x_internal_api_key:
            raise ApiError(401, {"error": f"Missing {API_KEY_HEADER} header"})

        if not secrets.compare_digest(x_internal_api_key.encode(), self._expected.encode()):
            logger.warning(
                "invalid internal API key attempt key=%s ip=%s user_agent=%s",
                mask_secret(x_internal_api_key),
                _client_ip(request),
                request.headers.get("user-agent"),
            )
            raise ApiError(403, {"error": "Invalid API key"})


class RateLimitGuard:
    """Counts the request against its caller's window; keyed by API key, else by IP."""

    def __init__(self, limiter: FixedWindowRateLimiter, message: str = "Too many requests, please try again later."):
        self.limiter = limiter
        self.message = message

    def __call__(self, request: Request, response: Response) -> None:
        key = request.headers.get(API_KEY_HEADER) or _client_ip(request)
        decision = self.limiter.hit(key)
        headers = decision.headers()

        if not decision.allowed:
            headers["Retry-After"] = str(decision.retry_after(self.limiter.now()))
            raise ApiError(429, {"error": self.message}, headers=headers)

        request.state.rate_limit_headers = headers
        response.headers.update(headers)
