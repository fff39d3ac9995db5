# ingestion_client.py - HTTP side of the bridge

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import httpx

from iot_bridge.core.exceptions import TransportError

INGESTION_PATH = "/api/internal/data"
API_KEY_HEADER = "X-Internal-API-Key"


def mask_secret(secret: Optional[str]) -> str:
    """Keep only enough of a secret to tell two keys apart in logs."""
    if not secret:
        return "<unset>"
    return f"{secret[:4]}***"


@dataclass(frozen=True)
class IngestionResponse:
    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class IngestionClient:
    """
    Posts canonical reading bodies to the internal ingestion endpoint.

    Every HTTP status is returned to the caller; only failures where no
    response arrived at all are raised, as TransportError.
    """

    def __init__(self, api_base_url: str, api_key: str, *, timeout: float = 10.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.url = api_base_url.rstrip("/") + INGESTION_PATH
        self._api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.log = logging.getLogger(self.__class__.__name__)
        self.log.info("ingestion endpoint %s key=%s", self.url, mask_secret(api_key))

    async def post_reading(self, body: Dict[str, Any]) -> IngestionResponse:
        headers = {
            "Content-Type": "application/json",
            API_KEY_HEADER: self._api_key,
        }
        try:
            resp = await self._http.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text
        return IngestionResponse(status_code=resp.status_code, body=payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
