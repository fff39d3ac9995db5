"""HTTP client of the ingestion endpoint, exercised against httpx.MockTransport."""

import json

import httpx
import pytest

from iot_bridge.core.exceptions import TransportError
from iot_bridge.services.ingestion_client import (
    API_KEY_HEADER,
    INGESTION_PATH,
    IngestionClient,
    mask_secret,
)


BODY = {"deviceToken": "abc", "topic": "iot/abc/data", "data": {"x": 1}}


def _client(handler, base_url="http://api.local:3000/") -> IngestionClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IngestionClient(base_url, "secret-key", http_client=http)


class TestIngestionClient:

    @pytest.mark.asyncio
    async def test_posts_json_with_api_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get(API_KEY_HEADER)
            seen["content_type"] = request.headers.get("content-type")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        client = _client(handler)
        response = await client.post_reading(BODY)

        assert seen["url"] == "http://api.local:3000" + INGESTION_PATH
        assert seen["key"] == "secret-key"
        assert seen["content_type"] == "application/json"
        assert seen["body"] == BODY
        assert response.ok
        assert response.body == {"success": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 429, 500, 503])
    async def test_error_statuses_are_returned_not_raised(self, status):
        client = _client(lambda request: httpx.Response(status, json={"error": "nope"}))
        response = await client.post_reading(BODY)

        assert response.status_code == status
        assert not response.ok
        assert response.body == {"error": "nope"}

    @pytest.mark.asyncio
    async def test_non_json_body_kept_as_text(self):
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))
        response = await client.post_reading(BODY)

        assert response.body == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_connection_error_raises_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(TransportError, match="connection refused"):
            await client.post_reading(BODY)

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="ReadTimeout"):
            await _client(handler).post_reading(BODY)

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = IngestionClient("http://api.local", "k", http_client=http)

        await client.aclose()

        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        client = IngestionClient("http://api.local", "k")
        await client.aclose()
        assert client._http.is_closed


class TestMaskSecret:

    def test_masks_all_but_prefix(self):
        assert mask_secret("dev-internal-key") == "dev-***"

    def test_unset(self):
        assert mask_secret(None) == "<unset>"
        assert mask_secret("") == "<unset>"
