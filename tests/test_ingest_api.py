"""Internal ingestion endpoint: auth, validation, lookup and rate limiting."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from iot_bridge.api.ingest_app import create_app
from iot_bridge.api.rate_limiter import FixedWindowRateLimiter
from iot_bridge.services.ingestion_client import API_KEY_HEADER, INGESTION_PATH

from conftest import DEVICE_TOKEN, INACTIVE_TOKEN


API_KEY = "test-internal-key"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(window_seconds=60, max_requests=3, clock=clock)


@pytest.fixture
def client(registry, limiter) -> TestClient:
    return TestClient(create_app(registry, api_key=API_KEY, rate_limiter=limiter))


def _body(**overrides):
    body = {
        "deviceToken": DEVICE_TOKEN,
        "topic": f"iot/{DEVICE_TOKEN}/data",
        "data": {"temperature": 21.5},
        "timestamp": "2024-05-01T12:00:00.000Z",
        "metadata": {"qos": 1, "retain": False, "messageId": "mqtt-1-abc"},
    }
    body.update(overrides)
    return body


def _post(client, body, key=API_KEY):
    headers = {API_KEY_HEADER: key} if key is not None else {}
    return client.post(INGESTION_PATH, json=body, headers=headers)


class TestAuthentication:

    def test_missing_key(self, client):
        resp = _post(client, _body(), key=None)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Missing X-Internal-API-Key header"}

    def test_wrong_key(self, client, caplog):
        resp = _post(client, _body(), key="wrong-key-value")
        assert resp.status_code == 403
        assert resp.json() == {"error": "Invalid API key"}
        assert "wron***" in caplog.text
        assert "wrong-key-value" not in caplog.text

    def test_auth_checked_before_validation(self, client):
        resp = _post(client, {"garbage": True}, key=None)
        assert resp.status_code == 401


class TestValidation:

    def test_non_uuid_token(self, client):
        resp = _post(client, _body(deviceToken="not-a-uuid"))
        assert resp.status_code == 400
        payload = resp.json()
        assert payload["error"] == "Invalid data format"
        assert payload["details"][0]["path"] == ["deviceToken"]
        assert payload["details"][0]["message"] == "Invalid device token format"

    def test_empty_data(self, client):
        resp = _post(client, _body(data={}))
        assert resp.status_code == 400
        assert resp.json()["details"][0]["message"] == "Data payload cannot be empty"

    @pytest.mark.parametrize("field", ["deviceToken", "topic", "data"])
    def test_missing_required_field(self, client, field):
        body = _body()
        del body[field]
        resp = _post(client, body)
        assert resp.status_code == 400
        assert resp.json()["details"][0]["path"] == [field]

    def test_non_object_data(self, client):
        resp = _post(client, _body(data=42))
        assert resp.status_code == 400

    @pytest.mark.parametrize("timestamp", [
        "yesterday",
        1714564800,
        "2024-05-01T12:00:00",
        "2024-05-01T12:00:00+02:00",
        "2024-05-01",
        "2024-13-01T12:00:00Z",
    ])
    def test_bad_timestamp(self, client, timestamp):
        resp = _post(client, _body(timestamp=timestamp))
        assert resp.status_code == 400
        assert resp.json()["details"][0]["path"] == ["timestamp"]

    @pytest.mark.parametrize("timestamp", ["2024-05-01T12:00:00Z", "2024-05-01T12:00:00.123456Z"])
    def test_utc_timestamps_accepted(self, client, timestamp):
        assert _post(client, _body(timestamp=timestamp)).status_code == 200

    def test_bad_qos(self, client):
        resp = _post(client, _body(metadata={"qos": 5}))
        assert resp.status_code == 400

    def test_malformed_json(self, client):
        resp = client.post(INGESTION_PATH, content=b"{not json",
                           headers={API_KEY_HEADER: API_KEY, "Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["code"] == "invalid_json"

    def test_optional_fields_may_be_absent(self, client):
        body = _body()
        del body["timestamp"]
        del body["metadata"]
        assert _post(client, body).status_code == 200


class TestIngestion:

    def test_accepts_reading(self, client, display_device):
        resp = _post(client, _body())
        assert resp.status_code == 200
        payload = resp.json()
        assert payload["success"] is True
        assert payload["message"] == "Data ingested successfully"
        assert payload["deviceId"] == display_device.id
        assert "timestamp" in payload

    def test_marks_device_seen(self, client, registry):
        _post(client, _body())
        device = asyncio.run(registry.find_by_token(DEVICE_TOKEN))
        assert device.last_seen is not None

    def test_unknown_device(self, client):
        resp = _post(client, _body(deviceToken="11111111-2222-4333-8444-555555555555"))
        assert resp.status_code == 404
        assert resp.json() == {"error": "Device not found or inactive"}

    def test_inactive_device(self, client):
        resp = _post(client, _body(deviceToken=INACTIVE_TOKEN))
        assert resp.status_code == 404

    def test_registry_failure_is_500(self, registry, limiter):
        class BrokenRegistry(type(registry)):
            async def find_by_token(self, api_token):
                raise RuntimeError("database unavailable")

        client = TestClient(create_app(BrokenRegistry(), api_key=API_KEY, rate_limiter=limiter))
        resp = _post(client, _body())
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}


class TestRateLimit:

    def test_fresh_injected_limiter_is_used(self, registry, clock):
        limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1, clock=clock)
        app = create_app(registry, api_key=API_KEY, rate_limiter=limiter)
        client = TestClient(app)

        assert app.state.rate_limiter is limiter
        assert _post(client, _body(data={})).status_code == 400
        assert _post(client, _body(data={})).status_code == 429

    def test_headers_on_success(self, client):
        resp = _post(client, _body())
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        assert "X-RateLimit-Reset" in resp.headers

    def test_headers_on_error_responses(self, client):
        resp = _post(client, _body(data={}))
        assert resp.status_code == 400
        assert resp.headers["X-RateLimit-Remaining"] == "2"

    def test_limit_exceeded(self, client, clock):
        for _ in range(3):
            assert _post(client, _body()).status_code == 200

        clock.now += 15
        resp = _post(client, _body())
        assert resp.status_code == 429
        assert resp.json() == {"error": "Data ingestion rate limit exceeded"}
        assert resp.headers["Retry-After"] == "45"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_rate_limit_checked_before_auth(self, client):
        for _ in range(3):
            _post(client, _body(), key="wrong")
        assert _post(client, _body(), key="wrong").status_code == 429

    def test_window_resets(self, client, clock):
        for _ in range(4):
            _post(client, _body())
        clock.now += 61
        assert _post(client, _body()).status_code == 200

    def test_keys_are_counted_separately(self, client):
        for _ in range(4):
            _post(client, _body(), key="other")
        assert _post(client, _body()).status_code == 200
