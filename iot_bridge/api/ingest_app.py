"""Internal ingestion endpoint the bridge delivers to.

Run standalone with::

    uvicorn --factory iot_bridge.api.ingest_app:create_app
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config.app_config import settings
from iot_bridge import __version__
from iot_bridge.api.auth import ApiError, InternalApiKeyAuth, RateLimitGuard
from iot_bridge.api.rate_limiter import FixedWindowRateLimiter
from iot_bridge.api.schemas import DeviceDataIn, validation_details
from iot_bridge.services.device_registry import DeviceRegistry, InMemoryDeviceRegistry
from iot_bridge.services.ingestion_client import INGESTION_PATH


logger = logging.getLogger(__name__)


def _registry_from_settings() -> DeviceRegistry:
    if settings.DEVICE_REGISTRY_FILE:
        return InMemoryDeviceRegistry.from_json_file(settings.DEVICE_REGISTRY_FILE)
    logger.warning("DEVICE_REGISTRY_FILE not set, starting with an empty device registry")
    return InMemoryDeviceRegistry()


def _invalid(details) -> ApiError:
    return ApiError(400, {"error": "Invalid data format", "details": details})


def create_app(
    registry: Optional[DeviceRegistry] = None,
    *,
    api_key: Optional[str] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    registry = registry if registry is not None else _registry_from_settings()
    limiter = rate_limiter if rate_limiter is not None else FixedWindowRateLimiter(
        window_seconds=settings.INGEST_RATE_LIMIT_WINDOW,
        max_requests=settings.INGEST_RATE_LIMIT_MAX,
    )
    rate_limit = RateLimitGuard(limiter, "Data ingestion rate limit exceeded")
    require_internal_key = InternalApiKeyAuth(api_key or settings.INTERNAL_API_KEY)

    app = FastAPI(title="IoT Internal Ingestion", version=__version__)
    app.state.registry = registry
    app.state.rate_limiter = limiter

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        headers = {**getattr(request.state, "rate_limit_headers", {}), **exc.headers}
        return JSONResponse(exc.payload, status_code=exc.status_code, headers=headers)

    @app.post(INGESTION_PATH, dependencies=[Depends(rate_limit), Depends(require_internal_key)])
    async def ingest_device_data(request: Request) -> Dict[str, Any]:
        logger.debug("processing internal data ingestion request")

        try:
            body = await request.json()
        except ValueError:
            raise _invalid([{"path": [], "message": "Malformed JSON body", "code": "invalid_json"}])

        try:
            reading = DeviceDataIn.model_validate(body)
        except ValidationError as e:
            details = validation_details(e)
            logger.error("data validation failed: %s", details)
            raise _invalid(details)

        try:
            device = await registry.find_active_by_token(reading.device_token)
            if device is None:
                logger.warning("device not found or inactive token=%s", reading.device_token)
                raise ApiError(404, {"error": "Device not found or inactive"})
            await registry.touch(device.id, datetime.now(timezone.utc))
        except ApiError:
            raise
        except Exception:
            logger.exception("internal data ingestion error token=%s", reading.device_token)
            raise ApiError(500, {"error": "Internal server error"})

        logger.info(
            "data received device=%s name=%s topic=%s keys=%s size=%d",
            device.id, device.device_name, reading.topic,
            sorted(reading.data), len(json.dumps(reading.data, default=str)),
        )
        return {
            "success": True,
            "message": "Data ingested successfully",
            "deviceId": device.id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    return app
