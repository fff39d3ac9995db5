"""Request schema of POST /api/internal/data."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

# UTC only, optional fractional seconds: 2024-05-01T12:00:00.000Z
ISO_UTC_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z")


class IngestMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qos: Optional[int] = Field(default=None, ge=0, le=2)
    retain: Optional[bool] = None
    message_id: Optional[str] = Field(default=None, alias="messageId")


class DeviceDataIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_token: str = Field(alias="deviceToken")
    topic: str = Field(min_length=1)
    data: Dict[str, Any]
    timestamp: Optional[str] = None
    metadata: Optional[IngestMetadata] = None

    @field_validator("device_token")
    @classmethod
    def _token_is_uuid(cls, value: str) -> str:
        try:
            uuid.UUID(value)
        except ValueError:
            raise PydanticCustomError("invalid_device_token", "Invalid device token format") from None
        return value

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_iso_utc(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            if not ISO_UTC_TIMESTAMP.fullmatch(value):
                raise ValueError(value)
            datetime.strptime(value[:19], "%Y-%m-%dT%H:%M:%S")
        except ValueError:
            raise PydanticCustomError("invalid_datetime", "Invalid datetime") from None
        return value

    @field_validator("data")
    @classmethod
    def _data_not_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise PydanticCustomError("empty_payload", "Data payload cannot be empty")
        return value


def validation_details(exc: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into JSON-safe {path, message, code} entries."""
    return [
        {"path": [str(p) for p in err["loc"]], "message": err["msg"], "code": err["type"]}
        for err in exc.errors()
    ]
