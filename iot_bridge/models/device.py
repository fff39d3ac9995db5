from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


###############################################################################
# DEVICE ----------------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class Device:
    """Immutable projection of a registered IoT device."""
    id: str
    device_name: str
    api_token: str                     # the token devices embed in iot/{token}/data
    mqtt_topic: str                    # base topic for dashboard -> device pushes
    device_type: str                   # e.g. "ESP32_DISPLAY" / "RASPBERRY_PI"
    is_active: bool
    user_id: Optional[str] = None
    last_seen: Optional[datetime] = None

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Device":
        return cls(
            id           = str(row["id"]),
            device_name  = row.get("deviceName") or row.get("device_name") or str(row["id"]),
            api_token    = row.get("apiToken") or row["api_token"],
            mqtt_topic   = row.get("mqttTopic") or row.get("mqtt_topic") or "",
            device_type  = row.get("deviceType") or row.get("device_type") or "CUSTOM",
            is_active    = bool(row.get("isActive", row.get("is_active", True))),
            user_id      = row.get("userId") or row.get("user_id"),
            last_seen    = _parse_dt(row.get("lastSeen") or row.get("last_seen")),
        )


###############################################################################
# HELPER PARSERS --------------------------------------------------------------
###############################################################################

def _parse_dt(value: Any) -> Optional[datetime]:
    """Convert ISO-8601 strings (with or without a trailing Z) into aware datetimes."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
