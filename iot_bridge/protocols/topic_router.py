"""
Topic router / message decoder.

Turns raw broker messages published on ``iot/{deviceToken}/data`` into
``DecodedReading`` objects. Anything else is expected noise: it is logged and
dropped, never raised.

Device liveness topics (``dashboard/{userId}/{deviceId}/heartbeat|status``)
are only parsed here; acting on them is up to the caller.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional

from iot_bridge.models.messages import DecodedReading, InboundMessage, MessageMetadata

TOPIC_PREFIX = "iot"
TOPIC_SUFFIX = "data"
SUBSCRIPTION_TOPIC = f"{TOPIC_PREFIX}/+/{TOPIC_SUFFIX}"
PREVIEW_LIMIT = 100

DASHBOARD_PREFIX = "dashboard"
HEARTBEAT_TOPIC = f"{DASHBOARD_PREFIX}/+/+/heartbeat"
STATUS_TOPIC = f"{DASHBOARD_PREFIX}/+/+/status"
LIVENESS_TOPICS = (HEARTBEAT_TOPIC, STATUS_TOPIC)


def extract_device_token(topic: str) -> Optional[str]:
    """Return the token segment of ``iot/{token}/data`` or None for any other shape."""
    parts = topic.split("/")
    if len(parts) != 3 or parts[0] != TOPIC_PREFIX or parts[2] != TOPIC_SUFFIX:
        return None
    return parts[1] or None


class DashboardTopic(NamedTuple):
    user_id: str
    device_id: str
    kind: str

    @property
    def device_topic(self) -> str:
        """Base topic a device is registered under."""
        return f"{DASHBOARD_PREFIX}/{self.user_id}/{self.device_id}"


def parse_dashboard_topic(topic: str) -> Optional[DashboardTopic]:
    """Split ``dashboard/{userId}/{deviceId}/{kind}``; None for any other shape."""
    parts = topic.split("/")
    if len(parts) != 4 or parts[0] != DASHBOARD_PREFIX or not all(parts[1:]):
        return None
    return DashboardTopic(*parts[1:])


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def new_message_id() -> str:
    return f"mqtt-{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:9]}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def payload_preview(payload: bytes, limit: int = PREVIEW_LIMIT) -> str:
    return payload[:limit * 4].decode("utf-8", errors="replace")[:limit]


class TopicRouter:
    """Decodes inbound messages and counts what it had to throw away."""

    def __init__(self):
        self.log = logging.getLogger(self.__class__.__name__)
        self.decoded = 0
        self.discarded = 0

    def decode(self, message: InboundMessage) -> Optional[DecodedReading]:
        self.log.debug("received topic=%s size=%d", message.topic, len(message.payload))

        device_token = extract_device_token(message.topic)
        if device_token is None:
            self.discarded += 1
            self.log.warning("invalid topic format, dropping topic=%s", message.topic)
            return None

        try:
            data = json.loads(message.payload.decode("utf-8"), parse_constant=_reject_constant)
        except (UnicodeDecodeError, ValueError) as e:
            self.discarded += 1
            self.log.error(
                "unparseable payload, dropping device=%s topic=%s error=%s preview=%r",
                device_token, message.topic, e, payload_preview(message.payload),
            )
            return None

        self.decoded += 1
        return DecodedReading(
            device_token = device_token,
            topic        = message.topic,
            data         = data,
            timestamp    = utc_now_iso(),
            metadata     = MessageMetadata(
                qos        = message.qos,
                retain     = message.retain,
                message_id = new_message_id(),
            ),
        )

    def stats(self) -> Dict[str, Any]:
        return {"decoded": self.decoded, "discarded": self.discarded}
