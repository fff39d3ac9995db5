"""Shared fixtures: registered devices, decoded readings and fake broker/publish collaborators."""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List

import paho.mqtt.client as mqtt
import pytest

from iot_bridge.models.device import Device
from iot_bridge.models.messages import DecodedReading, MessageMetadata
from iot_bridge.services.device_registry import InMemoryDeviceRegistry


DEVICE_TOKEN = "3f2b8c1e-9d4a-4e6b-8a7c-1d2e3f4a5b6c"
INACTIVE_TOKEN = "7a6b5c4d-3e2f-4a1b-9c8d-7e6f5a4b3c2d"


@pytest.fixture
def display_device() -> Device:
    return Device(
        id="dev-1",
        device_name="Lobby display",
        api_token=DEVICE_TOKEN,
        mqtt_topic="devices/dev-1",
        device_type="ESP32_DISPLAY",
        is_active=True,
        user_id="user-1",
    )


@pytest.fixture
def pi_device() -> Device:
    return Device(
        id="dev-2",
        device_name="Workshop pi",
        api_token="0c1d2e3f-4a5b-4c6d-8e7f-9a0b1c2d3e4f",
        mqtt_topic="devices/dev-2",
        device_type="RASPBERRY_PI",
        is_active=True,
        user_id="user-1",
    )


@pytest.fixture
def inactive_device() -> Device:
    return Device(
        id="dev-3",
        device_name="Retired sensor",
        api_token=INACTIVE_TOKEN,
        mqtt_topic="devices/dev-3",
        device_type="CUSTOM",
        is_active=False,
        user_id="user-1",
    )


@pytest.fixture
def registry(display_device, pi_device, inactive_device) -> InMemoryDeviceRegistry:
    return InMemoryDeviceRegistry([display_device, pi_device, inactive_device])


@pytest.fixture
def reading() -> DecodedReading:
    return DecodedReading(
        device_token=DEVICE_TOKEN,
        topic=f"iot/{DEVICE_TOKEN}/data",
        data={"temperature": 21.5},
        timestamp="2024-05-01T12:00:00.000Z",
        metadata=MessageMetadata(qos=1, retain=False, message_id="mqtt-1714564800000-abc123def"),
    )


class RecordingConnection:
    """Stands in for BrokerConnectionManager on the publish side."""

    def __init__(self):
        self.published: List[Dict[str, Any]] = []

    def publish(self, topic, payload, qos=1, retain=False):
        self.published.append({"topic": topic, "payload": payload, "qos": qos, "retain": retain})
        return SimpleNamespace(rc=0, mid=len(self.published))


@pytest.fixture
def connection() -> RecordingConnection:
    return RecordingConnection()


class RC:
    def __init__(self, failure: bool = False, name: str = "Success"):
        self.is_failure = failure
        self.name = name

    def __str__(self):
        return self.name


class FakePahoClient:

    def __init__(self, connack=None, suback=None, answer_connect=True):
        self.connack = connack or RC()
        self.suback = suback or RC(name="Granted QoS 1")
        self.answer_connect = answer_connect
        self.connected_to = None
        self.credentials = None
        self.tls = False
        self.reconnect_delay = None
        self.subscriptions: List[tuple] = []
        self.published: List[dict] = []
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.loop_running = False
        self.disconnect_calls = 0
        self._mid = 0

    # configuration
    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def tls_set(self):
        self.tls = True

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self.reconnect_delay = (min_delay, max_delay)

    # network
    def connect_async(self, host, port=1883, keepalive=60):
        self.connected_to = (host, port, keepalive)

    def loop_start(self):
        self.loop_running = True
        if self.answer_connect:
            self.on_connect(self, None, {}, self.connack, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disconnect_calls += 1
        self.on_disconnect(self, None, {}, RC(name="Normal disconnection"), None)

    def subscribe(self, topic, qos=0):
        self._mid += 1
        self.subscriptions.append((topic, qos))
        self.on_subscribe(self, None, self._mid, [self.suback], None)
        return mqtt.MQTT_ERR_SUCCESS, self._mid

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append({"topic": topic, "payload": payload, "qos": qos, "retain": retain})
        return SimpleNamespace(rc=self.publish_rc, mid=len(self.published))

    # test helpers
    def drop(self, reason="Unspecified error"):
        self.on_disconnect(self, None, {}, RC(True, reason), None)

    def reconnect(self):
        self.on_connect(self, None, {}, RC(), None)

    def deliver(self, topic, payload, qos=1, retain=False):
        msg = SimpleNamespace(topic=topic, payload=payload, qos=qos, retain=retain)
        self.on_message(self, None, msg)


async def settle(rounds: int = 5):
    for _ in range(rounds):
        await asyncio.sleep(0)


