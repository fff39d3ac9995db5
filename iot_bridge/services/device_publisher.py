"""Dashboard -> device pushes over the broker connection (fire-and-forget, QoS 1, retained)."""
from __future__ import annotations
import logging, time
from typing import Any, Dict

from iot_bridge.core.exceptions import DeviceNotFoundError
from iot_bridge.protocols.mqtt_client import BrokerConnectionManager
from iot_bridge.services.device_registry import DeviceRegistry

PUBLISH_QOS = 1


def format_for_device(data: Any, device_type: str) -> Any:
    """Shrink payloads for constrained displays; capable devices get everything."""
    if device_type == "ESP32_DISPLAY" and isinstance(data, dict):
        value = next((data[k] for k in ("value", "price", "temperature") if data.get(k) is not None), None)
        change = next((data[k] for k in ("change", "changePercent") if data.get(k) is not None), None)
        return {"v": value, "c": change, "t": data.get("timestamp")}
    return data


class DevicePublisher:

    def __init__(self, connection: BrokerConnectionManager, registry: DeviceRegistry):
        self.connection = connection
        self.registry = registry
        self.log = logging.getLogger(self.__class__.__name__)

    async def publish_widget_update(self, device_token: str, widget_id: str, data: Any) -> str:
        device = await self.registry.find_active_by_token(device_token)
        if device is None:
            raise DeviceNotFoundError("Device not found or inactive")

        topic = f"{device.mqtt_topic}/widget/{widget_id}/update"
        body: Dict[str, Any] = {
            "timestamp": int(time.time() * 1000),
            "widget": widget_id,
            "data": format_for_device(data, device.device_type),
        }
        self.connection.publish(topic, body, qos=PUBLISH_QOS, retain=True)
        self.log.info("widget update pushed device=%s widget=%s", device.id, widget_id)
        return topic

    async def publish_dashboard_update(self, user_id: str, dashboard_id: str, data: Any) -> int:
        devices = await self.registry.list_active_for_user(user_id)
        body = {"timestamp": int(time.time() * 1000), "data": data}
        for device in devices:
            self.connection.publish(f"{device.mqtt_topic}/dashboard/{dashboard_id}", body,
                                    qos=PUBLISH_QOS, retain=True)
        self.log.info("dashboard %s pushed to %d device(s) of user %s", dashboard_id, len(devices), user_id)
        return len(devices)
