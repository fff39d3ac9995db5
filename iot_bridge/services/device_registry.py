# device_registry.py - device/credential lookup used by the ingestion endpoint and publisher

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import asyncio
import dataclasses
import json
import logging

from iot_bridge.models.device import Device


class DeviceRegistry(ABC):
    """Read side of the device store plus the single write the bridge needs (liveness)."""

    @abstractmethod
    async def find_by_token(self, api_token: str) -> Optional[Device]:
        pass

    @abstractmethod
    async def list_active_for_user(self, user_id: str) -> List[Device]:
        pass

    @abstractmethod
    async def touch(self, device_id: str, seen_at: datetime) -> None:
        """Record that the device was just heard from."""
        pass

    @abstractmethod
    async def touch_by_topic(self, user_id: str, mqtt_topic: str, seen_at: datetime) -> int:
        """Update last_seen of every device of `user_id` registered under `mqtt_topic`; returns the count."""
        pass

    async def find_active_by_token(self, api_token: str) -> Optional[Device]:
        device = await self.find_by_token(api_token)
        if device is None or not device.is_active:
            return None
        return device


class InMemoryDeviceRegistry(DeviceRegistry):
    """Dictionary-backed registry; good for tests, demos and single-node setups."""

    def __init__(self, devices: Iterable[Device] = ()):
        self._by_token: Dict[str, Device] = {d.api_token: d for d in devices}
        self._lock = asyncio.Lock()
        self.log = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryDeviceRegistry":
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
        registry = cls(Device.from_row(row) for row in rows)
        registry.log.info("loaded %d devices from %s", len(registry), path)
        return registry

    def add(self, device: Device) -> None:
        self._by_token[device.api_token] = device

    async def find_by_token(self, api_token: str) -> Optional[Device]:
        return self._by_token.get(api_token)

    async def list_active_for_user(self, user_id: str) -> List[Device]:
        return [d for d in self._by_token.values() if d.user_id == user_id and d.is_active]

    async def touch(self, device_id: str, seen_at: datetime) -> None:
        async with self._lock:
            for token, device in self._by_token.items():
                if device.id == device_id:
                    self._by_token[token] = dataclasses.replace(device, last_seen=seen_at)
                    return
        self.log.warning("touch for unknown device id=%s", device_id)

    async def touch_by_topic(self, user_id: str, mqtt_topic: str, seen_at: datetime) -> int:
        updated = 0
        async with self._lock:
            for token, device in list(self._by_token.items()):
                if device.user_id == user_id and device.mqtt_topic == mqtt_topic:
                    self._by_token[token] = dataclasses.replace(device, last_seen=seen_at)
                    updated += 1
        return updated

    def __len__(self) -> int:
        return len(self._by_token)
