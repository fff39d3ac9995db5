from abc import ABC, abstractmethod
from typing import Any, Dict
import logging

from iot_bridge.core.exceptions import IoTBridgeError


class StartupCommand(ABC):
    """One reversible step of the bridge startup sequence"""

    def __init__(self, context: Dict[str, Any]):
        self.context = context
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def execute(self) -> Dict[str, Any]:
        """Run the step; the returned dict is merged into the shared context"""

    @abstractmethod
    async def rollback(self) -> None:
        """Undo the step's effects"""


class LoadDeviceRegistryCommand(StartupCommand):
    """Report what the device registry knows before any traffic flows"""

    async def execute(self) -> Dict[str, Any]:
        registry = self.context.get("registry")
        if registry is None:
            raise IoTBridgeError("device registry not found in context")
        count = len(registry) if hasattr(registry, "__len__") else None
        if count == 0:
            self.logger.warning("device registry is empty, outbound pushes will find no devices")
        elif count is not None:
            self.logger.info(f"Device registry holds {count} device(s)")
        return {"success": True, "device_count": count}

    async def rollback(self) -> None:
        pass


class ConnectBrokerCommand(StartupCommand):
    """Open the broker connection and wait for the subscription to be acknowledged"""

    async def execute(self) -> Dict[str, Any]:
        connection = self.context["connection"]
        try:
            await connection.connect()
        except IoTBridgeError as e:
            self.logger.error(f"Broker connection failed: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "broker": connection.get_stats()["broker"]}

    async def rollback(self) -> None:
        await self.context["connection"].disconnect()
