# iot_bridge/core/__init__.py
"""Core infrastructure components for the IoT ingestion bridge."""

# Import order: most fundamental to most specific

from .exceptions import (
    IoTBridgeError,
    ConfigurationError,
    ProtocolError,
    TransportError,
    DeviceNotFoundError,
)

from .patterns.state_machine import ConnectionStateMachine, ConnectionState
from .patterns.observer import (
    DeliveryEventType,
    DeliveryEvent,
    DeliveryObserver,
    DeliverySubject,
)


__all__ = [
    "ConnectionStateMachine",
    "ConnectionState",
    "DeliveryEventType",
    "DeliveryEvent",
    "DeliveryObserver",
    "DeliverySubject",
    "IoTBridgeError",
    "ConfigurationError",
    "ProtocolError",
    "TransportError",
    "DeviceNotFoundError",
]
