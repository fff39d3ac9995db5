"""
Centralised exception definitions for the IoT ingestion bridge.
All custom exceptions should inherit from IoTBridgeError.
"""

class IoTBridgeError(Exception):
    """Base class for every custom exception thrown by this project."""

class ConfigurationError(IoTBridgeError):
    """Raised when configuration values or environment variables are invalid."""

class ProtocolError(IoTBridgeError):
    """Failure inside the broker client (connect refused, SUBACK failure, …)."""

class TransportError(IoTBridgeError):
    """HTTP-layer failure before a response arrived (timeout, refused, DNS)."""

class DeviceNotFoundError(IoTBridgeError):
    """No active device is registered under the given token."""
