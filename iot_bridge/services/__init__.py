"""Delivery, registry and publishing services."""

from .ingestion_client import IngestionClient, IngestionResponse
from .retry_engine import RetryEngine
from .delivery_pipeline import DeliveryPipeline, build_request_body
from .dead_letter import DeadLetterBuffer
from .device_registry import DeviceRegistry, InMemoryDeviceRegistry
from .device_publisher import DevicePublisher, format_for_device

__all__ = [
    'IngestionClient',
    'IngestionResponse',
    'RetryEngine',
    'DeliveryPipeline',
    'build_request_body',
    'DeadLetterBuffer',
    'DeviceRegistry',
    'InMemoryDeviceRegistry',
    'DevicePublisher',
    'format_for_device'
]
