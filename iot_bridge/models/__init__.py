"""Data models and domain objects."""

from .device import Device

from .messages import (
    InboundMessage,
    MessageMetadata,
    DecodedReading,
    AttemptOutcome,
    DeliveryAttempt,
    DeliveryResult,
    RetryPolicy
)

__all__ = [
    # Domain models
    'Device',

    # Broker / delivery models
    'InboundMessage',
    'MessageMetadata',
    'DecodedReading',
    'AttemptOutcome',
    'DeliveryAttempt',
    'DeliveryResult',
    'RetryPolicy'
]
