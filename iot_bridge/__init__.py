"""MQTT to HTTP ingestion bridge for IoT devices - Main Package"""

__version__ = '1.0.0'
__description__ = 'Forwards device telemetry from MQTT to the internal ingestion API'

# Core patterns - most fundamental
from .core import ConnectionStateMachine, DeliverySubject, DeliveryObserver

# Models - domain objects
from .models import Device, InboundMessage, DecodedReading, RetryPolicy

# Protocols
from .protocols import BrokerConnectionManager, TopicRouter

# Services - delivery and publishing
from .services import DeliveryPipeline, RetryEngine, IngestionClient, DevicePublisher

# Orchestration
from .orchestration import BridgeOrchestrator

__all__ = [
    # Core
    'ConnectionStateMachine',
    'DeliverySubject',
    'DeliveryObserver',

    # Models
    'Device',
    'InboundMessage',
    'DecodedReading',
    'RetryPolicy',

    # Protocols
    'BrokerConnectionManager',
    'TopicRouter',

    # Services
    'DeliveryPipeline',
    'RetryEngine',
    'IngestionClient',
    'DevicePublisher',
    'BridgeOrchestrator'
]
