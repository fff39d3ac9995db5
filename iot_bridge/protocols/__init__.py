"""Broker connection and topic routing."""

from .topic_router import (
    TopicRouter,
    SUBSCRIPTION_TOPIC,
    LIVENESS_TOPICS,
    DashboardTopic,
    extract_device_token,
    parse_dashboard_topic
)

from .mqtt_client import (
    BrokerConfig,
    BrokerConnectionManager,
    EventKind,
    TransportEvent
)

__all__ = [
    # Routing
    'TopicRouter',
    'SUBSCRIPTION_TOPIC',
    'LIVENESS_TOPICS',
    'DashboardTopic',
    'extract_device_token',
    'parse_dashboard_topic',

    # Broker link
    'BrokerConfig',
    'BrokerConnectionManager',
    'EventKind',
    'TransportEvent'
]
