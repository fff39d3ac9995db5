# iot_bridge/orchestration/__init__.py
"""Bridge lifecycle: startup command sequence and state management."""

from .orchestrator import BridgeOrchestrator
from .state_machine import BridgeStateMachine, BridgeState
from .commands import (
    StartupCommand,
    LoadDeviceRegistryCommand,
    ConnectBrokerCommand
)

__all__ = [
    'BridgeOrchestrator',
    'BridgeStateMachine',
    'BridgeState',
    'StartupCommand',
    'LoadDeviceRegistryCommand',
    'ConnectBrokerCommand'
]
