from enum import Enum, auto
from typing import Dict, Set
import logging

class BridgeState(Enum):
    INITIALIZING = auto()
    CONNECTING = auto()
    OPERATIONAL = auto()
    ERROR = auto()
    SHUTDOWN = auto()

class BridgeStateMachine:
    """Lifecycle of the bridge process as a whole"""

    def __init__(self):
        self.current_state = BridgeState.INITIALIZING
        self.logger = logging.getLogger(self.__class__.__name__)
        self.valid_transitions: Dict[BridgeState, Set[BridgeState]] = {
            BridgeState.INITIALIZING: {BridgeState.CONNECTING, BridgeState.ERROR, BridgeState.SHUTDOWN},
            BridgeState.CONNECTING: {BridgeState.OPERATIONAL, BridgeState.ERROR, BridgeState.SHUTDOWN},
            BridgeState.OPERATIONAL: {BridgeState.SHUTDOWN},
            BridgeState.ERROR: {BridgeState.SHUTDOWN},
            BridgeState.SHUTDOWN: set()
        }

    def can_transition_to(self, new_state: BridgeState) -> bool:
        return new_state in self.valid_transitions.get(self.current_state, set())

    def transition_to(self, new_state: BridgeState) -> bool:
        if self.can_transition_to(new_state):
            self.logger.info(f"Bridge state: {self.current_state.name} -> {new_state.name}")
            self.current_state = new_state
            return True
        self.logger.error(f"Invalid bridge state transition: {self.current_state.name} -> {new_state.name}")
        return False
