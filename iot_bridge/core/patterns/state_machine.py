import logging
from enum import Enum, auto
from typing import Dict, List

class ConnectionState(Enum):
    DISCONNECTED  = auto()
    CONNECTING    = auto()
    CONNECTED     = auto()
    RECONNECTING  = auto()

class ConnectionStateMachine:
    """Broker link lifecycle; there is no terminal state, shutdown parks in DISCONNECTED."""

    def __init__(self, initial: ConnectionState = ConnectionState.DISCONNECTED):
        self._state = initial
        self.log = logging.getLogger(self.__class__.__name__)
        self._trans: Dict[ConnectionState, List[ConnectionState]] = {
            ConnectionState.DISCONNECTED: [ConnectionState.CONNECTING, ConnectionState.RECONNECTING],
            ConnectionState.CONNECTING:   [ConnectionState.CONNECTED,  ConnectionState.DISCONNECTED],
            ConnectionState.CONNECTED:    [ConnectionState.DISCONNECTED],
            ConnectionState.RECONNECTING: [ConnectionState.CONNECTED,  ConnectionState.DISCONNECTED],
        }

    @property
    def state(self) -> ConnectionState: return self._state

    def can(self, nxt: ConnectionState) -> bool: return nxt in self._trans[self._state]

    def transition(self, nxt: ConnectionState) -> bool:
        if nxt == self._state:
            return True
        if self.can(nxt):
            self.log.info("connection state %s -> %s", self._state.name, nxt.name)
            self._state = nxt
            return True
        self.log.warning("refused connection state %s -> %s", self._state.name, nxt.name)
        return False
