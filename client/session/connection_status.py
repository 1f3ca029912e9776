"""
Connection state and status for the backend session.

ConnectionState is the single tagged lifecycle value owned and mutated by
ConnectionSession. ConnectionStatus is the {connected, registered}
projection of it that listeners receive.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    """
    Connection lifecycle.

    DISCONNECTED -> CONNECTING -> OPEN_UNREGISTERED -> OPEN_REGISTERED
    CLOSING is entered only through an explicit disconnect() and is terminal
    for the session instance.
    """
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN_UNREGISTERED = "OPEN_UNREGISTERED"
    OPEN_REGISTERED = "OPEN_REGISTERED"
    CLOSING = "CLOSING"

    @property
    def is_open(self) -> bool:
        return self in (ConnectionState.OPEN_UNREGISTERED, ConnectionState.OPEN_REGISTERED)


@dataclass(frozen=True)
class ConnectionStatus:
    """
    Immutable {connected, registered} snapshot.

    registered implies connected; from_state() is the only constructor used
    by the session, so the combination registered=True, connected=False
    never reaches listeners.
    """
    connected: bool = False
    registered: bool = False

    @staticmethod
    def from_state(state: ConnectionState) -> ConnectionStatus:
        return ConnectionStatus(
            connected=state.is_open,
            registered=state is ConnectionState.OPEN_REGISTERED,
        )

    @property
    def ready(self) -> bool:
        """Connected and registered: audio may be sent."""
        return self.connected and self.registered

    def as_dict(self) -> dict[str, bool]:
        return {"connected": self.connected, "registered": self.registered}


DISCONNECTED_STATUS = ConnectionStatus()
