"""
Data Source Models - Transport state and wire-level events.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ConnectionState(Enum):
    """Event stream connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class ServerSentEvent:
    """One dispatched server-sent event."""

    data: str
    event: str = "message"
    id: Optional[str] = None
    retry_ms: Optional[int] = None
