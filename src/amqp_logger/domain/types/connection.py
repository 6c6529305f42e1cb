"""Connection-related domain types."""

from enum import Enum
from typing import Callable

__all__ = ["ConnectionState", "StateChangeCallback"]


class ConnectionState(Enum):
    """State of the broker connection.

    Exactly one value holds at any instant. ``DISCONNECTED`` is both the
    initial state and the state reached after a failed ``connect()``.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# Invoked synchronously, in registration order, on every state change
StateChangeCallback = Callable[[ConnectionState], None]
