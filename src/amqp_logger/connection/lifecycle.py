"""Connection state tracking and change notification."""

from typing import Optional

from amqp_logger.domain.types import ConnectionState, StateChangeCallback
from amqp_logger.logger import get_logger

logger = get_logger("connection.lifecycle")


class StateNotifier:
    """Holds the current connection state and notifies observers on change."""

    def __init__(
        self,
        initial_state: ConnectionState = ConnectionState.DISCONNECTED,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        """
        Initialize the state notifier.

        Args:
            initial_state: State before any transition
            on_state_change: Optional first observer to register
        """
        self._state = initial_state
        self._callbacks: list[StateChangeCallback] = []
        if on_state_change:
            self._callbacks.append(on_state_change)

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._state == ConnectionState.CONNECTED

    @property
    def is_disconnected(self) -> bool:
        """Check if disconnected."""
        return self._state == ConnectionState.DISCONNECTED

    def subscribe(self, callback: StateChangeCallback) -> None:
        """
        Register an observer.

        Observers are called synchronously, in registration order.

        Args:
            callback: Function receiving the new state
        """
        self._callbacks.append(callback)

    def set_state(self, state: ConnectionState) -> bool:
        """
        Update the state and notify observers.

        A transition to the current state is ignored and notifies nobody.

        Args:
            state: New connection state

        Returns:
            True if the state changed
        """
        if self._state == state:
            return False

        old_state = self._state
        self._state = state
        logger.debug(f"State changed: {old_state.value} -> {state.value}")

        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")
        return True
