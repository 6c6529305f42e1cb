"""Error types raised by the AMQP logger service."""

from typing import Any, Optional

__all__ = [
    "AmqpLoggerError",
    "ConfigurationError",
    "BrokerConnectionError",
    "ConnectionFailure",
    "NotConnected",
    "ConsumerError",
]


class AmqpLoggerError(Exception):
    """Base class for service errors.

    Every error carries a machine-readable ``code`` and an optional ``context``
    dictionary that is safe to attach to structured log records.
    """

    code = "AMQP_LOGGER_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}


class ConfigurationError(AmqpLoggerError):
    """Raised when a configuration value is missing or invalid."""

    code = "INVALID_CONFIGURATION"

    def __init__(self, message: str, field: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context=context)
        self.field = field


class BrokerConnectionError(AmqpLoggerError):
    """Base class for broker connection errors."""

    code = "CONNECTION_ERROR"


class ConnectionFailure(BrokerConnectionError):
    """Raised when every connect attempt of a ``connect()`` call failed."""

    code = "CONNECTION_FAILED"

    def __init__(self, attempts: int, last_error: Optional[str] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Failed to connect after {attempts} attempts",
            context={"attempts": attempts, "last_error": last_error},
        )
        self.attempts = attempts
        self.last_error = last_error


class NotConnected(BrokerConnectionError):
    """Raised when a channel is requested while the manager is not connected."""

    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Not connected to the broker"):
        super().__init__(message)


class ConsumerError(AmqpLoggerError):
    """Raised when the message consumer cannot be set up."""

    code = "CONSUMER_ERROR"
