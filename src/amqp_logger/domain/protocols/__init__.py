"""Domain protocols - interfaces for all implementations.

This module defines protocols (structural types) that describe the contracts
the broker adapter must satisfy. Using protocols keeps the connection manager
independent of aio-pika and lets tests substitute in-memory fakes.
"""

from amqp_logger.domain.protocols.broker import (
    BrokerChannel,
    BrokerClient,
    BrokerConnection,
    BrokerMessage,
    CloseListener,
    ErrorListener,
    MessageHandler,
)

__all__ = [
    "BrokerChannel",
    "BrokerClient",
    "BrokerConnection",
    "BrokerMessage",
    "CloseListener",
    "ErrorListener",
    "MessageHandler",
]
