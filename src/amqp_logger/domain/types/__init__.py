"""Shared domain types."""

from amqp_logger.domain.types.connection import ConnectionState, StateChangeCallback
from amqp_logger.domain.types.messages import EventType, TransformedMessage

__all__ = [
    "ConnectionState",
    "StateChangeCallback",
    "EventType",
    "TransformedMessage",
]
