"""Connection management components for the broker client."""

from .reconnect import ExponentialBackoff, calculate_backoff
from .lifecycle import StateNotifier
from .manager import ConnectionManager, ConnectionOptions

__all__ = [
    "ExponentialBackoff",
    "calculate_backoff",
    "StateNotifier",
    "ConnectionManager",
    "ConnectionOptions",
]
