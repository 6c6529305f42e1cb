"""Message-related domain types."""

from dataclasses import dataclass
from typing import Literal

__all__ = ["EventType", "TransformedMessage"]

EventType = Literal[
    "pr.opened",
    "pr.closed",
    "pr.merged",
    "ci.workflow",
    "claude.hook",
    "unknown",
]


@dataclass
class TransformedMessage:
    """Raw message content together with the labels extracted from it."""

    labels: dict[str, str]
    message: str
    timestamp: int  # epoch milliseconds
