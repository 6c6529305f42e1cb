"""Label extraction for messages forwarded to the log backend."""

import json
import time
from typing import Any, Optional

from amqp_logger.domain.types import EventType, TransformedMessage

PR_ACTIONS = ("opened", "closed", "merged")


class MessageTransformer:
    """Maps raw message content to a set of log labels.

    The mapping is a pure function of the content (plus the configured default
    labels); only the timestamp depends on the clock.
    """

    def __init__(self, default_labels: Optional[dict[str, str]] = None):
        """
        Initialize the transformer.

        Args:
            default_labels: Labels attached to every message; extracted labels win
        """
        self._default_labels = dict(default_labels or {})

    @property
    def default_labels(self) -> dict[str, str]:
        """Get a copy of the default labels."""
        return dict(self._default_labels)

    def transform(self, content: str) -> TransformedMessage:
        """
        Extract labels from message content.

        Args:
            content: Raw message content

        Returns:
            The content with its labels and a millisecond timestamp
        """
        timestamp = int(time.time() * 1000)

        try:
            parsed = json.loads(content)
        except (ValueError, TypeError):
            parsed = None

        if isinstance(parsed, dict):
            labels = self.extract_labels(parsed)
        else:
            labels = {"event_type": "unknown"}

        return TransformedMessage(
            labels={**self._default_labels, **labels},
            message=content,
            timestamp=timestamp,
        )

    def extract_labels(self, data: dict[str, Any]) -> dict[str, str]:
        """
        Extract labels from a decoded JSON object.

        Args:
            data: Decoded message

        Returns:
            Labels, always including ``event_type``
        """
        labels: dict[str, str] = {"event_type": self.detect_event_type(data)}

        if _is_pr_event(data):
            _extract_pr_labels(data, labels)
        elif _is_workflow_event(data):
            _extract_workflow_labels(data, labels)
        elif _is_hook_event(data):
            _extract_hook_labels(data, labels)

        return labels

    @staticmethod
    def detect_event_type(data: dict[str, Any]) -> EventType:
        """Classify a decoded message."""
        if _is_pr_event(data):
            action = data["action"].lower()
            if action == "opened":
                return "pr.opened"
            if action == "closed":
                return "pr.closed"
            return "pr.merged"

        if _is_workflow_event(data):
            return "ci.workflow"

        if _is_hook_event(data):
            return "claude.hook"

        return "unknown"


def _is_pr_event(data: dict[str, Any]) -> bool:
    repository = data.get("repository")
    action = data.get("action")
    if not isinstance(repository, str) or not isinstance(action, str):
        return False
    return action.lower() in PR_ACTIONS


def _is_workflow_event(data: dict[str, Any]) -> bool:
    return isinstance(data.get("workflow"), str)


def _is_hook_event(data: dict[str, Any]) -> bool:
    event_type = data.get("type")
    if isinstance(event_type, str) and "claude" in event_type.lower():
        return True
    if isinstance(data.get("hook_type"), str):
        return True
    source = data.get("source")
    return isinstance(source, str) and source.lower() == "claude"


def _repo_name(repository: str) -> str:
    # "owner/name" -> "name"
    return repository.rsplit("/", 1)[-1] or repository


def _extract_pr_labels(data: dict[str, Any], labels: dict[str, str]) -> None:
    labels["repository"] = data["repository"]
    labels["action"] = data["action"].lower()
    labels["repo"] = _repo_name(data["repository"])

    if isinstance(data.get("source"), str):
        labels["source"] = data["source"].lower()


def _extract_workflow_labels(data: dict[str, Any], labels: dict[str, str]) -> None:
    labels["workflow"] = data["workflow"]

    if isinstance(data.get("repository"), str):
        labels["repository"] = data["repository"]
        labels["repo"] = _repo_name(data["repository"])

    for key in ("source", "status", "conclusion"):
        if isinstance(data.get(key), str):
            labels[key] = data[key].lower()


def _extract_hook_labels(data: dict[str, Any], labels: dict[str, str]) -> None:
    if isinstance(data.get("hook_type"), str):
        labels["hook_type"] = data["hook_type"]
    elif isinstance(data.get("type"), str):
        labels["hook_type"] = data["type"]

    if isinstance(data.get("repository"), str):
        labels["repository"] = data["repository"]
