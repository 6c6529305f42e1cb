"""Shared fakes and fixtures for broker tests."""

import json
from typing import Any, Optional

import pytest
from loguru import logger


class FakeMessage:
    """In-memory delivery with recorded acknowledgements."""

    def __init__(
        self,
        content: Any = None,
        raw: Optional[bytes] = None,
        ack_error: Optional[Exception] = None,
        nack_error: Optional[Exception] = None,
    ):
        if raw is not None:
            self.body = raw
        else:
            self.body = json.dumps(content).encode("utf-8")
        self.ack_error = ack_error
        self.nack_error = nack_error
        self.acked = False
        self.nacks: list[bool] = []

    async def ack(self) -> None:
        if self.ack_error:
            raise self.ack_error
        self.acked = True

    async def nack(self, requeue: bool = True) -> None:
        if self.nack_error:
            raise self.nack_error
        self.nacks.append(requeue)


class _Notifying:
    """Error/close listener registry firing close at most once."""

    def __init__(self, events: list[str], name: str, close_error: Optional[Exception] = None):
        self.events = events
        self.name = name
        self.close_error = close_error
        self.error_listeners: list = []
        self.close_listeners: list = []
        self.close_calls = 0
        self._closed = False

    def on_error(self, listener) -> None:
        self.error_listeners.append(listener)

    def on_close(self, listener) -> None:
        self.close_listeners.append(listener)

    def emit_error(self, error: BaseException) -> None:
        for listener in list(self.error_listeners):
            listener(error)

    def emit_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for listener in list(self.close_listeners):
            listener()

    async def close(self) -> None:
        self.close_calls += 1
        self.events.append(f"{self.name}.close")
        if self.close_error:
            raise self.close_error
        self.emit_close()


class FakeChannel(_Notifying):
    """Channel double recording every broker operation."""

    def __init__(self, events: list[str], close_error: Optional[Exception] = None):
        super().__init__(events, "channel", close_error)
        self.prefetch: Optional[int] = None
        self.exchanges: list[tuple[str, str, bool]] = []
        self.queues: list[tuple[str, bool, Optional[dict]]] = []
        self.bindings: list[tuple[str, str, str]] = []
        self.handlers: dict[str, Any] = {}
        self.cancelled: list[str] = []
        self.published: list[tuple[str, bytes, bool]] = []
        self.cancel_error: Optional[Exception] = None
        self._tags = 0

    async def set_prefetch(self, count: int) -> None:
        self.prefetch = count

    async def declare_exchange(self, name: str, exchange_type: str = "direct", durable: bool = True) -> None:
        self.exchanges.append((name, exchange_type, durable))

    async def declare_queue(self, name: str, durable: bool = True, arguments: Optional[dict] = None) -> None:
        self.queues.append((name, durable, arguments))

    async def bind_queue(self, queue_name: str, exchange: str, routing_key: str) -> None:
        self.bindings.append((queue_name, exchange, routing_key))

    async def consume(self, queue_name: str, handler) -> str:
        self._tags += 1
        tag = f"ctag-{self._tags}"
        self.handlers[tag] = handler
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        if self.cancel_error:
            raise self.cancel_error
        self.cancelled.append(consumer_tag)
        self.handlers.pop(consumer_tag, None)

    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> None:
        self.published.append((queue_name, body, persistent))

    async def deliver(self, message: Optional[FakeMessage]) -> None:
        """Deliver a message to every active subscription."""
        for handler in list(self.handlers.values()):
            await handler(message)


class FakeConnection(_Notifying):
    """Connection double handing out FakeChannels."""

    def __init__(self, events: list[str], close_error: Optional[Exception] = None):
        super().__init__(events, "connection", close_error)
        self.channels: list[FakeChannel] = []
        self.channel_close_error: Optional[Exception] = None

    async def channel(self) -> FakeChannel:
        channel = FakeChannel(self.events, close_error=self.channel_close_error)
        self.channels.append(channel)
        return channel

    @property
    def channel_calls(self) -> int:
        return len(self.channels)


class FakeBrokerClient:
    """Broker client failing a scripted number of times before succeeding."""

    def __init__(self, failures: int = 0, always_fail: bool = False, error_message: str = "ECONNREFUSED"):
        self.failures = failures
        self.always_fail = always_fail
        self.error_message = error_message
        self.events: list[str] = []
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.before_return = None

    @property
    def connect_calls(self) -> int:
        return len(self.urls)

    @property
    def connection(self) -> FakeConnection:
        return self.connections[-1]

    async def connect(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.always_fail or len(self.urls) <= self.failures:
            raise ConnectionRefusedError(f"{self.error_message} (attempt {len(self.urls)})")

        connection = FakeConnection(self.events)
        self.connections.append(connection)
        if self.before_return is not None:
            await self.before_return()
        return connection


class RecordingSleep:
    """Sleep replacement recording requested delays without waiting."""

    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.on_sleep is not None:
            await self.on_sleep()


@pytest.fixture
def broker_client():
    """Fixture providing a broker client that always connects."""
    return FakeBrokerClient()


@pytest.fixture
def recording_sleep():
    """Fixture providing a sleep that records delays."""
    return RecordingSleep()


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def find_records(records: list[dict], message: str, level: Optional[str] = None) -> list[dict]:
    """Return captured records with the given message (and level)."""
    return [
        record
        for record in records
        if record["message"] == message and (level is None or record["level"].name == level)
    ]
