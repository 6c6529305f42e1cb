"""Broker client protocols.

These protocols describe the contract the connection manager and the message
consumer rely on. The aio-pika adapter in ``amqp_logger.infrastructure.amqp``
implements them for RabbitMQ; tests provide in-memory fakes.
"""

from typing import Any, Awaitable, Callable, Optional, Protocol

__all__ = [
    "BrokerMessage",
    "MessageHandler",
    "ErrorListener",
    "CloseListener",
    "BrokerChannel",
    "BrokerConnection",
    "BrokerClient",
]


class BrokerMessage(Protocol):
    """A message delivered by the broker that must be acknowledged."""

    body: bytes

    async def ack(self) -> None:
        """Acknowledge the message."""
        ...

    async def nack(self, requeue: bool = True) -> None:
        """Negatively acknowledge the message."""
        ...


# None signals that the broker cancelled the subscription
MessageHandler = Callable[[Optional[BrokerMessage]], Awaitable[None]]
ErrorListener = Callable[[BaseException], None]
CloseListener = Callable[[], None]


class BrokerChannel(Protocol):
    """Protocol for a channel multiplexed over a broker connection.

    Close notifications fire at most once per channel.
    """

    def on_error(self, listener: ErrorListener) -> None:
        """Register a listener for channel errors."""
        ...

    def on_close(self, listener: CloseListener) -> None:
        """Register a listener invoked when the channel closes."""
        ...

    async def close(self) -> None:
        """Close the channel."""
        ...

    async def set_prefetch(self, count: int) -> None:
        """Limit the number of unacknowledged deliveries."""
        ...

    async def declare_exchange(self, name: str, exchange_type: str = "direct", durable: bool = True) -> None:
        """Declare an exchange."""
        ...

    async def declare_queue(
        self,
        name: str,
        durable: bool = True,
        arguments: Optional[dict[str, Any]] = None,
    ) -> None:
        """Declare a queue."""
        ...

    async def bind_queue(self, queue_name: str, exchange: str, routing_key: str) -> None:
        """Bind a queue to an exchange."""
        ...

    async def consume(self, queue_name: str, handler: MessageHandler) -> str:
        """Subscribe to a queue with manual acknowledgement.

        The handler is called with None once if the broker cancels the
        subscription.

        Returns:
            The consumer tag of the subscription
        """
        ...

    async def cancel(self, consumer_tag: str) -> None:
        """Cancel a subscription."""
        ...

    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> None:
        """Publish a message to a queue through the default exchange."""
        ...


class BrokerConnection(Protocol):
    """Protocol for a live broker connection.

    Close notifications fire at most once per connection.
    """

    def on_error(self, listener: ErrorListener) -> None:
        """Register a listener for connection errors."""
        ...

    def on_close(self, listener: CloseListener) -> None:
        """Register a listener invoked when the connection closes."""
        ...

    async def channel(self) -> BrokerChannel:
        """Open a new channel on this connection."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class BrokerClient(Protocol):
    """Protocol for objects able to open broker connections."""

    async def connect(self, url: str) -> BrokerConnection:
        """Open a connection to the broker at ``url``.

        Raises:
            Exception: Any error from the transport when the broker is unreachable
        """
        ...
