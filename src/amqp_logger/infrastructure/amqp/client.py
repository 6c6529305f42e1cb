"""aio-pika implementation of the broker client protocols."""

import asyncio
from typing import Any, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage, AbstractQueue

from amqp_logger.domain.protocols import CloseListener, ErrorListener, MessageHandler
from amqp_logger.logger import get_logger

logger = get_logger("infrastructure.amqp")


class _CloseNotifications:
    """Maps aio-pika ``close_callbacks`` onto error and close listeners.

    aio-pika reports a close with the exception that caused it (or None for a
    clean close). The exception, if any, is handed to error listeners first;
    close listeners then fire once for the lifetime of the handle.
    """

    def __init__(self) -> None:
        self._error_listeners: list[ErrorListener] = []
        self._close_listeners: list[CloseListener] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        """Check if a close notification has been delivered."""
        return self._closed

    def on_error(self, listener: ErrorListener) -> None:
        """Register a listener for errors."""
        self._error_listeners.append(listener)

    def on_close(self, listener: CloseListener) -> None:
        """Register a listener invoked once when the handle closes."""
        self._close_listeners.append(listener)

    def _handle_close(self, _sender: Any = None, exception: Optional[BaseException] = None, *_: Any) -> None:
        if self._closed:
            return
        self._closed = True

        if exception is not None and not isinstance(exception, asyncio.CancelledError):
            for error_listener in list(self._error_listeners):
                try:
                    error_listener(exception)
                except Exception as e:
                    logger.error(f"Error in error listener: {e}")

        for close_listener in list(self._close_listeners):
            try:
                close_listener()
            except Exception as e:
                logger.error(f"Error in close listener: {e}")


class AioPikaChannel(_CloseNotifications):
    """Broker channel backed by an aio-pika channel."""

    def __init__(self, channel: AbstractChannel):
        super().__init__()
        self._channel = channel
        self._queues: dict[str, AbstractQueue] = {}
        self._consumers: dict[str, AbstractQueue] = {}
        self._handlers: dict[str, MessageHandler] = {}
        self._watching_cancel = False
        channel.close_callbacks.add(self._handle_close)

    @property
    def raw(self) -> AbstractChannel:
        """Get the wrapped aio-pika channel."""
        return self._channel

    async def close(self) -> None:
        await self._channel.close()

    async def set_prefetch(self, count: int) -> None:
        await self._channel.set_qos(prefetch_count=count)

    async def declare_exchange(self, name: str, exchange_type: str = "direct", durable: bool = True) -> None:
        await self._channel.declare_exchange(
            name,
            type=aio_pika.ExchangeType(exchange_type),
            durable=durable,
        )

    async def declare_queue(
        self,
        name: str,
        durable: bool = True,
        arguments: Optional[dict[str, Any]] = None,
    ) -> None:
        queue = await self._channel.declare_queue(name, durable=durable, arguments=arguments)
        self._queues[name] = queue

    async def bind_queue(self, queue_name: str, exchange: str, routing_key: str) -> None:
        queue = await self._get_queue(queue_name)
        await queue.bind(exchange, routing_key=routing_key)

    async def consume(self, queue_name: str, handler: MessageHandler) -> str:
        """
        Subscribe with manual acknowledgement.

        The handler receives None when the broker cancels the subscription
        (for example because the queue was deleted).
        """
        queue = await self._get_queue(queue_name)
        await self._watch_broker_cancel()

        async def on_message(message: AbstractIncomingMessage) -> None:
            await handler(message)

        consumer_tag = await queue.consume(on_message, no_ack=False)
        self._consumers[consumer_tag] = queue
        self._handlers[consumer_tag] = handler
        return consumer_tag

    async def cancel(self, consumer_tag: str) -> None:
        self._handlers.pop(consumer_tag, None)
        queue = self._consumers.pop(consumer_tag, None)
        if queue is None:
            logger.warning(f"Unknown consumer tag: {consumer_tag}")
            return
        await queue.cancel(consumer_tag)

    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> None:
        delivery_mode = aio_pika.DeliveryMode.PERSISTENT if persistent else aio_pika.DeliveryMode.NOT_PERSISTENT
        await self._channel.default_exchange.publish(
            aio_pika.Message(body=body, content_type="application/json", delivery_mode=delivery_mode),
            routing_key=queue_name,
        )

    async def _watch_broker_cancel(self) -> None:
        # aio-pika surfaces Basic.Cancel only on the underlying aiormq channel
        if self._watching_cancel:
            return
        underlay = await self._channel.get_underlay_channel()
        underlay.on_consumer_cancel_callbacks.add(self._on_broker_cancel)
        self._watching_cancel = True

    async def _on_broker_cancel(self, frame: Any) -> None:
        consumer_tag = frame.consumer_tag
        self._consumers.pop(consumer_tag, None)
        handler = self._handlers.pop(consumer_tag, None)
        if handler is None:
            return
        logger.bind(consumer_tag=consumer_tag).warning("Subscription cancelled by the broker")
        await handler(None)

    async def _get_queue(self, name: str) -> AbstractQueue:
        queue = self._queues.get(name)
        if queue is None:
            # passive declaration, fails if the queue does not exist
            queue = await self._channel.get_queue(name, ensure=True)
            self._queues[name] = queue
        return queue


class AioPikaConnection(_CloseNotifications):
    """Broker connection backed by an aio-pika connection."""

    def __init__(self, connection: AbstractConnection):
        super().__init__()
        self._connection = connection
        connection.close_callbacks.add(self._handle_close)

    @property
    def raw(self) -> AbstractConnection:
        """Get the wrapped aio-pika connection."""
        return self._connection

    async def channel(self) -> AioPikaChannel:
        channel = await self._connection.channel()
        return AioPikaChannel(channel)

    async def close(self) -> None:
        await self._connection.close()


class AioPikaClient:
    """Opens plain (non-robust) aio-pika connections.

    Retries and reconnection are handled by the ConnectionManager, not by
    ``connect_robust``.
    """

    def __init__(self, timeout: Optional[float] = None, **connect_kwargs: Any):
        """
        Initialize the client.

        Args:
            timeout: Optional connect timeout in seconds
            **connect_kwargs: Extra keyword arguments for ``aio_pika.connect``
        """
        self._timeout = timeout
        self._connect_kwargs = connect_kwargs

    async def connect(self, url: str) -> AioPikaConnection:
        kwargs = dict(self._connect_kwargs)
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        connection = await aio_pika.connect(url, **kwargs)
        return AioPikaConnection(connection)
