"""Message consumption from the broker queue."""

import json
from typing import Optional

from amqp_logger.config import DeadLetterConfig
from amqp_logger.connection import ConnectionManager
from amqp_logger.domain.protocols import BrokerChannel, BrokerMessage
from amqp_logger.errors import ConsumerError
from amqp_logger.logger import get_logger
from .transformer import MessageTransformer


class MessageConsumer:
    """
    Consumes a queue and writes every message to the structured log.

    Each delivery is labelled by the transformer, logged, and acknowledged.
    A delivery that cannot be processed is rejected without requeue so that a
    dead-letter exchange configured on the queue receives it.
    """

    def __init__(
        self,
        queue_name: str,
        prefetch_count: int,
        connection_manager: ConnectionManager,
        transformer: Optional[MessageTransformer] = None,
        dead_letter: Optional[DeadLetterConfig] = None,
        logger=None,
    ):
        """
        Initialize the consumer.

        Args:
            queue_name: Queue to consume from
            prefetch_count: Maximum number of unacknowledged deliveries
            connection_manager: Source of the channel
            transformer: Label extractor (defaults to one without default labels)
            dead_letter: Dead-letter topology settings (defaults to enabled)
            logger: Parent loguru logger
        """
        self._queue_name = queue_name
        self._prefetch_count = prefetch_count
        self._connection_manager = connection_manager
        self._transformer = transformer or MessageTransformer()
        self._dead_letter = dead_letter or DeadLetterConfig()
        self._logger = (logger or get_logger("consumer")).bind(component="MessageConsumer")

        self._consumer_tag: Optional[str] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        """Check if the consumer is subscribed."""
        return self._is_running

    @property
    def queue_name(self) -> str:
        """Get the consumed queue name."""
        return self._queue_name

    @property
    def dead_letter_queue(self) -> str:
        """Name of the queue receiving rejected messages."""
        return f"{self._queue_name}.dlq"

    async def start(self) -> None:
        """
        Subscribe to the queue.

        Does nothing when already running.

        Raises:
            NotConnected: If the connection manager is not connected
            ConsumerError: If the topology cannot be declared or the
                subscription fails
        """
        if self._is_running:
            return

        channel = await self._connection_manager.get_channel()
        try:
            await channel.set_prefetch(self._prefetch_count)
            await self._declare_topology(channel)
            self._consumer_tag = await channel.consume(self._queue_name, self._handle_message)
        except Exception as e:
            raise ConsumerError(
                f"Failed to start consumer on queue '{self._queue_name}': {e}",
                context={"queue": self._queue_name, "error": str(e)},
            ) from e

        self._is_running = True
        self._logger.bind(
            queue=self._queue_name,
            prefetch=self._prefetch_count,
            dlq_enabled=self._dead_letter.enabled,
        ).info("Consumer started")

    async def stop(self) -> None:
        """
        Cancel the subscription.

        Errors are ignored because the connection may already be gone.
        """
        if not self._is_running or not self._consumer_tag:
            return

        try:
            channel = await self._connection_manager.get_channel()
            await channel.cancel(self._consumer_tag)
        except Exception as e:
            self._logger.bind(error=str(e)).debug("Ignoring error while cancelling consumer")

        self._consumer_tag = None
        self._is_running = False
        self._logger.info("Consumer stopped")

    async def _declare_topology(self, channel: BrokerChannel) -> None:
        if not self._dead_letter.enabled:
            await channel.declare_queue(self._queue_name, durable=True)
            return

        dlx = self._dead_letter.exchange
        routing_key = self._dead_letter.routing_key

        await channel.declare_exchange(dlx, "direct", durable=True)
        await channel.declare_queue(self.dead_letter_queue, durable=True)
        await channel.bind_queue(self.dead_letter_queue, dlx, routing_key)
        self._logger.bind(exchange=dlx, queue=self.dead_letter_queue, routing_key=routing_key).info(
            "DLQ configured"
        )

        await channel.declare_queue(
            self._queue_name,
            durable=True,
            arguments={
                "x-dead-letter-exchange": dlx,
                "x-dead-letter-routing-key": routing_key,
            },
        )

    async def _handle_message(self, message: Optional[BrokerMessage]) -> None:
        if message is None:
            self._logger.bind(queue=self._queue_name).warning("Received null message (consumer cancelled by server)")
            # the broker already dropped the subscription
            self._consumer_tag = None
            self._is_running = False
            return

        try:
            content = message.body.decode("utf-8", errors="replace")
            transformed = self._transformer.transform(content)

            try:
                payload = json.loads(content)
            except ValueError as e:
                self._logger.bind(raw=content, error=str(e), labels=transformed.labels).warning(
                    "Failed to parse message as JSON, logging raw content"
                )
            else:
                self._logger.bind(payload=payload, labels=transformed.labels).info("Message received")

            await message.ack()
        except Exception as e:
            await self._handle_processing_error(message, e)

    async def _handle_processing_error(self, message: BrokerMessage, error: Exception) -> None:
        self._logger.bind(error=str(error), queue=self._queue_name).error("Error processing message")

        try:
            await message.nack(requeue=False)
        except Exception as nack_error:
            self._logger.bind(error=str(nack_error)).error("Failed to nack message")
