"""Tests for MessageConsumer."""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from amqp_logger.application import MessageConsumer, MessageTransformer
from amqp_logger.config import DeadLetterConfig
from amqp_logger.connection import ConnectionManager, ConnectionOptions
from amqp_logger.errors import ConsumerError, NotConnected
from tests.conftest import FakeBrokerClient, FakeMessage, RecordingSleep, find_records

QUEUE = "test-queue"


@pytest.fixture
def client():
    return FakeBrokerClient()


@pytest_asyncio.fixture
async def manager(client):
    manager = ConnectionManager(
        ConnectionOptions(url="amqp://localhost", reconnect_attempts=1, reconnect_delay_ms=10),
        client=client,
        sleep=RecordingSleep(),
    )
    await manager.connect()
    return manager


def make_consumer(manager, dead_letter=None, transformer=None) -> MessageConsumer:
    return MessageConsumer(
        queue_name=QUEUE,
        prefetch_count=10,
        connection_manager=manager,
        transformer=transformer or MessageTransformer(default_labels={"app": "amqp-logger"}),
        dead_letter=dead_letter or DeadLetterConfig(),
    )


class TestStart:
    """Tests for MessageConsumer.start()."""

    @pytest.mark.asyncio
    async def test_start_consuming(self, manager, log_records):
        consumer = make_consumer(manager)

        await consumer.start()
        channel = await manager.get_channel()

        assert consumer.is_running
        assert channel.prefetch == 10
        assert list(channel.handlers) == ["ctag-1"]
        started = find_records(log_records, "Consumer started", "INFO")
        assert started[0]["extra"]["queue"] == QUEUE
        assert started[0]["extra"]["prefetch"] == 10
        assert started[0]["extra"]["dlq_enabled"] is True

    @pytest.mark.asyncio
    async def test_declares_dead_letter_topology(self, manager):
        consumer = make_consumer(manager)

        await consumer.start()
        channel = await manager.get_channel()

        assert channel.exchanges == [("dlx", "direct", True)]
        assert channel.bindings == [("test-queue.dlq", "dlx", "dead-letter")]
        assert channel.queues == [
            ("test-queue.dlq", True, None),
            (
                QUEUE,
                True,
                {
                    "x-dead-letter-exchange": "dlx",
                    "x-dead-letter-routing-key": "dead-letter",
                },
            ),
        ]

    @pytest.mark.asyncio
    async def test_custom_dead_letter_settings(self, manager):
        consumer = make_consumer(manager, DeadLetterConfig(exchange="failed", routing_key="events"))

        await consumer.start()
        channel = await manager.get_channel()

        assert channel.exchanges == [("failed", "direct", True)]
        assert channel.bindings == [("test-queue.dlq", "failed", "events")]

    @pytest.mark.asyncio
    async def test_dead_letter_disabled(self, manager):
        consumer = make_consumer(manager, DeadLetterConfig(enabled=False))

        await consumer.start()
        channel = await manager.get_channel()

        assert channel.exchanges == []
        assert channel.bindings == []
        assert channel.queues == [(QUEUE, True, None)]

    @pytest.mark.asyncio
    async def test_start_twice_subscribes_once(self, manager):
        consumer = make_consumer(manager)

        await consumer.start()
        await consumer.start()
        channel = await manager.get_channel()

        assert len(channel.handlers) == 1

    @pytest.mark.asyncio
    async def test_declaration_failure_raises_consumer_error(self, manager):
        channel = await manager.get_channel()
        channel.declare_queue = AsyncMock(side_effect=RuntimeError("PRECONDITION_FAILED"))
        consumer = make_consumer(manager)

        with pytest.raises(ConsumerError) as exc_info:
            await consumer.start()

        assert exc_info.value.code == "CONSUMER_ERROR"
        assert exc_info.value.context["queue"] == QUEUE
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not consumer.is_running
        assert channel.handlers == {}

    @pytest.mark.asyncio
    async def test_start_requires_connection(self, client):
        manager = ConnectionManager(ConnectionOptions(url="amqp://localhost"), client=client)
        consumer = make_consumer(manager)

        with pytest.raises(NotConnected):
            await consumer.start()

        assert not consumer.is_running


class TestStop:
    """Tests for MessageConsumer.stop()."""

    @pytest.mark.asyncio
    async def test_stop_cancels_subscription(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()

        await consumer.stop()
        channel = await manager.get_channel()

        assert channel.cancelled == ["ctag-1"]
        assert not consumer.is_running
        assert find_records(log_records, "Consumer stopped", "INFO")

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, manager):
        consumer = make_consumer(manager)

        await consumer.stop()
        channel = await manager.get_channel()

        assert channel.cancelled == []

    @pytest.mark.asyncio
    async def test_stop_ignores_cancel_errors(self, manager):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        channel.cancel_error = RuntimeError("Channel closed")

        await consumer.stop()

        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_stop_after_connection_lost(self, manager, client):
        consumer = make_consumer(manager)
        await consumer.start()
        client.connection.emit_close()

        await consumer.stop()

        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, manager):
        consumer = make_consumer(manager)
        await consumer.start()
        await consumer.stop()

        await consumer.start()
        channel = await manager.get_channel()

        assert list(channel.handlers) == ["ctag-2"]


class TestMessageHandling:
    """Tests for delivered message processing."""

    @pytest.mark.asyncio
    async def test_logs_json_message_with_labels(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        message = FakeMessage({"repository": "owner/repo", "action": "opened"})

        await channel.deliver(message)

        received = find_records(log_records, "Message received", "INFO")
        assert received[0]["extra"]["payload"] == {"repository": "owner/repo", "action": "opened"}
        labels = received[0]["extra"]["labels"]
        assert labels["event_type"] == "pr.opened"
        assert labels["repository"] == "owner/repo"
        assert labels["action"] == "opened"
        assert labels["app"] == "amqp-logger"
        assert message.acked
        assert message.nacks == []

    @pytest.mark.asyncio
    async def test_logs_raw_content_for_invalid_json(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        message = FakeMessage(raw=b"not json")

        await channel.deliver(message)

        warnings = find_records(log_records, "Failed to parse message as JSON, logging raw content", "WARNING")
        assert warnings[0]["extra"]["raw"] == "not json"
        assert warnings[0]["extra"]["error"]
        assert warnings[0]["extra"]["labels"]["event_type"] == "unknown"
        assert message.acked

    @pytest.mark.asyncio
    async def test_null_message_is_not_acknowledged(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()

        await channel.deliver(None)

        warnings = find_records(log_records, "Received null message (consumer cancelled by server)", "WARNING")
        assert warnings[0]["extra"]["queue"] == QUEUE

    @pytest.mark.asyncio
    async def test_broker_cancellation_stops_consumer(self, manager):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()

        await channel.deliver(None)
        await consumer.stop()

        assert not consumer.is_running
        assert channel.cancelled == []

    @pytest.mark.asyncio
    async def test_nack_without_requeue_on_processing_error(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        message = FakeMessage({"data": "test"}, ack_error=RuntimeError("Ack failed"))

        await channel.deliver(message)

        assert message.nacks == [False]
        errors = find_records(log_records, "Error processing message", "ERROR")
        assert errors[0]["extra"]["error"] == "Ack failed"
        assert errors[0]["extra"]["queue"] == QUEUE

    @pytest.mark.asyncio
    async def test_transformer_failure_is_a_processing_error(self, manager):
        transformer = MagicMock(spec=MessageTransformer)
        transformer.transform.side_effect = RuntimeError("transform failed")
        consumer = make_consumer(manager, transformer=transformer)
        await consumer.start()
        channel = await manager.get_channel()
        message = FakeMessage({"data": "test"})

        await channel.deliver(message)

        assert not message.acked
        assert message.nacks == [False]

    @pytest.mark.asyncio
    async def test_logs_nack_failure(self, manager, log_records):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        message = FakeMessage(
            {"data": "test"},
            ack_error=RuntimeError("Ack failed"),
            nack_error=RuntimeError("Nack failed"),
        )

        await channel.deliver(message)

        failures = find_records(log_records, "Failed to nack message", "ERROR")
        assert failures[0]["extra"]["error"] == "Nack failed"

    @pytest.mark.asyncio
    async def test_handler_works_with_mocked_message(self, manager):
        consumer = make_consumer(manager)
        await consumer.start()
        channel = await manager.get_channel()
        message = MagicMock()
        message.body = b'{"workflow": "CI", "status": "Completed"}'
        message.ack = AsyncMock()
        message.nack = AsyncMock()

        await channel.deliver(message)

        message.ack.assert_awaited_once()
        message.nack.assert_not_awaited()
