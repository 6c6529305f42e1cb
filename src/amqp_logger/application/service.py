"""Service wiring: builds the components and drives their lifecycle."""

import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from amqp_logger.config import AppConfig
from amqp_logger.connection import ConnectionManager
from amqp_logger.domain.protocols import BrokerClient
from amqp_logger.domain.types import ConnectionState
from amqp_logger.errors import ConnectionFailure
from amqp_logger.logger import get_logger
from .consumer import MessageConsumer
from .transformer import MessageTransformer

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class ServiceComponents:
    """Everything the running service is made of."""

    config: AppConfig
    logger: object
    connection_manager: ConnectionManager
    transformer: MessageTransformer
    consumer: MessageConsumer


def create_components(config: AppConfig, client: Optional[BrokerClient] = None) -> ServiceComponents:
    """
    Build the service components from a configuration.

    Args:
        config: Validated configuration
        client: Broker client (defaults to aio-pika)

    Returns:
        ServiceComponents wired together
    """
    logger = get_logger("service")

    connection_manager = ConnectionManager(
        config.connection_options(),
        client=client,
        logger=logger,
    )
    transformer = MessageTransformer(default_labels=config.default_labels)
    consumer = MessageConsumer(
        queue_name=config.queue_name,
        prefetch_count=config.prefetch_count,
        connection_manager=connection_manager,
        transformer=transformer,
        dead_letter=config.dead_letter,
        logger=logger,
    )

    return ServiceComponents(
        config=config,
        logger=logger,
        connection_manager=connection_manager,
        transformer=transformer,
        consumer=consumer,
    )


async def start_service(components: ServiceComponents) -> None:
    """Connect to the broker and start consuming."""
    components.logger.info("Starting AMQP logger service")

    await components.connection_manager.connect()
    await components.consumer.start()

    components.logger.info("AMQP logger service started")


async def stop_service(components: ServiceComponents) -> None:
    """Stop consuming and disconnect from the broker."""
    components.logger.info("Stopping AMQP logger service")

    await components.consumer.stop()
    await components.connection_manager.disconnect()

    components.logger.info("AMQP logger service stopped")


async def run_service(
    components: ServiceComponents,
    shutdown_event: Optional[asyncio.Event] = None,
    install_signal_handlers: bool = True,
) -> int:
    """
    Run the service until a shutdown signal or a lost connection.

    Signal handlers are installed before connecting, so a signal received
    while connect attempts are still being retried stops the service cleanly.

    Args:
        components: Service components
        shutdown_event: Event that stops the service when set (created if None)
        install_signal_handlers: Stop on SIGINT/SIGTERM

    Returns:
        Process exit code: 0 after a requested shutdown, 1 when the service
        could not start or lost its broker connection
    """
    logger = components.logger
    shutdown_event = shutdown_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    if install_signal_handlers:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, _request_shutdown, logger, shutdown_event, sig)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handlers not supported for {sig.name}")

    try:
        return await _serve(components, shutdown_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _serve(components: ServiceComponents, shutdown_event: asyncio.Event) -> int:
    logger = components.logger
    stopping = False
    connection_lost = False

    try:
        started = await _start_unless_shutdown(components, shutdown_event)
    except ConnectionFailure as e:
        logger.bind(error=str(e), attempts=e.attempts, last_error=e.last_error).error("Failed to start service")
        await components.connection_manager.disconnect()
        return 1
    except Exception as e:
        logger.bind(error=str(e)).error("Failed to start service")
        await stop_service(components)
        return 1

    if not started:
        logger.info("Shutdown requested during startup")
        await stop_service(components)
        return 0

    def on_state_change(state: ConnectionState) -> None:
        nonlocal connection_lost
        if state == ConnectionState.DISCONNECTED and not stopping:
            logger.error("Broker connection lost, shutting down")
            connection_lost = True
            shutdown_event.set()

    components.connection_manager.on_state_change(on_state_change)

    try:
        await shutdown_event.wait()
    finally:
        stopping = True
        await stop_service(components)

    return 1 if connection_lost else 0


async def _start_unless_shutdown(components: ServiceComponents, shutdown_event: asyncio.Event) -> bool:
    """Start the service, giving up when shutdown is requested first.

    Returns:
        True if the service started, False if startup was abandoned
    """
    start = asyncio.ensure_future(start_service(components))
    shutdown = asyncio.ensure_future(shutdown_event.wait())
    try:
        await asyncio.wait({start, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        start.cancel()
        raise
    finally:
        shutdown.cancel()

    if start.done():
        start.result()
        return True

    # interrupts a pending backoff sleep; the manager ends DISCONNECTED
    start.cancel()
    try:
        await start
    except asyncio.CancelledError:
        pass
    return False


def _request_shutdown(logger, shutdown_event: asyncio.Event, sig: signal.Signals) -> None:
    if shutdown_event.is_set():
        return
    logger.bind(signal=sig.name).info("Received shutdown signal")
    shutdown_event.set()
