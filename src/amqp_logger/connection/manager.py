"""Connection manager owning the broker connection and its channel."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from amqp_logger.domain.protocols import BrokerChannel, BrokerClient, BrokerConnection
from amqp_logger.domain.types import ConnectionState, StateChangeCallback
from amqp_logger.errors import ConfigurationError, ConnectionFailure, NotConnected
from amqp_logger.logger import get_logger
from .lifecycle import StateNotifier
from .reconnect import ExponentialBackoff

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ConnectionOptions:
    """Explicit connection settings for a ConnectionManager."""

    url: str
    reconnect_attempts: int = 5
    reconnect_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ConfigurationError("Broker URL must not be empty", "url")
        if self.reconnect_attempts < 1:
            raise ConfigurationError(
                "reconnect_attempts must be a positive integer",
                "reconnect_attempts",
                {"provided": self.reconnect_attempts},
            )
        if self.reconnect_delay_ms <= 0:
            raise ConfigurationError(
                "reconnect_delay_ms must be a positive integer",
                "reconnect_delay_ms",
                {"provided": self.reconnect_delay_ms},
            )


class ConnectionManager:
    """
    Owns at most one broker connection and at most one channel derived from it.

    The manager coordinates:
    - Connection state (disconnected, connecting, connected) with observers
    - Bounded retry with exponential backoff during ``connect()``
    - Lazy channel creation shared by all callers
    - Detection of broker-initiated connection and channel closure

    A connection lost after ``connect()`` returned is not re-established by the
    manager. Callers observe the transition to DISCONNECTED through
    ``on_state_change`` and decide whether to call ``connect()`` again.

    The manager is not safe for concurrent ``connect``/``disconnect``/
    ``get_channel`` calls; a single task is expected to drive it.
    """

    def __init__(
        self,
        options: ConnectionOptions,
        client: Optional[BrokerClient] = None,
        logger=None,
        sleep: Optional[SleepFn] = None,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        """
        Initialize connection manager.

        Args:
            options: Broker URL and retry settings
            client: Broker client used to open connections (defaults to aio-pika)
            logger: Parent loguru logger (defaults to the service logger)
            sleep: Coroutine function used to wait between attempts, in seconds
            on_state_change: Optional first state observer
        """
        if client is None:
            from amqp_logger.infrastructure.amqp import AioPikaClient

            client = AioPikaClient()

        self._options = options
        self._client = client
        self._backoff = ExponentialBackoff(
            max_attempts=options.reconnect_attempts,
            initial_delay_ms=options.reconnect_delay_ms,
        )
        self._sleep = sleep or asyncio.sleep
        self._notifier = StateNotifier(on_state_change=on_state_change)
        self._logger = (logger or get_logger("connection.manager")).bind(component="ConnectionManager")

        self._connection: Optional[BrokerConnection] = None
        self._channel: Optional[BrokerChannel] = None
        self._shutting_down = False

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._notifier.state

    @property
    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._notifier.is_connected and self._connection is not None

    @property
    def options(self) -> ConnectionOptions:
        """Get the connection settings."""
        return self._options

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """
        Register a state observer.

        Args:
            callback: Called synchronously with the new state on every change
        """
        self._notifier.subscribe(callback)

    async def connect(self) -> None:
        """
        Connect to the broker, retrying with exponential backoff.

        Does nothing when already connected.

        Raises:
            ConnectionFailure: If every attempt failed, or if ``disconnect()``
                was called before an attempt succeeded
        """
        if self.state == ConnectionState.CONNECTED:
            return

        self._shutting_down = False
        self._notifier.set_state(ConnectionState.CONNECTING)

        max_attempts = self._backoff.max_attempts
        last_error: Optional[BaseException] = None
        attempts_made = 0

        try:
            for attempt in range(max_attempts):
                if self._shutting_down:
                    break

                attempts_made += 1
                self._logger.bind(attempt=attempt + 1, max_attempts=max_attempts).info("Connecting to broker")

                try:
                    connection = await self._client.connect(self._options.url)
                except Exception as e:
                    last_error = e
                    self._logger.bind(attempt=attempt + 1, error=str(e)).warning("Connection attempt failed")

                    if self._backoff.has_next(attempt) and not self._shutting_down:
                        delay_ms = self._backoff.calculate_delay(attempt)
                        self._logger.bind(delay_ms=delay_ms).info("Waiting before retry")
                        await self._sleep(delay_ms / 1000)
                    continue

                if self._shutting_down:
                    self._logger.info("Shutdown requested while connecting, discarding connection")
                    await self._close_quietly(connection)
                    break

                self._connection = connection
                self._setup_connection_handlers(connection)
                self._notifier.set_state(ConnectionState.CONNECTED)
                self._logger.info("Connected to broker")
                return

        except asyncio.CancelledError:
            self._logger.info("Connect cancelled")
            self._notifier.set_state(ConnectionState.DISCONNECTED)
            raise

        self._notifier.set_state(ConnectionState.DISCONNECTED)
        last_message = str(last_error) if last_error is not None else None

        if self._shutting_down:
            raise ConnectionFailure(
                attempts_made,
                last_message,
                message=f"Connect aborted by shutdown after {attempts_made} attempts",
            )

        self._logger.bind(attempts=max_attempts, last_error=last_message).error("Giving up connecting to broker")
        raise ConnectionFailure(max_attempts, last_message)

    async def disconnect(self) -> None:
        """
        Close the channel and the connection.

        Close errors are ignored; the manager always ends DISCONNECTED.
        """
        self._shutting_down = True

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                self._logger.bind(error=str(e)).debug("Ignoring channel close error during shutdown")

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                self._logger.bind(error=str(e)).debug("Ignoring connection close error during shutdown")

        self._notifier.set_state(ConnectionState.DISCONNECTED)
        self._logger.info("Disconnected from broker")

    async def get_channel(self) -> BrokerChannel:
        """
        Get the channel, opening it on first use.

        Returns:
            The same channel instance until it or its connection closes

        Raises:
            NotConnected: If the manager is not connected
        """
        connection = self._connection
        if self.state != ConnectionState.CONNECTED or connection is None:
            raise NotConnected()

        if self._channel is not None:
            return self._channel

        channel = await connection.channel()

        # the connection may have closed while the channel was opening
        if connection is not self._connection:
            await self._close_quietly(channel)
            raise NotConnected("Connection closed while opening channel")

        self._channel = channel
        self._setup_channel_handlers(channel)
        self._logger.debug("Channel opened")
        return channel

    def _setup_connection_handlers(self, connection: BrokerConnection) -> None:
        def on_error(error: BaseException) -> None:
            self._logger.bind(error=str(error)).error("Connection error")

        def on_close() -> None:
            if self._shutting_down or connection is not self._connection:
                return
            self._logger.warning("Connection closed unexpectedly")
            self._channel = None
            self._connection = None
            self._notifier.set_state(ConnectionState.DISCONNECTED)

        connection.on_error(on_error)
        connection.on_close(on_close)

    def _setup_channel_handlers(self, channel: BrokerChannel) -> None:
        def on_error(error: BaseException) -> None:
            self._logger.bind(error=str(error)).error("Channel error")

        def on_close() -> None:
            if self._shutting_down or channel is not self._channel:
                return
            self._logger.warning("Channel closed unexpectedly")
            self._channel = None

        channel.on_error(on_error)
        channel.on_close(on_close)

    async def _close_quietly(self, handle) -> None:
        try:
            await handle.close()
        except Exception as e:
            self._logger.bind(error=str(e)).debug("Ignoring close error")
