"""Reconnecting broker connection manager built on aio-pika.

The ``ConnectionManager`` owns the single AMQP connection and channel of the
process. It asserts the broker topology on every connect, listens for
connection and channel close notifications, and retries failed connects with
a linear backoff (``reconnect_base_delay * attempt``) up to
``max_reconnect_attempts``. Past that cap the manager stays disconnected
until an external trigger (see ``inventorybus.monitor.HealthMonitor``) calls
``connect()`` again.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED        on a connection or channel close
    CONNECTING -> DISCONNECTED       on connect failure, then reconnect

Example:
    >>> from inventorybus.config import BrokerConfig
    >>> from inventorybus.connection import ConnectionManager
    >>>
    >>> manager = ConnectionManager(BrokerConfig(amqp_url="amqp://localhost/"))
    >>> async with manager:
    ...     print(manager.status().to_dict())
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aio_pika
from aio_pika import ExchangeType
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractQueue,
)

from inventorybus.config import BrokerConfig
from inventorybus.exceptions import BrokerError, ConnectError, ShutdownError
from inventorybus.topology import (
    DEFAULT_OPTIONS,
    DEFAULT_TOPOLOGY,
    DeclareOptions,
    ExchangeSpec,
    QueueSpec,
    Topology,
)

logger = logging.getLogger(__name__)

ConnectedListener = Callable[[], Awaitable[None]]


class ConnectionPhase(Enum):
    """Lifecycle phase of the broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ConnectionState:
    """Mutable connection state, owned by ``ConnectionManager``.

    Attributes:
        phase: Current lifecycle phase.
        reconnect_attempts: Consecutive failed attempts since the last
            successful connect.
        last_error: Message of the most recent connect or transport failure.
    """

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    reconnect_attempts: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class ConnectionStatus:
    """Read-only snapshot of the connection for health endpoints."""

    is_connected: bool
    is_connecting: bool
    reconnect_attempts: int
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the status with the camelCase keys used by the HTTP layer."""
        return {
            "isConnected": self.is_connected,
            "isConnecting": self.is_connecting,
            "reconnectAttempts": self.reconnect_attempts,
            "lastError": self.last_error,
        }


class ConnectionManager:
    """Owns the broker connection and channel and keeps them alive.

    Only one connect sequence runs at a time. A ``connect()`` call made while
    another is in flight returns the current status without opening a second
    connection. Publishers and consumers read ``channel`` and use the
    ``declare_*`` helpers but never replace the connection themselves.

    Example:
        >>> manager = ConnectionManager(config)
        >>> manager.add_connected_listener(consumer.restore)
        >>> await manager.connect()
        >>> manager.status().is_connected
        True
    """

    def __init__(
        self,
        config: BrokerConfig | None = None,
        topology: Topology | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Broker settings. Defaults to ``BrokerConfig()``.
            topology: Exchanges and queues asserted on every connect.
                Defaults to ``DEFAULT_TOPOLOGY``.
        """
        self._config = config or BrokerConfig()
        self._topology = topology or DEFAULT_TOPOLOGY
        self._state = ConnectionState()

        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchanges: dict[str, AbstractExchange] = {}
        self._dlq_exchange: AbstractExchange | None = None

        self._lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._listeners: list[ConnectedListener] = []
        self._shutdown = False

    @property
    def config(self) -> BrokerConfig:
        return self._config

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def state(self) -> ConnectionState:
        """A copy of the current connection state."""
        return dataclasses.replace(self._state)

    @property
    def channel(self) -> AbstractChannel | None:
        """The current channel, or None when disconnected."""
        if self._channel is None or self._channel.is_closed:
            return None
        return self._channel

    @property
    def dlq_exchange(self) -> AbstractExchange | None:
        return self._dlq_exchange

    @property
    def is_connected(self) -> bool:
        return (
            self._state.phase is ConnectionPhase.CONNECTED
            and self._connection is not None
            and not self._connection.is_closed
        )

    @property
    def is_connecting(self) -> bool:
        return self._state.phase is ConnectionPhase.CONNECTING

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def status(self) -> ConnectionStatus:
        """Snapshot the connection status. Has no side effects."""
        return ConnectionStatus(
            is_connected=self.is_connected,
            is_connecting=self.is_connecting,
            reconnect_attempts=self._state.reconnect_attempts,
            last_error=self._state.last_error,
        )

    def add_connected_listener(self, listener: ConnectedListener) -> None:
        """Register a coroutine function run after every successful connect."""
        self._listeners.append(listener)

    async def connect(self) -> ConnectionStatus:
        """Open the connection and channel and assert the topology.

        Any existing channel and connection are released first. On failure
        the phase returns to DISCONNECTED, a reconnect is scheduled in the
        background and the failure is raised to the caller.

        Returns:
            The connection status after the attempt, or the current status
            if another attempt was already in progress.

        Raises:
            ConnectError: If the connection, channel or topology setup fails
            ShutdownError: If the manager has been closed
        """
        if self._shutdown:
            raise ShutdownError()

        if self._lock.locked():
            logger.debug("Connection attempt already in progress, skipping")
            return self.status()

        async with self._lock:
            self._state.phase = ConnectionPhase.CONNECTING
            await self._release()

            try:
                await self._open()
            except Exception as e:
                self._state.phase = ConnectionPhase.DISCONNECTED
                self._state.last_error = str(e) or type(e).__name__
                logger.error(
                    f"Failed to connect to RabbitMQ: {e}",
                    exc_info=True,
                    extra={
                        "amqp_url": self._config.safe_url,
                        "reconnect_attempts": self._state.reconnect_attempts,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await self._release()
                if self._reconnect_pending():
                    # The pending retry stays scheduled; this failure still counts
                    self._state.reconnect_attempts += 1
                self._schedule_reconnect()
                raise ConnectError(self._config.safe_url, self._state.last_error) from e

            self._state.phase = ConnectionPhase.CONNECTED
            self._state.reconnect_attempts = 0
            self._state.last_error = None
            self._cancel_pending_reconnect()

            logger.info(
                "Connected to RabbitMQ and asserted topology",
                extra={
                    "amqp_url": self._config.safe_url,
                    "connection_name": self._config.connection_name,
                    "exchanges": self._topology.exchange_names,
                    "dlq_enabled": self._config.enable_dlq,
                },
            )

        if not self._shutdown:
            await self._notify_connected()
        return self.status()

    async def reconnect(self) -> None:
        """Wait out the backoff for the next attempt, then connect.

        Does nothing once ``max_reconnect_attempts`` consecutive attempts have
        failed; a later external ``connect()`` starts a new cycle. Skips the
        attempt when something else has connected in the meantime.
        """
        if self._shutdown or self.is_connected:
            return

        max_attempts = self._config.max_reconnect_attempts
        if self._state.reconnect_attempts >= max_attempts:
            logger.error(
                f"Giving up on automatic reconnection after {max_attempts} attempts",
                extra={
                    "amqp_url": self._config.safe_url,
                    "reconnect_attempts": self._state.reconnect_attempts,
                    "last_error": self._state.last_error,
                },
            )
            return

        self._state.reconnect_attempts += 1
        attempt = self._state.reconnect_attempts
        delay = self._config.backoff_delay(attempt)

        logger.info(
            f"Reconnecting to RabbitMQ in {delay:.1f}s (attempt {attempt}/{max_attempts})",
            extra={
                "reconnect_attempts": attempt,
                "max_reconnect_attempts": max_attempts,
                "delay_seconds": delay,
            },
        )
        await asyncio.sleep(delay)

        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        if self._shutdown:
            return
        if self.is_connected:
            logger.debug(
                f"Skipping reconnect attempt {attempt}, already connected",
                extra={"reconnect_attempts": attempt},
            )
            return

        try:
            await self.connect()
        except ConnectError as e:
            logger.debug(
                f"Reconnect attempt {attempt} failed",
                extra={"reconnect_attempts": attempt, "error": str(e)},
            )

    async def close(self) -> None:
        """Tear down the channel and connection.

        Waits for an in-flight connect to finish, cancels a pending reconnect
        and closes everything best-effort. Close errors are logged, not raised.
        The manager cannot be reconnected afterwards.
        """
        self._shutdown = True

        async with self._lock:
            task = self._reconnect_task
            self._reconnect_task = None
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            await self._release()
            self._state.phase = ConnectionPhase.DISCONNECTED

        logger.info(
            "Closed RabbitMQ connection",
            extra={"amqp_url": self._config.safe_url},
        )

    async def __aenter__(self) -> ConnectionManager:
        """Connect on entry. A failed connect leaves the reconnect cycle running."""
        try:
            await self.connect()
        except ConnectError:
            logger.warning(
                "Starting without a broker connection, reconnect scheduled",
                extra={"amqp_url": self._config.safe_url},
            )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # =========================================================================
    # Topology
    # =========================================================================

    async def declare_exchange(
        self,
        name: str,
        options: DeclareOptions | None = None,
    ) -> AbstractExchange:
        """Declare an exchange on the current channel, cached per connection.

        Exchanges from the topology keep their configured type and options;
        others are declared as topic exchanges with ``options``.

        Raises:
            BrokerError: If there is no open channel
        """
        cached = self._exchanges.get(name)
        if cached is not None:
            return cached

        if self._topology.has_exchange(name):
            spec = self._topology.exchange(name)
        else:
            spec = ExchangeSpec(name, options=options or DEFAULT_OPTIONS)

        channel = self._require_channel()
        exchange = await channel.declare_exchange(
            name=spec.name,
            type=ExchangeType(spec.type),
            durable=spec.options.durable,
            auto_delete=spec.options.auto_delete,
        )
        self._exchanges[name] = exchange

        logger.debug(
            f"Declared exchange: {spec.name}",
            extra={
                "exchange_name": spec.name,
                "exchange_type": spec.type,
                "durable": spec.options.durable,
                "auto_delete": spec.options.auto_delete,
            },
        )
        return exchange

    async def declare_queue(self, spec: QueueSpec) -> AbstractQueue:
        """Declare a queue and bind it to each of its ``(exchange, key)`` pairs.

        Raises:
            BrokerError: If there is no open channel
        """
        channel = self._require_channel()
        queue = await channel.declare_queue(
            name=spec.name,
            durable=spec.options.durable,
            exclusive=spec.options.exclusive,
            auto_delete=spec.options.auto_delete,
            arguments=dict(spec.arguments) or None,
        )

        for exchange_name, routing_key in spec.bindings:
            exchange = await self.declare_exchange(exchange_name)
            await queue.bind(exchange, routing_key=routing_key)

        logger.debug(
            f"Declared queue: {spec.name}",
            extra={
                "queue_name": spec.name,
                "bindings": [list(binding) for binding in spec.bindings],
                "durable": spec.options.durable,
            },
        )
        return queue

    async def _assert_topology(self) -> None:
        for exchange_spec in self._topology.exchanges:
            await self.declare_exchange(exchange_spec.name)

        if self._config.enable_dlq:
            channel = self._require_channel()
            self._dlq_exchange = await channel.declare_exchange(
                name=self._config.dlq_exchange,
                type=ExchangeType.DIRECT,
                durable=True,
            )
            self._exchanges[self._config.dlq_exchange] = self._dlq_exchange

        for queue_spec in self._topology.queues:
            await self.declare_queue(queue_spec)

    # =========================================================================
    # Connection internals
    # =========================================================================

    async def _open(self) -> None:
        connection = await aio_pika.connect(
            self._config.amqp_url,
            heartbeat=self._config.heartbeat,
            client_properties={"connection_name": self._config.connection_name},
        )
        self._connection = connection
        # aio-pika's callback type hints don't match plain (sender, exc) callables
        connection.close_callbacks.add(self._on_connection_close)  # type: ignore[arg-type]

        channel = await connection.channel()
        self._channel = channel
        channel.close_callbacks.add(self._on_channel_close)  # type: ignore[arg-type]

        await channel.set_qos(prefetch_count=self._config.prefetch_count)
        await self._assert_topology()

    async def _release(self) -> None:
        """Close and forget the current channel and connection, ignoring errors."""
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        self._exchanges.clear()
        self._dlq_exchange = None

        if channel is not None and not channel.is_closed:
            try:
                await channel.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing channel: {e}")

        if connection is not None and not connection.is_closed:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing connection: {e}")

    def _require_channel(self) -> AbstractChannel:
        channel = self.channel
        if channel is None:
            raise BrokerError("No open channel")
        return channel

    def _reconnect_pending(self) -> bool:
        task = self._reconnect_task
        return task is not None and not task.done() and task is not asyncio.current_task()

    def _schedule_reconnect(self) -> None:
        if self._shutdown:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self.reconnect(),
            name="inventorybus-reconnect",
        )

    def _cancel_pending_reconnect(self) -> None:
        """Drop a backoff reconnect made redundant by a successful connect."""
        task = self._reconnect_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        self._reconnect_task = None
        task.cancel()
        logger.debug("Cancelled pending reconnect, connection is up")

    async def _notify_connected(self) -> None:
        for listener in list(self._listeners):
            try:
                await listener()
            except Exception as e:
                logger.error(
                    f"Connected listener failed: {e}",
                    exc_info=True,
                    extra={"error": str(e), "error_type": type(e).__name__},
                )

    # =========================================================================
    # Transport notifications
    # =========================================================================

    def _on_connection_close(
        self,
        connection: Any,
        exception: BaseException | None = None,
    ) -> None:
        """Handle a closed connection.

        Closes initiated by ``_release`` are ignored because the connection
        has already been detached from the manager.
        """
        if self._shutdown or connection is not self._connection:
            return
        self._on_transport_lost("connection", exception)

    def _on_channel_close(
        self,
        channel: Any,
        exception: BaseException | None = None,
    ) -> None:
        if self._shutdown or channel is not self._channel:
            return
        self._on_transport_lost("channel", exception)

    def _on_transport_lost(self, source: str, exception: BaseException | None) -> None:
        # A connect in progress owns the state and reports its own failure
        if self._lock.locked():
            return

        self._state.phase = ConnectionPhase.DISCONNECTED
        self._state.last_error = str(exception) if exception else f"{source} closed"

        logger.warning(
            f"RabbitMQ {source} closed: {self._state.last_error}",
            extra={
                "source": source,
                "error": str(exception) if exception else None,
                "error_type": type(exception).__name__ if exception else None,
                "reconnect_attempts": self._state.reconnect_attempts,
            },
        )
        self._schedule_reconnect()


__all__ = [
    "ConnectedListener",
    "ConnectionManager",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionStatus",
]
