"""
Composition root for the inventory service's messaging.

``InventoryMessaging`` wires the connection manager, publisher, consumer,
health monitor, auditor and event handlers together and gives them one
start/stop lifecycle.

Example:
    >>> repository = InMemoryInventoryRepository()
    >>> async with InventoryMessaging(repository, BrokerConfig.from_env()) as messaging:
    ...     print(messaging.status().to_dict())
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from inventorybus.audit import Auditor
from inventorybus.config import BrokerConfig
from inventorybus.connection import ConnectionManager, ConnectionStatus
from inventorybus.consumer import Consumer
from inventorybus.exceptions import BrokerError, ConnectError, ConsumeError
from inventorybus.handlers import InventoryEventHandlers
from inventorybus.monitor import HealthMonitor
from inventorybus.observability import Tracer
from inventorybus.publisher import Publisher
from inventorybus.stores import InventoryRepository
from inventorybus.topology import Exchanges, RoutingKeys, Topology

logger = logging.getLogger(__name__)

# Queue consumed for each order/payment routing key
ORDER_EVENT_QUEUES: dict[str, str] = {
    RoutingKeys.ORDER_CREATED: "inventory.order.created",
    RoutingKeys.ORDER_CANCELLED: "inventory.order.cancelled",
    RoutingKeys.PAYMENT_CONFIRMED: "inventory.payment.confirmed",
    RoutingKeys.PAYMENT_FAILED: "inventory.payment.failed",
}


class InventoryMessaging:
    """
    Messaging for the inventory service.

    ``start()`` never fails because the broker is down: the service then
    runs degraded while the connection manager and health monitor bring the
    connection back, and consumers are attached once it is up.

    Args:
        repository: Inventory item storage used by the handlers
        config: Broker settings. Defaults to ``BrokerConfig()``.
        topology: Exchanges and queues to assert. Defaults to the
            inventory topology.
        tracer: Optional tracer shared by publisher and consumer
    """

    def __init__(
        self,
        repository: InventoryRepository,
        config: BrokerConfig | None = None,
        *,
        topology: Topology | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or BrokerConfig()
        self.manager = ConnectionManager(self._config, topology)
        self.publisher = Publisher(self.manager, tracer=tracer)
        self.consumer = Consumer(self.manager, tracer=tracer)
        self.monitor = HealthMonitor(self.manager)
        self.auditor = Auditor(self.publisher)
        self.handlers = InventoryEventHandlers(
            repository,
            self.publisher,
            auditor=self.auditor,
            low_stock_threshold=self._config.low_stock_threshold,
        )
        self._running = False

    @property
    def config(self) -> BrokerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    def routes(self) -> list[tuple[str, str, Callable[[Any], Awaitable[None]]]]:
        """Get ``(routing_key, queue_name, handler)`` for every consumed event."""
        handlers = {
            RoutingKeys.ORDER_CREATED: self.handlers.handle_order_created,
            RoutingKeys.ORDER_CANCELLED: self.handlers.handle_order_cancelled,
            RoutingKeys.PAYMENT_CONFIRMED: self.handlers.handle_payment_confirmed,
            RoutingKeys.PAYMENT_FAILED: self.handlers.handle_payment_failed,
        }
        return [
            (routing_key, queue_name, handlers[routing_key])
            for routing_key, queue_name in ORDER_EVENT_QUEUES.items()
        ]

    async def start(self) -> None:
        """Connect, attach the order and payment consumers and start the monitor."""
        if self._running:
            return

        try:
            await self.manager.connect()
        except ConnectError as e:
            logger.warning(
                f"Starting without a broker connection: {e}",
                extra={"amqp_url": self._config.safe_url, "error": str(e)},
            )

        for routing_key, queue_name, handler in self.routes():
            try:
                await self.consumer.consume(Exchanges.ORDERS, routing_key, queue_name, handler)
            except ConsumeError as e:
                logger.warning(
                    f"Consumer for {queue_name} not started, it will be attached on reconnect: {e}",
                    extra={"queue": queue_name, "routing_key": routing_key, "error": str(e)},
                )

        self.monitor.start()
        self._running = True
        logger.info(
            "Inventory messaging started",
            extra={
                "connected": self.manager.is_connected,
                "queues": list(ORDER_EVENT_QUEUES.values()),
            },
        )

    async def stop(self) -> None:
        """Stop the monitor and consumers and close the connection, best effort."""
        await self.monitor.stop()
        await self.consumer.stop()
        try:
            await self.manager.close()
        except BrokerError as e:
            logger.warning(f"Error closing broker connection: {e}", extra={"error": str(e)})
        self._running = False
        logger.info("Inventory messaging stopped")

    async def __aenter__(self) -> InventoryMessaging:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.stop()

    def status(self) -> ConnectionStatus:
        return self.manager.status()

    def health(self) -> dict[str, Any]:
        """Health report for the HTTP health route."""
        status = self.manager.status()
        subscriptions = [
            {
                "queue": subscription.queue_name,
                "routingKey": subscription.routing_key,
                "active": subscription.is_active,
                "processed": subscription.processed,
                "failed": subscription.failed,
                "deadLettered": subscription.dead_lettered,
            }
            for subscription in self.consumer.subscriptions
        ]
        healthy = status.is_connected and all(s["active"] for s in subscriptions)
        return {
            "status": "healthy" if healthy else "degraded",
            "broker": status.to_dict(),
            "subscriptions": subscriptions,
            "published": self.publisher.published_count,
            "auditFailures": self.auditor.failed_count,
        }


__all__ = ["InventoryMessaging", "ORDER_EVENT_QUEUES"]
