"""Queue consumption with acknowledgement, bounded redelivery and dead-lettering.

Each subscription binds a queue to an exchange and runs one background task
iterating the queue, so callbacks for a queue run one at a time in arrival
order. A delivery is acknowledged when its body decodes and the callback
returns normally. Otherwise it is requeued until it has been attempted
``max_redeliveries`` extra times, after which it is moved to the dead letter
queue ``<queue>.dlq`` with ``x-dlq-*`` headers describing the failure.

Example:
    >>> consumer = Consumer(manager)
    >>> async def on_order_created(message: dict) -> None:
    ...     print(message["orderId"])
    >>> await consumer.consume(
    ...     "orders.events", "order.created", "inventory.order.created", on_order_created
    ... )
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import inspect
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractIncomingMessage, AbstractQueue
from opentelemetry.propagate import extract
from opentelemetry.trace import Status, StatusCode

from inventorybus.exceptions import BrokerError, ConsumeError
from inventorybus.observability import (
    ATTR_DELIVERY_ATTEMPT,
    ATTR_DELIVERY_OUTCOME,
    ATTR_ERROR_TYPE,
    ATTR_HANDLER_NAME,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from inventorybus.serialization import decode_payload
from inventorybus.topology import QueueSpec, dead_letter_queue_name

if TYPE_CHECKING:
    from inventorybus.connection import ConnectionManager

logger = logging.getLogger(__name__)

DeliveryCallback = Callable[[Any], Awaitable[None] | None]

# Upper bound on deliveries whose attempt count is tracked in memory
MAX_TRACKED_DELIVERIES = 10_000


@dataclass
class InboundDelivery:
    """A broker delivery held by the consumer until it is settled."""

    payload: bytes
    delivery_tag: int | None
    message_id: str | None
    routing_key: str | None
    redelivered: bool
    headers: dict[str, Any]
    message: AbstractIncomingMessage = field(repr=False)

    @classmethod
    def from_message(cls, message: AbstractIncomingMessage) -> InboundDelivery:
        return cls(
            payload=message.body,
            delivery_tag=message.delivery_tag,
            message_id=message.message_id,
            routing_key=message.routing_key,
            redelivered=bool(message.redelivered),
            headers=dict(message.headers or {}),
            message=message,
        )

    @property
    def tracking_key(self) -> str:
        """Identity used to count attempts across redeliveries."""
        if self.message_id:
            return self.message_id
        digest = hashlib.sha256(self.payload)
        digest.update((self.routing_key or "").encode("utf-8"))
        return digest.hexdigest()


@dataclass
class Subscription:
    """A queue bound to ``exchange`` with ``routing_key`` and its callback."""

    exchange: str
    routing_key: str
    queue_name: str
    callback: DeliveryCallback
    task: asyncio.Task[None] | None = field(default=None, repr=False)
    processed: int = 0
    failed: int = 0
    dead_lettered: int = 0

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def handler_name(self) -> str:
        return getattr(self.callback, "__qualname__", None) or repr(self.callback)


class Consumer:
    """Registers queue subscriptions and settles their deliveries.

    Subscriptions survive reconnects: the consumer registers itself as a
    connected listener on the manager and restarts every subscription after
    each successful connect.

    Args:
        manager: Connection manager providing the channel.
        tracer: Optional tracer. Created from the manager's config if omitted.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        self._manager = manager
        self._config = manager.config
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._subscriptions: dict[str, Subscription] = {}
        self._attempts: OrderedDict[tuple[str, str], int] = OrderedDict()
        self._stopping = False

        manager.add_connected_listener(self.restore)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def get_subscription(self, queue_name: str) -> Subscription | None:
        return self._subscriptions.get(queue_name)

    async def consume(
        self,
        exchange: str,
        routing_key: str,
        queue_name: str,
        callback: DeliveryCallback,
    ) -> Subscription:
        """Bind ``queue_name`` to ``exchange`` and start delivering to ``callback``.

        The subscription is registered before the broker is contacted, so if
        this raises it is still started automatically after the next
        successful connect.

        Args:
            exchange: Exchange to bind to.
            routing_key: Binding key (topic wildcards allowed).
            queue_name: Durable queue to declare and consume from.
            callback: Called with each decoded message body, sync or async.
                Raising makes the delivery count as failed.

        Raises:
            ValueError: If an argument is empty or the queue is already consumed
            ConsumeError: If the connection or queue setup failed
        """
        if not exchange or not routing_key or not queue_name:
            raise ValueError("exchange, routing_key and queue_name must not be empty")
        if queue_name in self._subscriptions:
            raise ValueError(f"Already consuming from {queue_name}")

        subscription = Subscription(
            exchange=exchange,
            routing_key=routing_key,
            queue_name=queue_name,
            callback=callback,
        )
        self._subscriptions[queue_name] = subscription
        self._stopping = False

        if not self._manager.is_connected:
            try:
                await self._manager.connect()
            except BrokerError as e:
                raise ConsumeError(queue_name, str(e)) from e

        # A successful connect above restores subscriptions, this one included
        if not subscription.is_active:
            if self._manager.channel is None:
                raise ConsumeError(queue_name, "broker connection is not available")
            try:
                await self._start(subscription)
            except Exception as e:
                raise ConsumeError(queue_name, str(e)) from e

        return subscription

    async def restore(self) -> None:
        """Restart every subscription on the current channel."""
        if self._stopping:
            return

        for subscription in list(self._subscriptions.values()):
            await self._cancel(subscription)
            try:
                await self._start(subscription)
            except Exception as e:
                logger.error(
                    f"Failed to restore subscription {subscription.queue_name}: {e}",
                    exc_info=True,
                    extra={
                        "queue": subscription.queue_name,
                        "exchange": subscription.exchange,
                        "routing_key": subscription.routing_key,
                        "error": str(e),
                    },
                )

    async def stop(self) -> None:
        """Cancel all consumer loops. Subscriptions stay registered."""
        self._stopping = True
        for subscription in list(self._subscriptions.values()):
            await self._cancel(subscription)
        logger.info(
            "Stopped consuming",
            extra={"queues": list(self._subscriptions)},
        )

    # =========================================================================
    # Loop
    # =========================================================================

    def _queue_arguments(self, queue_name: str) -> dict[str, Any]:
        if not self._config.enable_dlq:
            return {}
        return {
            "x-dead-letter-exchange": self._config.dlq_exchange,
            "x-dead-letter-routing-key": queue_name,
        }

    async def _start(self, subscription: Subscription) -> None:
        queue = await self._manager.declare_queue(
            QueueSpec(
                name=subscription.queue_name,
                bindings=((subscription.exchange, subscription.routing_key),),
                arguments=self._queue_arguments(subscription.queue_name),
            )
        )

        if self._config.enable_dlq:
            await self._manager.declare_queue(
                QueueSpec(
                    name=dead_letter_queue_name(subscription.queue_name),
                    bindings=((self._config.dlq_exchange, subscription.queue_name),),
                )
            )

        subscription.task = asyncio.get_running_loop().create_task(
            self._consume_loop(subscription, queue),
            name=f"inventorybus-consumer-{subscription.queue_name}",
        )

    async def _cancel(self, subscription: Subscription) -> None:
        task = subscription.task
        subscription.task = None
        # A loop restoring its own subscription (handler -> publish -> connect)
        # ends by itself once its old channel is gone
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _consume_loop(self, subscription: Subscription, queue: AbstractQueue) -> None:
        log_extra = {
            "queue": subscription.queue_name,
            "exchange": subscription.exchange,
            "routing_key": subscription.routing_key,
            "handler": subscription.handler_name,
        }
        logger.info(f"Consuming from {subscription.queue_name}", extra=log_extra)

        try:
            async with queue.iterator() as queue_iter:
                async for message in queue_iter:
                    await self._process_message(subscription, message)
        except asyncio.CancelledError:
            logger.info(f"Consumer loop for {subscription.queue_name} cancelled", extra=log_extra)
            raise
        except Exception as e:
            logger.error(
                f"Consumer loop for {subscription.queue_name} stopped: {e}",
                exc_info=True,
                extra={**log_extra, "error": str(e), "error_type": type(e).__name__},
            )
        finally:
            logger.debug(
                f"Consumer loop for {subscription.queue_name} exited",
                extra={
                    **log_extra,
                    "processed": subscription.processed,
                    "failed": subscription.failed,
                },
            )

    async def _process_message(
        self,
        subscription: Subscription,
        message: AbstractIncomingMessage,
    ) -> str:
        """Run the callback for one delivery and settle it.

        Returns:
            The outcome: "ack", "requeue", "dead_letter" or "reject".
        """
        delivery = InboundDelivery.from_message(message)
        attempt = self._delivery_attempt(subscription, delivery)

        span = None
        if self._tracer.enabled:
            span = self._tracer.start_span(
                "inventorybus.consume",
                kind=SpanKindEnum.CONSUMER,
                attributes={
                    ATTR_MESSAGING_SYSTEM: "rabbitmq",
                    ATTR_MESSAGING_DESTINATION: subscription.queue_name,
                    ATTR_MESSAGING_OPERATION: "process",
                    ATTR_MESSAGING_ROUTING_KEY: delivery.routing_key or "",
                    ATTR_MESSAGING_MESSAGE_ID: delivery.message_id or "",
                    ATTR_HANDLER_NAME: subscription.handler_name,
                    ATTR_DELIVERY_ATTEMPT: attempt,
                },
                context=extract(delivery.headers),
            )

        try:
            try:
                payload = decode_payload(delivery.payload)
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                subscription.failed += 1
                if span is not None:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                outcome = await self._handle_failure(subscription, delivery, e, attempt)
            else:
                await message.ack()
                self._forget(subscription, delivery)
                subscription.processed += 1
                outcome = "ack"
                logger.debug(
                    f"Processed delivery from {subscription.queue_name}",
                    extra={
                        "queue": subscription.queue_name,
                        "message_id": delivery.message_id,
                        "routing_key": delivery.routing_key,
                        "attempt": attempt,
                    },
                )

            if span is not None:
                span.set_attribute(ATTR_DELIVERY_OUTCOME, outcome)
            return outcome
        finally:
            if span is not None:
                span.end()

    # =========================================================================
    # Failure handling
    # =========================================================================

    async def _handle_failure(
        self,
        subscription: Subscription,
        delivery: InboundDelivery,
        error: Exception,
        attempt: int,
    ) -> str:
        max_redeliveries = self._config.max_redeliveries
        log_extra: dict[str, Any] = {
            "queue": subscription.queue_name,
            "message_id": delivery.message_id,
            "routing_key": delivery.routing_key,
            "attempt": attempt,
            "max_redeliveries": max_redeliveries,
            "error": str(error),
            "error_type": type(error).__name__,
        }

        if max_redeliveries is None or attempt <= max_redeliveries:
            await delivery.message.nack(requeue=True)
            logger.warning(
                f"Delivery from {subscription.queue_name} failed, requeued: {error}",
                exc_info=True,
                extra=log_extra,
            )
            return "requeue"

        self._forget(subscription, delivery)

        if self._config.enable_dlq and self._manager.dlq_exchange is not None:
            try:
                await self._dead_letter(subscription, delivery, error, attempt)
            except Exception as e:
                # Still unsettled, so put it back instead of losing it
                await delivery.message.nack(requeue=True)
                logger.error(
                    f"Failed to dead-letter delivery from {subscription.queue_name}: {e}",
                    exc_info=True,
                    extra={**log_extra, "dlq_error": str(e)},
                )
                return "requeue"
            await delivery.message.ack()
            subscription.dead_lettered += 1
            logger.error(
                f"Delivery from {subscription.queue_name} moved to "
                f"{dead_letter_queue_name(subscription.queue_name)} after {attempt} attempts",
                extra=log_extra,
            )
            return "dead_letter"

        await delivery.message.reject(requeue=False)
        logger.error(
            f"Delivery from {subscription.queue_name} rejected after {attempt} attempts",
            extra=log_extra,
        )
        return "reject"

    async def _dead_letter(
        self,
        subscription: Subscription,
        delivery: InboundDelivery,
        error: Exception,
        attempt: int,
    ) -> None:
        """Publish a failed delivery to the dead letter exchange.

        Headers added:
        - x-dlq-reason: Error message
        - x-dlq-error-type: Exception class name
        - x-dlq-attempts: Number of attempts made
        - x-dlq-timestamp: When the delivery was dead-lettered
        - x-original-exchange / x-original-routing-key / x-original-queue
        """
        dlq_exchange = self._manager.dlq_exchange
        if dlq_exchange is None:
            raise BrokerError("Dead letter exchange not declared")

        headers = dict(delivery.headers)
        headers["x-dlq-reason"] = str(error)
        headers["x-dlq-error-type"] = type(error).__name__
        headers["x-dlq-attempts"] = attempt
        headers["x-dlq-timestamp"] = datetime.now(UTC).isoformat()
        headers["x-original-exchange"] = subscription.exchange
        headers["x-original-routing-key"] = delivery.routing_key or ""
        headers["x-original-queue"] = subscription.queue_name

        await dlq_exchange.publish(
            Message(
                body=delivery.payload,
                content_type=delivery.message.content_type,
                content_encoding=delivery.message.content_encoding,
                delivery_mode=DeliveryMode.PERSISTENT,
                message_id=delivery.message_id,
                headers=headers,
            ),
            routing_key=subscription.queue_name,
        )

    def _delivery_attempt(self, subscription: Subscription, delivery: InboundDelivery) -> int:
        """Get the 1-based attempt number of a delivery.

        Quorum queues report prior deliveries in ``x-delivery-count``. For
        classic queues attempts are counted in memory per queue and tracking
        key, so a message routed to several queues is counted once per queue.
        """
        delivery_count = delivery.headers.get("x-delivery-count")
        if delivery_count is not None:
            return int(str(delivery_count)) + 1

        key = (subscription.queue_name, delivery.tracking_key)
        attempt = self._attempts.pop(key, 0) + 1
        self._attempts[key] = attempt
        while len(self._attempts) > MAX_TRACKED_DELIVERIES:
            self._attempts.popitem(last=False)
        return attempt

    def _forget(self, subscription: Subscription, delivery: InboundDelivery) -> None:
        self._attempts.pop((subscription.queue_name, delivery.tracking_key), None)


__all__ = [
    "Consumer",
    "DeliveryCallback",
    "InboundDelivery",
    "MAX_TRACKED_DELIVERIES",
    "Subscription",
]
