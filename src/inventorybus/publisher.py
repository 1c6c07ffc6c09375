"""Publishing of inventory events to the broker.

The publisher turns a message into JSON bytes and writes it to an exchange
through the ``ConnectionManager``'s current channel. When the manager is not
connected, one connect attempt is made first. Nothing is buffered: a failed
publish raises and the caller decides whether to retry.

Example:
    >>> publisher = Publisher(manager)
    >>> await publisher.publish(
    ...     "inventory.events",
    ...     "inventory.updated",
    ...     {"orderId": "o-1", "status": "reserved"},
    ... )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aio_pika import DeliveryMode, Message
from opentelemetry import trace
from opentelemetry.propagate import inject
from opentelemetry.trace import Status, StatusCode

from inventorybus.exceptions import BrokerError, PublishError
from inventorybus.observability import (
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from inventorybus.serialization import encode_payload
from inventorybus.topology import DEFAULT_OPTIONS, DeclareOptions

if TYPE_CHECKING:
    from inventorybus.connection import ConnectionManager
    from inventorybus.events import InventoryEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEvent:
    """A single message about to be written to the broker."""

    exchange: str
    routing_key: str
    payload: bytes
    options: DeclareOptions = DEFAULT_OPTIONS
    message_id: str = ""

    def to_message(self, headers: dict[str, Any] | None = None) -> Message:
        return Message(
            body=self.payload,
            content_type="application/json",
            content_encoding="utf-8",
            delivery_mode=(
                DeliveryMode.PERSISTENT if self.options.durable else DeliveryMode.NOT_PERSISTENT
            ),
            message_id=self.message_id or None,
            timestamp=datetime.now(UTC),
            headers=headers or {},
        )


class Publisher:
    """Writes messages to broker exchanges.

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
        self._tracer = tracer or create_tracer(__name__, manager.config.enable_tracing)
        self._published = 0

    @property
    def published_count(self) -> int:
        """Number of messages accepted by the broker since startup."""
        return self._published

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        message: Any,
        options: DeclareOptions | None = None,
    ) -> None:
        """Publish one message.

        Args:
            exchange: Target exchange name, must not be empty.
            routing_key: Routing key, must not be empty.
            message: A pydantic model, a JSON-serializable structure, or bytes.
            options: Options used if the exchange has to be declared.

        Raises:
            ValueError: If exchange or routing_key is empty
            SerializationError: If the message cannot be encoded
            PublishError: If no connection could be established or the broker
                rejected the write
        """
        if not exchange:
            raise ValueError("exchange must not be empty")
        if not routing_key:
            raise ValueError("routing_key must not be empty")

        event = OutboundEvent(
            exchange=exchange,
            routing_key=routing_key,
            payload=encode_payload(message),
            options=options or DEFAULT_OPTIONS,
            message_id=str(uuid.uuid4()),
        )
        await self.send(event)

    async def publish_event(self, event: InventoryEvent) -> None:
        """Publish a domain event to its own exchange and routing key."""
        await self.publish(event.exchange, event.get_routing_key(), event)

    async def send(self, event: OutboundEvent) -> None:
        """Write an already-encoded ``OutboundEvent``.

        Raises:
            PublishError: If no connection could be established or the broker
                rejected the write
        """
        await self._ensure_connected(event)

        span = self._tracer.start_span(
            "inventorybus.publish",
            kind=SpanKindEnum.PRODUCER,
            attributes={
                ATTR_MESSAGING_SYSTEM: "rabbitmq",
                ATTR_MESSAGING_DESTINATION: event.exchange,
                ATTR_MESSAGING_OPERATION: "publish",
                ATTR_MESSAGING_ROUTING_KEY: event.routing_key,
                ATTR_MESSAGING_MESSAGE_ID: event.message_id,
            },
        )

        headers: dict[str, Any] = {}
        if span is not None:
            inject(headers, context=trace.set_span_in_context(span))

        try:
            exchange = await self._manager.declare_exchange(event.exchange, event.options)
            await exchange.publish(event.to_message(headers), routing_key=event.routing_key)
        except Exception as e:
            if span is not None:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
            logger.error(
                f"Failed to publish to {event.exchange}: {e}",
                exc_info=True,
                extra={
                    "exchange": event.exchange,
                    "routing_key": event.routing_key,
                    "message_id": event.message_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise PublishError(event.exchange, event.routing_key, str(e)) from e
        finally:
            if span is not None:
                span.end()

        self._published += 1
        logger.debug(
            f"Published {event.routing_key}",
            extra={
                "exchange": event.exchange,
                "routing_key": event.routing_key,
                "message_id": event.message_id,
                "size_bytes": len(event.payload),
            },
        )

    async def _ensure_connected(self, event: OutboundEvent) -> None:
        if self._manager.is_connected:
            return

        try:
            await self._manager.connect()
        except BrokerError as e:
            raise PublishError(event.exchange, event.routing_key, str(e)) from e

        if self._manager.channel is None:
            raise PublishError(
                event.exchange,
                event.routing_key,
                "broker connection is not available",
            )


__all__ = [
    "OutboundEvent",
    "Publisher",
]
