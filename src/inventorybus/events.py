"""
Payload models for messages exchanged with the order and payment services.

All models are immutable pydantic models. Field names are snake_case in
Python and camelCase on the wire, matching the JSON produced by the other
services.

Outbound events (published by this service) subclass ``InventoryEvent`` and
know their own exchange and routing key:

    >>> event = StockUpdated(order_id="o-1", status=StockStatus.RESERVED)
    >>> event.exchange, event.get_routing_key()
    ('inventory.events', 'inventory.updated')
    >>> event.model_dump(by_alias=True)["orderId"]
    'o-1'

Inbound events are validated from decoded delivery bodies:

    >>> OrderEvent.model_validate({"orderId": "o-1", "items": [{"productId": "p", "quantity": 2}]})
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from inventorybus.topology import Exchanges, RoutingKeys


class WireModel(BaseModel):
    """Base for payloads: frozen, camelCase aliases, accepts either spelling."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# =============================================================================
# Inbound
# =============================================================================


class OrderItem(WireModel):
    """One order line. ``itemId`` is accepted for older order payloads."""

    product_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("productId", "product_id", "itemId"),
    )
    quantity: int = Field(..., ge=1)


class OrderEvent(WireModel):
    """Order created or cancelled, as published by the order service."""

    order_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("orderId", "order_id", "id"),
    )
    items: list[OrderItem] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("items", "orders"),
    )


class PaymentEvent(WireModel):
    """Payment confirmed or failed. Failed payments carry the order lines."""

    order_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("orderId", "order_id"),
    )
    items: list[OrderItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "orders"),
    )


# =============================================================================
# Outbound
# =============================================================================


class StockStatus(StrEnum):
    RESERVED = "reserved"
    RESERVATION_FAILED = "reservation_failed"
    RETURNED = "returned"
    CONFIRMED = "confirmed"
    ADJUSTED = "adjusted"


class InventoryEvent(WireModel):
    """
    Base class for events published by the inventory service.

    Subclasses set the ``exchange`` and ``routing_key`` class variables.

    Attributes:
        event_id: Unique identifier for this event instance
        occurred_at: When the event occurred (UTC timestamp)
    """

    exchange: ClassVar[str] = Exchanges.INVENTORY
    routing_key: ClassVar[str] = ""

    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def get_routing_key(self) -> str:
        return self.routing_key


class StockUpdated(InventoryEvent):
    """Stock for an order was reserved, returned, confirmed or adjusted."""

    routing_key: ClassVar[str] = RoutingKeys.INVENTORY_UPDATED

    order_id: str | None = None
    product_id: str | None = None
    status: StockStatus
    quantity: int | None = None
    error: str | None = None


class LowStock(InventoryEvent):
    """Remaining stock of a product dropped below the threshold."""

    routing_key: ClassVar[str] = RoutingKeys.INVENTORY_LOW_STOCK

    product_id: str
    product_name: str
    current_stock: int
    threshold: int


class OutOfStock(InventoryEvent):
    """A product ran out, or an order asked for more than was in stock."""

    routing_key: ClassVar[str] = RoutingKeys.INVENTORY_OUT_OF_STOCK

    order_id: str | None = None
    product_id: str | None = None
    items: list[OrderItem] = Field(default_factory=list)


class AuditStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class AuditRecord(InventoryEvent):
    """Audit trail entry. Routed to ``audit.error`` or ``audit.info``."""

    exchange: ClassVar[str] = Exchanges.AUDIT

    action: str
    source: str = Field(..., alias="from")
    status: AuditStatus
    message: str

    def get_routing_key(self) -> str:
        if self.status is AuditStatus.ERROR:
            return RoutingKeys.AUDIT_ERROR
        return RoutingKeys.AUDIT_INFO


__all__ = [
    "AuditRecord",
    "AuditStatus",
    "InventoryEvent",
    "LowStock",
    "OrderEvent",
    "OrderItem",
    "OutOfStock",
    "PaymentEvent",
    "StockStatus",
    "StockUpdated",
    "WireModel",
]
