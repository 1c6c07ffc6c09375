"""
Domain event handlers for the inventory service.

Order and payment lifecycle events arrive through the ``Consumer``; each
handler adjusts stock through the ``InventoryRepository`` and reports the
outcome on the inventory and audit exchanges.

A handler raises when the event could not be applied, so the delivery is
requeued and eventually dead-lettered. Once stock has been changed,
failures to publish the follow-up notifications are logged instead of
raised, because a redelivery would apply the stock change a second time.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from inventorybus.config import LOW_STOCK_THRESHOLD
from inventorybus.events import (
    AuditStatus,
    InventoryEvent,
    LowStock,
    OrderEvent,
    OrderItem,
    OutOfStock,
    PaymentEvent,
    StockStatus,
    StockUpdated,
)
from inventorybus.exceptions import (
    InsufficientStockError,
    InventoryBusError,
    InventoryError,
    ProductNotFoundError,
)

if TYPE_CHECKING:
    from inventorybus.audit import Auditor
    from inventorybus.publisher import Publisher
    from inventorybus.stores import InventoryItem, InventoryRepository

logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)


class InventoryEventHandlers:
    """
    Reacts to order and payment events by reserving and returning stock.

    Args:
        repository: Where inventory items live
        publisher: Used for inventory events
        auditor: Optional audit trail. Nothing is audited without one.
        low_stock_threshold: Remaining quantity below which ``LowStock`` is
            published

    Example:
        >>> handlers = InventoryEventHandlers(repository, publisher, auditor=auditor)
        >>> await consumer.consume(
        ...     "orders.events", "order.created", "inventory.order.created",
        ...     handlers.handle_order_created,
        ... )
    """

    def __init__(
        self,
        repository: InventoryRepository,
        publisher: Publisher,
        *,
        auditor: Auditor | None = None,
        low_stock_threshold: int = LOW_STOCK_THRESHOLD,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._auditor = auditor
        self._low_stock_threshold = low_stock_threshold

    @property
    def low_stock_threshold(self) -> int:
        return self._low_stock_threshold

    async def handle_order_created(self, message: Any) -> None:
        """
        Reserve stock for every line of a new order.

        All lines are checked before any stock is touched, so an order is
        either reserved in full or not at all.

        Raises:
            ProductNotFoundError: If a product does not exist
            InsufficientStockError: If a product has too few units
            pydantic.ValidationError: If the message is not an order
        """
        order = self._parse(OrderEvent, message)

        try:
            await self._check_availability(order.items)
            reserved = await self._reserve(order.items)
        except InventoryError as e:
            await self._publish(
                StockUpdated(
                    order_id=order.order_id,
                    status=StockStatus.RESERVATION_FAILED,
                    error=str(e),
                )
            )
            if isinstance(e, InsufficientStockError):
                await self._publish(
                    OutOfStock(
                        order_id=order.order_id,
                        product_id=e.product_id,
                        items=order.items,
                    )
                )
            await self._audit("orderCreated", "orderEvents", AuditStatus.ERROR, str(e))
            logger.warning(
                f"Reservation failed for order {order.order_id}: {e}",
                extra={
                    "order_id": order.order_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise

        for item in reserved:
            await self._notify_stock_level(item, order_id=order.order_id)

        await self._publish(StockUpdated(order_id=order.order_id, status=StockStatus.RESERVED))
        await self._audit(
            "orderCreated",
            "orderEvents",
            AuditStatus.SUCCESS,
            f"Reserved stock for order {order.order_id}",
        )
        logger.info(
            f"Reserved stock for order {order.order_id}",
            extra={"order_id": order.order_id, "line_count": len(order.items)},
        )

    async def handle_order_cancelled(self, message: Any) -> None:
        """Return the units of a cancelled order. Unknown products are skipped."""
        order = self._parse(OrderEvent, message)
        await self._return_stock(order.order_id, order.items, "orderCancelled", "orderEvents")

    async def handle_payment_confirmed(self, message: Any) -> None:
        """Confirm a reservation. Stock was already taken when the order was created."""
        payment = self._parse(PaymentEvent, message)
        await self._publish(StockUpdated(order_id=payment.order_id, status=StockStatus.CONFIRMED))
        logger.info(
            f"Confirmed reservation for order {payment.order_id}",
            extra={"order_id": payment.order_id},
        )

    async def handle_payment_failed(self, message: Any) -> None:
        """Treat a failed payment like a cancelled order."""
        payment = self._parse(PaymentEvent, message)
        await self._return_stock(payment.order_id, payment.items, "paymentFailed", "paymentEvents")

    async def adjust_stock(self, product_id: str, delta: int) -> InventoryItem:
        """
        Change an item's quantity directly, e.g. on restock.

        Returns:
            The updated item

        Raises:
            ProductNotFoundError: If the product does not exist
            InsufficientStockError: If the quantity would go negative
        """
        try:
            item = await self._repository.adjust_quantity(product_id, delta)
        except InventoryError as e:
            await self._audit("adjustStock", "inventory", AuditStatus.ERROR, str(e))
            raise

        await self._publish(
            StockUpdated(
                product_id=item.product_id,
                status=StockStatus.ADJUSTED,
                quantity=item.quantity,
            )
        )
        await self._notify_stock_level(item)
        await self._audit(
            "adjustStock",
            "inventory",
            AuditStatus.SUCCESS,
            f"Adjusted {product_id} by {delta}, now {item.quantity}",
        )
        return item

    # =========================================================================
    # Internals
    # =========================================================================

    def _parse(self, model: type[TModel], message: Any) -> TModel:
        if isinstance(message, model):
            return message
        return model.model_validate(message)

    async def _check_availability(self, items: list[OrderItem]) -> None:
        requested = Counter[str]()
        for line in items:
            requested[line.product_id] += line.quantity

        for product_id, quantity in requested.items():
            item = await self._repository.get(product_id)
            if item is None:
                raise ProductNotFoundError(product_id)
            if item.quantity < quantity:
                raise InsufficientStockError(product_id, requested=quantity, available=item.quantity)

    async def _reserve(self, items: list[OrderItem]) -> list[InventoryItem]:
        """Decrement every line, putting back what was taken if one fails."""
        reserved: list[tuple[OrderItem, InventoryItem]] = []
        try:
            for line in items:
                updated = await self._repository.adjust_quantity(line.product_id, -line.quantity)
                reserved.append((line, updated))
        except InventoryError:
            for line, _ in reversed(reserved):
                await self._repository.adjust_quantity(line.product_id, line.quantity)
            raise
        return [item for _, item in reserved]

    async def _return_stock(
        self,
        order_id: str,
        items: list[OrderItem],
        action: str,
        source: str,
    ) -> None:
        returned = 0
        for line in items:
            try:
                await self._repository.adjust_quantity(line.product_id, line.quantity)
            except ProductNotFoundError:
                logger.warning(
                    f"Skipping unknown product {line.product_id} for order {order_id}",
                    extra={"order_id": order_id, "product_id": line.product_id},
                )
                continue
            returned += line.quantity

        await self._publish(StockUpdated(order_id=order_id, status=StockStatus.RETURNED))
        await self._audit(
            action,
            source,
            AuditStatus.SUCCESS,
            f"Returned {returned} units for order {order_id}",
        )
        logger.info(
            f"Returned stock for order {order_id}",
            extra={"order_id": order_id, "units_returned": returned},
        )

    async def _notify_stock_level(self, item: InventoryItem, order_id: str | None = None) -> None:
        if item.quantity < self._low_stock_threshold:
            await self._publish(
                LowStock(
                    product_id=item.product_id,
                    product_name=item.name,
                    current_stock=item.quantity,
                    threshold=self._low_stock_threshold,
                )
            )
        if item.quantity == 0:
            await self._publish(OutOfStock(order_id=order_id, product_id=item.product_id))

    async def _publish(self, event: InventoryEvent) -> bool:
        try:
            await self._publisher.publish_event(event)
        except InventoryBusError as e:
            logger.warning(
                f"Failed to publish {event.get_routing_key()}: {e}",
                extra={
                    "routing_key": event.get_routing_key(),
                    "event_id": str(event.event_id),
                    "error": str(e),
                },
            )
            return False
        return True

    async def _audit(self, action: str, source: str, status: AuditStatus, message: str) -> None:
        if self._auditor is not None:
            await self._auditor.record(action, source, status, message)


__all__ = ["InventoryEventHandlers"]
