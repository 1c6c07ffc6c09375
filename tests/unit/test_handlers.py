"""Unit tests for InventoryEventHandlers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from inventorybus.audit import Auditor
from inventorybus.events import (
    AuditRecord,
    AuditStatus,
    InventoryEvent,
    LowStock,
    OutOfStock,
    StockStatus,
    StockUpdated,
)
from inventorybus.exceptions import (
    InsufficientStockError,
    ProductNotFoundError,
    PublishError,
)
from inventorybus.handlers import InventoryEventHandlers
from inventorybus.stores import InMemoryInventoryRepository, InventoryItem


@pytest.fixture
def publisher() -> MagicMock:
    publisher = MagicMock()
    publisher.publish_event = AsyncMock()
    return publisher


@pytest.fixture
def handlers(
    repository: InMemoryInventoryRepository,
    publisher: MagicMock,
) -> InventoryEventHandlers:
    return InventoryEventHandlers(repository, publisher, auditor=Auditor(publisher))


def published(publisher: MagicMock) -> list[InventoryEvent]:
    return [c.args[0] for c in publisher.publish_event.await_args_list]


def of_type(events: list[InventoryEvent], event_type: type) -> list:
    return [event for event in events if isinstance(event, event_type)]


def order(order_id: str = "o-1", **quantities: int) -> dict:
    return {
        "orderId": order_id,
        "items": [
            {"productId": product_id, "quantity": quantity}
            for product_id, quantity in quantities.items()
        ],
    }


async def quantity_of(repository: InMemoryInventoryRepository, product_id: str) -> int:
    item = await repository.get(product_id)
    assert item is not None
    return item.quantity


class TestOrderCreated:
    """Tests for handle_order_created."""

    @pytest.mark.asyncio
    async def test_reserves_stock(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_order_created(order(widget=5))

        assert await quantity_of(repository, "widget") == 45
        events = published(publisher)
        updates = of_type(events, StockUpdated)
        assert len(updates) == 1
        assert updates[0].order_id == "o-1"
        assert updates[0].status is StockStatus.RESERVED
        assert of_type(events, LowStock) == []
        audits = of_type(events, AuditRecord)
        assert [a.status for a in audits] == [AuditStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_publishes_low_stock(
        self,
        handlers: InventoryEventHandlers,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_order_created(order(gadget=3))

        low_stock = of_type(published(publisher), LowStock)
        assert len(low_stock) == 1
        assert low_stock[0].product_id == "gadget"
        assert low_stock[0].product_name == "Gadget"
        assert low_stock[0].current_stock == 9
        assert low_stock[0].threshold == 10

    @pytest.mark.asyncio
    async def test_publishes_out_of_stock_when_item_runs_out(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_order_created(order(gizmo=1))

        assert await quantity_of(repository, "gizmo") == 0
        events = published(publisher)
        out_of_stock = of_type(events, OutOfStock)
        assert len(out_of_stock) == 1
        assert out_of_stock[0].product_id == "gizmo"
        assert out_of_stock[0].order_id == "o-1"
        assert len(of_type(events, LowStock)) == 1

    @pytest.mark.asyncio
    async def test_insufficient_stock_changes_nothing(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        with pytest.raises(InsufficientStockError) as exc_info:
            await handlers.handle_order_created(order(widget=5, gizmo=2))

        assert exc_info.value.product_id == "gizmo"
        assert await quantity_of(repository, "widget") == 50
        assert await quantity_of(repository, "gizmo") == 1

        events = published(publisher)
        updates = of_type(events, StockUpdated)
        assert [u.status for u in updates] == [StockStatus.RESERVATION_FAILED]
        assert "gizmo" in (updates[0].error or "")
        out_of_stock = of_type(events, OutOfStock)
        assert len(out_of_stock) == 1
        assert out_of_stock[0].product_id == "gizmo"
        assert [i.product_id for i in out_of_stock[0].items] == ["widget", "gizmo"]
        assert [a.status for a in of_type(events, AuditRecord)] == [AuditStatus.ERROR]

    @pytest.mark.asyncio
    async def test_unknown_product_fails_reservation(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        with pytest.raises(ProductNotFoundError):
            await handlers.handle_order_created(order(widget=1, unknown=1))

        assert await quantity_of(repository, "widget") == 50
        events = published(publisher)
        assert [u.status for u in of_type(events, StockUpdated)] == [
            StockStatus.RESERVATION_FAILED
        ]
        assert of_type(events, OutOfStock) == []

    @pytest.mark.asyncio
    async def test_repeated_lines_are_checked_together(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
    ) -> None:
        message = {
            "orderId": "o-2",
            "items": [
                {"productId": "widget", "quantity": 30},
                {"productId": "widget", "quantity": 30},
            ],
        }

        with pytest.raises(InsufficientStockError) as exc_info:
            await handlers.handle_order_created(message)

        assert exc_info.value.requested == 60
        assert await quantity_of(repository, "widget") == 50

    @pytest.mark.asyncio
    async def test_legacy_field_names_are_accepted(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
    ) -> None:
        await handlers.handle_order_created(
            {"id": "o-3", "orders": [{"itemId": "widget", "quantity": 2}]}
        )

        assert await quantity_of(repository, "widget") == 48

    @pytest.mark.asyncio
    async def test_invalid_message_raises_validation_error(
        self,
        handlers: InventoryEventHandlers,
        publisher: MagicMock,
    ) -> None:
        with pytest.raises(ValidationError):
            await handlers.handle_order_created({"orderId": "o-4", "items": []})

        publisher.publish_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failure_after_reservation_does_not_raise(
        self,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        publisher.publish_event.side_effect = PublishError(
            "inventory.events", "inventory.updated", "broker down"
        )
        handlers = InventoryEventHandlers(repository, publisher, auditor=Auditor(publisher))

        await handlers.handle_order_created(order(widget=5))

        assert await quantity_of(repository, "widget") == 45

    @pytest.mark.asyncio
    async def test_failed_line_rolls_back_earlier_lines(
        self,
        inventory_items: list[InventoryItem],
        publisher: MagicMock,
    ) -> None:
        class FlakyRepository(InMemoryInventoryRepository):
            async def adjust_quantity(self, product_id: str, delta: int) -> InventoryItem:
                if product_id == "gadget" and delta < 0:
                    raise InsufficientStockError(product_id, -delta, 0)
                return await super().adjust_quantity(product_id, delta)

        repository = FlakyRepository(inventory_items)
        handlers = InventoryEventHandlers(repository, publisher)

        with pytest.raises(InsufficientStockError):
            await handlers.handle_order_created(order(widget=5, gadget=1))

        assert await quantity_of(repository, "widget") == 50


class TestOrderCancelled:
    @pytest.mark.asyncio
    async def test_returns_stock(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_order_cancelled(order(widget=5, gadget=2))

        assert await quantity_of(repository, "widget") == 55
        assert await quantity_of(repository, "gadget") == 14
        updates = of_type(published(publisher), StockUpdated)
        assert [u.status for u in updates] == [StockStatus.RETURNED]

    @pytest.mark.asyncio
    async def test_unknown_products_are_skipped(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_order_cancelled(order(unknown=3, widget=1))

        assert await quantity_of(repository, "widget") == 51
        assert await repository.get("unknown") is None
        updates = of_type(published(publisher), StockUpdated)
        assert [u.status for u in updates] == [StockStatus.RETURNED]


class TestPayments:
    @pytest.mark.asyncio
    async def test_payment_confirmed_publishes_confirmation(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_payment_confirmed({"orderId": "o-1"})

        assert await quantity_of(repository, "widget") == 50
        updates = of_type(published(publisher), StockUpdated)
        assert len(updates) == 1
        assert updates[0].order_id == "o-1"
        assert updates[0].status is StockStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_payment_failed_returns_stock(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_payment_failed(order(widget=4))

        assert await quantity_of(repository, "widget") == 54
        updates = of_type(published(publisher), StockUpdated)
        assert [u.status for u in updates] == [StockStatus.RETURNED]

    @pytest.mark.asyncio
    async def test_payment_failed_without_items(
        self,
        handlers: InventoryEventHandlers,
        publisher: MagicMock,
    ) -> None:
        await handlers.handle_payment_failed({"orderId": "o-5"})

        updates = of_type(published(publisher), StockUpdated)
        assert [u.order_id for u in updates] == ["o-5"]


class TestAdjustStock:
    @pytest.mark.asyncio
    async def test_restock_publishes_adjusted(
        self,
        handlers: InventoryEventHandlers,
        publisher: MagicMock,
    ) -> None:
        item = await handlers.adjust_stock("gizmo", 20)

        assert item.quantity == 21
        events = published(publisher)
        updates = of_type(events, StockUpdated)
        assert len(updates) == 1
        assert updates[0].status is StockStatus.ADJUSTED
        assert updates[0].product_id == "gizmo"
        assert updates[0].quantity == 21
        assert of_type(events, LowStock) == []

    @pytest.mark.asyncio
    async def test_removal_below_threshold_publishes_low_stock(
        self,
        handlers: InventoryEventHandlers,
        publisher: MagicMock,
    ) -> None:
        await handlers.adjust_stock("widget", -45)

        low_stock = of_type(published(publisher), LowStock)
        assert [e.current_stock for e in low_stock] == [5]

    @pytest.mark.asyncio
    async def test_custom_threshold(
        self,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        handlers = InventoryEventHandlers(repository, publisher, low_stock_threshold=100)

        await handlers.adjust_stock("widget", 1)

        low_stock = of_type(published(publisher), LowStock)
        assert [e.threshold for e in low_stock] == [100]

    @pytest.mark.asyncio
    async def test_overdraw_raises_and_audits(
        self,
        handlers: InventoryEventHandlers,
        repository: InMemoryInventoryRepository,
        publisher: MagicMock,
    ) -> None:
        with pytest.raises(InsufficientStockError):
            await handlers.adjust_stock("gizmo", -5)

        assert await quantity_of(repository, "gizmo") == 1
        audits = of_type(published(publisher), AuditRecord)
        assert [a.status for a in audits] == [AuditStatus.ERROR]
