"""
In-memory inventory repository.

Useful for testing and local development. Items are lost when the process
terminates.
"""

import asyncio

from inventorybus.exceptions import InsufficientStockError, ProductNotFoundError
from inventorybus.stores.interface import InventoryItem, InventoryRepository


class InMemoryInventoryRepository(InventoryRepository):
    """
    Keeps items in a dict keyed by product id.

    Uses an asyncio lock so concurrent adjustments of the same item are
    applied one after the other.

    Example:
        >>> repo = InMemoryInventoryRepository([InventoryItem(product_id="p-1", name="Widget", quantity=5)])
        >>> item = await repo.adjust_quantity("p-1", -2)
        >>> item.quantity
        3
    """

    def __init__(self, items: list[InventoryItem] | None = None) -> None:
        self._items: dict[str, InventoryItem] = {item.product_id: item for item in items or []}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def get(self, product_id: str) -> InventoryItem | None:
        async with self._lock:
            return self._items.get(product_id)

    async def adjust_quantity(self, product_id: str, delta: int) -> InventoryItem:
        async with self._lock:
            item = self._items.get(product_id)
            if item is None:
                raise ProductNotFoundError(product_id)

            new_quantity = item.quantity + delta
            if new_quantity < 0:
                raise InsufficientStockError(product_id, requested=-delta, available=item.quantity)

            updated = item.model_copy(update={"quantity": new_quantity})
            self._items[product_id] = updated
            return updated

    async def save(self, item: InventoryItem) -> InventoryItem:
        async with self._lock:
            self._items[item.product_id] = item
            return item

    async def find_low_stock(self, threshold: int) -> list[InventoryItem]:
        async with self._lock:
            return sorted(
                (item for item in self._items.values() if item.is_active and item.quantity < threshold),
                key=lambda item: item.quantity,
            )

    async def clear(self) -> None:
        """Remove all items. Useful in tests."""
        async with self._lock:
            self._items.clear()

    async def get_item_count(self) -> int:
        async with self._lock:
            return len(self._items)
