"""
Inventory store interface.

The document store that holds inventory items lives outside this package.
Handlers only see it through ``InventoryRepository``.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field


class InventoryItem(BaseModel):
    """
    A stocked product.

    Attributes:
        product_id: Identifier shared with the order service
        name: Display name, used in low stock notifications
        quantity: Units on hand, never negative
        price: Unit price
        tags: Free-form labels
        is_active: False for items hidden from the catalogue
    """

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1)
    name: str
    quantity: int = Field(default=0, ge=0)
    price: float = Field(default=0.0, ge=0)
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class InventoryRepository(ABC):
    """
    Abstract base class for inventory item storage.

    Updates are atomic per item. Nothing spans more than one item.

    Concrete implementations:
    - InMemoryInventoryRepository: For testing and development
    """

    @abstractmethod
    async def get(self, product_id: str) -> InventoryItem | None:
        """Get an item by product id, or None if there is none."""
        pass

    @abstractmethod
    async def adjust_quantity(self, product_id: str, delta: int) -> InventoryItem:
        """
        Add ``delta`` (negative to remove) to an item's quantity.

        Returns:
            The updated item

        Raises:
            ProductNotFoundError: If the item does not exist
            InsufficientStockError: If the quantity would drop below zero
        """
        pass

    @abstractmethod
    async def save(self, item: InventoryItem) -> InventoryItem:
        """Insert or replace an item."""
        pass

    @abstractmethod
    async def find_low_stock(self, threshold: int) -> list[InventoryItem]:
        """Get active items whose quantity is below ``threshold``."""
        pass
