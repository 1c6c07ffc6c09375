"""Inventory store boundary for the inventorybus package."""

from inventorybus.stores.in_memory import InMemoryInventoryRepository
from inventorybus.stores.interface import InventoryItem, InventoryRepository

__all__ = [
    "InMemoryInventoryRepository",
    "InventoryItem",
    "InventoryRepository",
]
