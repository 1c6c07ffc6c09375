"""
inventorybus - Messaging core of the inventory service.

This library provides:
- A reconnecting RabbitMQ connection manager with single-flight connects
- Publisher and Consumer built on its channel, with bounded redelivery
  and dead-lettering
- A static exchange/queue topology asserted on every connect
- Inventory event handlers for order and payment lifecycle events
- Audit records and low stock / out of stock notifications
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("inventorybus")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from inventorybus.audit import Auditor
from inventorybus.config import BrokerConfig, sanitize_url
from inventorybus.connection import (
    ConnectionManager,
    ConnectionPhase,
    ConnectionState,
    ConnectionStatus,
)
from inventorybus.consumer import Consumer, InboundDelivery, Subscription
from inventorybus.events import (
    AuditRecord,
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
    BrokerError,
    ConnectError,
    ConsumeError,
    InsufficientStockError,
    InventoryBusError,
    InventoryError,
    ProductNotFoundError,
    PublishError,
    SerializationError,
    ShutdownError,
)
from inventorybus.handlers import InventoryEventHandlers
from inventorybus.monitor import HealthMonitor
from inventorybus.publisher import OutboundEvent, Publisher
from inventorybus.service import InventoryMessaging
from inventorybus.stores import (
    InMemoryInventoryRepository,
    InventoryItem,
    InventoryRepository,
)
from inventorybus.topology import (
    DEFAULT_TOPOLOGY,
    DeclareOptions,
    Exchanges,
    ExchangeSpec,
    QueueSpec,
    RoutingKeys,
    Topology,
)

__all__ = [
    "__version__",
    # Configuration
    "BrokerConfig",
    "sanitize_url",
    # Topology
    "DEFAULT_TOPOLOGY",
    "DeclareOptions",
    "ExchangeSpec",
    "Exchanges",
    "QueueSpec",
    "RoutingKeys",
    "Topology",
    # Broker
    "ConnectionManager",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionStatus",
    "Consumer",
    "HealthMonitor",
    "InboundDelivery",
    "OutboundEvent",
    "Publisher",
    "Subscription",
    # Events
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
    # Inventory
    "Auditor",
    "InMemoryInventoryRepository",
    "InventoryEventHandlers",
    "InventoryItem",
    "InventoryMessaging",
    "InventoryRepository",
    # Exceptions
    "BrokerError",
    "ConnectError",
    "ConsumeError",
    "InsufficientStockError",
    "InventoryBusError",
    "InventoryError",
    "ProductNotFoundError",
    "PublishError",
    "SerializationError",
    "ShutdownError",
]
