"""Library exceptions for the inventorybus package."""


class InventoryBusError(Exception):
    """Base exception for inventorybus."""

    pass


class BrokerError(InventoryBusError):
    """Raised when there's an error talking to the message broker."""

    pass


class ConnectError(BrokerError):
    """Raised when opening the broker connection or channel fails."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"Failed to connect to broker at {url}: {message}")


class PublishError(BrokerError):
    """Raised when a message could not be handed to the broker."""

    def __init__(self, exchange: str, routing_key: str, message: str) -> None:
        self.exchange = exchange
        self.routing_key = routing_key
        super().__init__(f"Failed to publish to {exchange} ({routing_key}): {message}")


class ConsumeError(BrokerError):
    """Raised when a queue subscription cannot be established."""

    def __init__(self, queue_name: str, message: str) -> None:
        self.queue_name = queue_name
        super().__init__(f"Failed to consume from {queue_name}: {message}")


class ShutdownError(BrokerError):
    """Raised when an operation is attempted after the manager was closed."""

    def __init__(self, message: str = "Connection manager has been shut down") -> None:
        super().__init__(message)


class SerializationError(InventoryBusError):
    """Raised when a payload cannot be encoded to or decoded from bytes."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Serialization error: {message}")


class InventoryError(InventoryBusError):
    """Raised when a stock operation cannot be applied."""

    pass


class ProductNotFoundError(InventoryError):
    """Raised when an inventory item cannot be found."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Inventory item not found: {product_id}")


class InsufficientStockError(InventoryError):
    """Raised when a reservation asks for more units than are in stock."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


__all__ = [
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
