"""Static broker topology: exchanges, queues and routing keys.

The topology is pure data. The connection manager asserts every exchange
and queue listed here each time it (re)connects, so publishers and
consumers can rely on them existing.

Example:
    >>> from inventorybus.topology import DEFAULT_TOPOLOGY, Exchanges
    >>> DEFAULT_TOPOLOGY.exchange(Exchanges.INVENTORY).type
    'topic'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class Exchanges:
    """Logical exchange names."""

    INVENTORY = "inventory.events"
    ORDERS = "orders.events"
    AUDIT = "audit.events"


class RoutingKeys:
    """Routing keys used on the inventory and order exchanges."""

    INVENTORY_UPDATED = "inventory.updated"
    INVENTORY_LOW_STOCK = "inventory.low_stock"
    INVENTORY_OUT_OF_STOCK = "inventory.out_of_stock"
    ORDER_CREATED = "order.created"
    ORDER_CANCELLED = "order.cancelled"
    PAYMENT_CONFIRMED = "payment.confirmed"
    PAYMENT_FAILED = "payment.failed"
    AUDIT_INFO = "audit.info"
    AUDIT_ERROR = "audit.error"


@dataclass(frozen=True)
class DeclareOptions:
    """Durability options applied when declaring an exchange or queue.

    ``exclusive`` only applies to queues.
    """

    durable: bool = True
    exclusive: bool = False
    auto_delete: bool = False


DEFAULT_OPTIONS = DeclareOptions()


@dataclass(frozen=True)
class ExchangeSpec:
    """An exchange the broker must have."""

    name: str
    type: str = "topic"
    options: DeclareOptions = DEFAULT_OPTIONS


@dataclass(frozen=True)
class QueueSpec:
    """A queue the broker must have, with its bindings.

    Attributes:
        name: Queue name.
        bindings: ``(exchange, routing_key)`` pairs to bind the queue with.
        options: Durability options.
        arguments: Extra ``x-`` arguments passed on declaration.
    """

    name: str
    bindings: tuple[tuple[str, str], ...] = ()
    options: DeclareOptions = DEFAULT_OPTIONS
    arguments: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class Topology:
    """Immutable set of exchanges and queues asserted on connect."""

    exchanges: tuple[ExchangeSpec, ...] = ()
    queues: tuple[QueueSpec, ...] = ()

    def exchange(self, name: str) -> ExchangeSpec:
        """Look up an exchange by name.

        Raises:
            KeyError: If the topology has no exchange with this name.
        """
        for spec in self.exchanges:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def has_exchange(self, name: str) -> bool:
        return any(spec.name == name for spec in self.exchanges)

    @property
    def exchange_names(self) -> list[str]:
        return [spec.name for spec in self.exchanges]


DEFAULT_TOPOLOGY = Topology(
    exchanges=(
        ExchangeSpec(Exchanges.INVENTORY),
        ExchangeSpec(Exchanges.ORDERS),
        ExchangeSpec(Exchanges.AUDIT),
    ),
    queues=(
        QueueSpec("inventory-events", bindings=((Exchanges.INVENTORY, "inventory.#"),)),
        QueueSpec("audit-events", bindings=((Exchanges.AUDIT, "audit.#"),)),
    ),
)


def dead_letter_queue_name(queue_name: str) -> str:
    """Get the dead letter queue paired with ``queue_name``."""
    return f"{queue_name}.dlq"


__all__ = [
    "DEFAULT_OPTIONS",
    "DEFAULT_TOPOLOGY",
    "DeclareOptions",
    "ExchangeSpec",
    "Exchanges",
    "QueueSpec",
    "RoutingKeys",
    "Topology",
    "dead_letter_queue_name",
]
