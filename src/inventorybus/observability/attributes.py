"""
Standard span attributes for inventorybus.

Messaging attributes follow OpenTelemetry semantic conventions; the rest
are namespaced under ``inventorybus.``.

Example:
    >>> from inventorybus.observability.attributes import ATTR_MESSAGING_SYSTEM
    >>>
    >>> span = tracer.start_span(
    ...     "inventorybus.publish",
    ...     attributes={ATTR_MESSAGING_SYSTEM: "rabbitmq"},
    ... )
"""

# =============================================================================
# Messaging Attributes (OTEL semantic)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier (always 'rabbitmq' here)."""

ATTR_MESSAGING_DESTINATION = "messaging.destination"
"""Exchange or queue name."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Operation type ('publish', 'receive', 'process')."""

ATTR_MESSAGING_ROUTING_KEY = "messaging.rabbitmq.routing_key"
"""AMQP routing key of the message."""

ATTR_MESSAGING_MESSAGE_ID = "messaging.message_id"
"""Broker message identifier."""

# =============================================================================
# Delivery Attributes
# =============================================================================

ATTR_DELIVERY_ATTEMPT = "inventorybus.delivery.attempt"
"""1-based attempt number of the delivery being processed (integer)."""

ATTR_DELIVERY_OUTCOME = "inventorybus.delivery.outcome"
"""How the delivery was settled ('ack', 'requeue', 'dead_letter', 'reject')."""

ATTR_HANDLER_NAME = "inventorybus.handler.name"
"""Name of the delivery callback."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "inventorybus.error.type"
"""Exception class name when an operation failed."""


__all__ = [
    "ATTR_DELIVERY_ATTEMPT",
    "ATTR_DELIVERY_OUTCOME",
    "ATTR_ERROR_TYPE",
    "ATTR_HANDLER_NAME",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_ROUTING_KEY",
    "ATTR_MESSAGING_SYSTEM",
]
