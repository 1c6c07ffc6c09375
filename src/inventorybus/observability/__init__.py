"""
Observability utilities for inventorybus.

Tracing is composed into components through the ``Tracer`` protocol, and
span attributes come from a single module so names stay consistent.

Example:
    >>> from inventorybus.observability import create_tracer, NullTracer
    >>>
    >>> class MyPublisher:
    ...     def __init__(self, tracer=None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
"""

from inventorybus.observability.attributes import (
    ATTR_DELIVERY_ATTEMPT,
    ATTR_DELIVERY_OUTCOME,
    ATTR_ERROR_TYPE,
    ATTR_HANDLER_NAME,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_ROUTING_KEY,
    ATTR_MESSAGING_SYSTEM,
)
from inventorybus.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

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
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
