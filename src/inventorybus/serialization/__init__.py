"""
Serialization utilities for inventorybus.

Message bodies travel as UTF-8 JSON. Pydantic models are dumped with their
camelCase aliases; plain structures go through ``InventoryJSONEncoder``,
which also handles UUIDs, datetimes, decimals and enums.

Example:
    >>> from inventorybus.serialization import encode_payload, decode_payload
    >>> body = encode_payload({"productId": "p-1", "quantity": 3})
    >>> decode_payload(body)
    {'productId': 'p-1', 'quantity': 3}
"""

from inventorybus.serialization.json import (
    InventoryJSONEncoder,
    decode_payload,
    encode_payload,
    json_dumps,
    json_loads,
)

__all__ = [
    "InventoryJSONEncoder",
    "decode_payload",
    "encode_payload",
    "json_dumps",
    "json_loads",
]
