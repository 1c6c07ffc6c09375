"""
JSON serialization for message payloads.

This module turns outbound messages into the bytes handed to the broker and
decodes inbound delivery bodies back into Python structures.

Example:
    >>> from inventorybus.serialization import json_dumps
    >>> from uuid import uuid4
    >>>
    >>> data = {"id": uuid4()}
    >>> json_str = json_dumps(data)
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from inventorybus.exceptions import SerializationError


class InventoryJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles the non-native types found in inventory payloads.

    - UUID objects: string representation
    - datetime/date objects: ISO 8601 string
    - Decimal: float
    - Enum: its value
    - Pydantic models: their alias-keyed JSON-mode dump
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime | date):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json", by_alias=True)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize ``obj`` to a JSON string using ``InventoryJSONEncoder``."""
    return json.dumps(obj, cls=InventoryJSONEncoder)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize a JSON document.

    Note: UUID and datetime strings are NOT converted back to their original
    types. Handlers validate payloads into pydantic models for that.
    """
    return json.loads(s)


def encode_payload(message: Any) -> bytes:
    """
    Encode an outbound message as UTF-8 JSON bytes.

    ``bytes`` are passed through untouched so callers can publish
    pre-encoded bodies.

    Args:
        message: A pydantic model, a JSON-serializable structure, or bytes

    Returns:
        The message body

    Raises:
        SerializationError: If the message cannot be represented as JSON
    """
    if isinstance(message, bytes):
        return message
    try:
        if isinstance(message, BaseModel):
            return message.model_dump_json(by_alias=True).encode("utf-8")
        return json_dumps(message).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"cannot encode {type(message).__name__} payload: {e}"
        ) from e


def decode_payload(body: bytes) -> Any:
    """
    Decode a delivery body into Python structures.

    Raises:
        SerializationError: If the body is not valid UTF-8 JSON
    """
    try:
        return json_loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise SerializationError(f"malformed message body: {e}") from e


__all__ = [
    "InventoryJSONEncoder",
    "decode_payload",
    "encode_payload",
    "json_dumps",
    "json_loads",
]
