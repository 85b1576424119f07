"""Dynamic value model.

Values travelling between callers, the emitter and the decoder are plain
Python objects. This module classifies them into a closed set of kinds and
converts them to JSON where a dialect stores arrays or objects as text.
"""

from __future__ import annotations

import base64
import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import UUID

from relkit.exceptions import EncodeError


class ValueKind(StrEnum):
    """Kinds of values the engine knows how to bind and decode."""

    NULL = "null"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    STRING = "string"
    BYTES = "bytes"
    ARRAY = "array"
    OBJECT = "object"
    DECIMAL = "decimal"
    UUID = "uuid"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"

    @property
    def is_numeric(self) -> bool:
        return self in (ValueKind.INT, ValueKind.UINT, ValueKind.FLOAT, ValueKind.DECIMAL)


def kind_of(value: Any) -> ValueKind:
    """Classify a Python value.

    Raises:
        EncodeError: If the value has no counterpart in the value model
    """
    if value is None:
        return ValueKind.NULL
    # bool must be checked before int
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.INT if value < 0 else ValueKind.UINT
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, Decimal):
        return ValueKind.DECIMAL
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BYTES
    if isinstance(value, UUID):
        return ValueKind.UUID
    # datetime is a subclass of date
    if isinstance(value, datetime):
        return ValueKind.DATETIME
    if isinstance(value, date):
        return ValueKind.DATE
    if isinstance(value, time):
        return ValueKind.TIME
    if isinstance(value, (list, tuple, set, frozenset)):
        return ValueKind.ARRAY
    if isinstance(value, dict):
        return ValueKind.OBJECT
    raise EncodeError(
        f"Unsupported value of type '{type(value).__name__}'.",
        {"type": type(value).__name__},
    )


def to_json_compatible(value: Any) -> Any:
    """Convert a value into something `json.dumps` accepts."""
    kind = kind_of(value)
    if kind == ValueKind.ARRAY:
        return [to_json_compatible(v) for v in value]
    if kind == ValueKind.OBJECT:
        return {str(k): to_json_compatible(v) for k, v in value.items()}
    if kind in (ValueKind.DECIMAL, ValueKind.UUID):
        return str(value)
    if kind in (ValueKind.DATE, ValueKind.TIME, ValueKind.DATETIME):
        return value.isoformat()
    if kind == ValueKind.BYTES:
        return base64.b64encode(bytes(value)).decode("ascii")
    return value


def json_dumps(value: Any) -> str:
    """Serialize a value as compact JSON text."""
    return json.dumps(to_json_compatible(value), separators=(",", ":"), ensure_ascii=False)
