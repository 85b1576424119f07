"""Per-field row decoding.

Rows come back from the driver with whatever Python values the DBAPI driver
produces. These helpers pull one field out of a row and convert it to the
requested type, recovering NULL where a neutral value exists.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar
from uuid import UUID

from relkit.drivers.base import Row
from relkit.exceptions import ColumnNotFoundError, DecodeError
from relkit.sql.dialect import Dialect

logger = logging.getLogger(__name__)

T = TypeVar("T")

NIL_UUID = UUID(int=0)

_TRUE_STRINGS = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "f", "no", "n", "off"})


def _raw(row: Mapping[str, Any], field: str) -> Any:
    try:
        if isinstance(row, Row):
            return row.raw(field)
        return row[field]
    except KeyError:
        raise ColumnNotFoundError(field, list(row.keys())) from None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"{value!r} is not a boolean")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise ValueError(f"{value!r} is not a datetime")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"{value!r} is not a date")


def _to_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, str):
        return time.fromisoformat(value)
    # MySQL drivers hand TIME columns back as timedelta
    if hasattr(value, "total_seconds"):
        seconds = int(value.total_seconds())
        return time(seconds // 3600 % 24, seconds // 60 % 60, seconds % 60)
    raise ValueError(f"{value!r} is not a time")


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) == 16:
            return UUID(bytes=raw)
        return UUID(raw.decode())
    return UUID(str(value))


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode()
    raise ValueError(f"{value!r} is not binary")


def _to_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode()
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_list(value: Any) -> list[Any]:
    parsed = _to_json(value)
    if isinstance(parsed, (list, tuple)):
        return list(parsed)
    raise ValueError(f"{value!r} is not an array")


def _to_dict(value: Any) -> dict[str, Any]:
    parsed = _to_json(value)
    if isinstance(parsed, Mapping):
        return dict(parsed)
    raise ValueError(f"{value!r} is not an object")


def _convert(value: Any, type_: Any, field: str) -> Any:
    """Convert a non-NULL raw value to `type_`.

    Raises:
        DecodeError: If the value cannot be converted
    """
    if type_ is None or type_ is Any:
        return value
    try:
        if type_ is bool:
            return _to_bool(value)
        if type_ is int:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value!r} is not an integer")
            return int(value)
        if type_ is float:
            return float(value)
        if type_ is Decimal:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        if type_ is str:
            if isinstance(value, (bytes, bytearray, memoryview)):
                return bytes(value).decode()
            return value if isinstance(value, str) else str(value)
        if type_ is UUID:
            return _to_uuid(value)
        if type_ is datetime:
            return _to_datetime(value)
        if type_ is date:
            return _to_date(value)
        if type_ is time:
            return _to_time(value)
        if type_ is bytes:
            return _to_bytes(value)
        if type_ is list:
            return _to_list(value)
        if type_ is dict:
            return _to_dict(value)
    except (ValueError, TypeError, InvalidOperation, UnicodeDecodeError) as e:
        raise DecodeError(field, str(e)) from e
    if isinstance(value, type_):
        return value
    raise DecodeError(field, f"cannot decode {type(value).__name__} as {type_.__name__}")


def decode(row: Mapping[str, Any], field: str, type_: type[T] | None = None) -> T:
    """Decode a field through the row's driver, failing on NULL.

    Raises:
        ColumnNotFoundError: If the row has no such column
        DecodeError: If the value is NULL or cannot be converted
    """
    value = _raw(row, field)
    if value is None:
        raise DecodeError(field, "unexpected NULL")
    return _convert(value, type_, field)


def decode_optional(row: Mapping[str, Any], field: str, type_: type[T] | None = None) -> T | None:
    """Decode a field, returning None for a missing column or a NULL value."""
    try:
        value = _raw(row, field)
    except ColumnNotFoundError:
        return None
    if value is None:
        return None
    return _convert(value, type_, field)


def decode_decimal(row: Mapping[str, Any], field: str) -> Decimal:
    """Decode a decimal field; NULL becomes zero with a warning."""
    value = _raw(row, field)
    if value is None:
        logger.warning(f"Field '{field}' is NULL; decoded as decimal zero")
        return Decimal(0)
    return _convert(value, Decimal, field)


def decode_uuid(row: Mapping[str, Any], field: str) -> UUID:
    """Decode a uuid field; NULL becomes the nil uuid with a warning."""
    value = _raw(row, field)
    if value is None:
        logger.warning(f"Field '{field}' is NULL; decoded as the nil uuid")
        return NIL_UUID
    return _convert(value, UUID, field)


def decode_json(row: Mapping[str, Any], field: str) -> Any:
    """Decode a JSON field stored natively or as text."""
    value = _raw(row, field)
    if value is None:
        return None
    try:
        return _to_json(value)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(field, f"invalid JSON: {e}") from e


def decode_array(
    row: Mapping[str, Any],
    field: str,
    dialect: Dialect,
    element_type: type[Any] | None = None,
) -> list[Any]:
    """Decode an array field; NULL becomes an empty list with a warning.

    PostgreSQL returns native arrays. MariaDB stores arrays as JSON text. MySQL
    and SQLite go through a parser that accepts a decoded list or JSON text.

    Raises:
        DecodeError: If the value is not an array
    """
    value = _raw(row, field)
    if value is None:
        logger.warning(f"Field '{field}' is NULL; decoded as an empty array")
        return []

    if dialect == Dialect.POSTGRES:
        if not isinstance(value, (list, tuple)):
            raise DecodeError(field, f"expected a native array, got {type(value).__name__}")
        items = list(value)
    elif dialect == Dialect.MARIADB:
        if not isinstance(value, (str, bytes, bytearray, memoryview)):
            raise DecodeError(field, f"expected JSON text, got {type(value).__name__}")
        try:
            items = _to_list(value)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(field, str(e)) from e
    else:
        if not isinstance(value, (list, tuple, str, bytes, bytearray, memoryview)):
            raise DecodeError(field, f"expected an array, got {type(value).__name__}")
        try:
            items = _to_list(value)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(field, str(e)) from e

    if element_type is None:
        return items
    return [None if item is None else _convert(item, element_type, field) for item in items]


def decode_scalar(row: Mapping[str, Any], type_: type[T] | None = None) -> T | None:
    """Decode column 0 of a row; NULL stays None.

    Column 0 is read by position, so repeated column names in a join do not
    shift it.
    """
    if not row:
        raise DecodeError("0", "the row has no columns")
    if isinstance(row, Row):
        field = row.columns[0]
        value = row.raw(0)
    else:
        field = next(iter(row))
        value = row[field]
    if value is None:
        return None
    return _convert(value, type_, field)
