"""Bound parameter collection and per-dialect value encoding."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from relkit.core.values import ValueKind, json_dumps, kind_of
from relkit.exceptions import EncodeError
from relkit.schema.models import ColumnSpec, ColumnType
from relkit.sql.dialect import Dialect, placeholder


@dataclass(frozen=True)
class Inline:
    """A literal the caller asks to have rendered inline instead of bound.

    Only numbers, booleans and NULL may be inlined.
    """

    value: Any

    def render(self, dialect: Dialect) -> str:
        value = self.value
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            if dialect == Dialect.SQLITE:
                return "1" if value else "0"
            return "TRUE" if value else "FALSE"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        raise EncodeError(
            f"Only numeric, boolean or NULL literals can be inlined, got '{type(value).__name__}'.",
            {"type": type(value).__name__},
        )


def encode_value(value: Any, dialect: Dialect, column: ColumnSpec | None = None) -> Any:
    """Convert a Python value into what the dialect's driver binds natively.

    Raises:
        EncodeError: If the value cannot be bound
    """
    kind = kind_of(value)
    if kind == ValueKind.NULL:
        return None
    col_type = column.type if column is not None else None

    if col_type == ColumnType.JSON:
        if kind == ValueKind.STRING:
            return value
        return json_dumps(value)
    if kind == ValueKind.ARRAY:
        if dialect.has_native_arrays:
            return [encode_value(v, dialect) for v in value]
        return json_dumps(list(value))
    if kind == ValueKind.OBJECT:
        return json_dumps(value)
    if kind == ValueKind.UUID:
        return value if dialect == Dialect.POSTGRES else str(value)
    if kind == ValueKind.DECIMAL and dialect == Dialect.SQLITE:
        return str(value)
    if dialect == Dialect.SQLITE:
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
    if col_type == ColumnType.UUID and kind == ValueKind.STRING and dialect == Dialect.POSTGRES:
        try:
            return UUID(value)
        except ValueError as e:
            raise EncodeError(
                f"'{value}' is not a valid uuid.",
                {"value": value},
            ) from e
    if kind == ValueKind.BYTES:
        return bytes(value)
    return value


class ParamBuffer:
    """Collects bound values while SQL is rendered left to right.

    The buffer hands out placeholders in the order values are bound, so the
    n-th placeholder in the text always refers to the n-th value.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.values: list[Any] = []

    def bind(self, value: Any, column: ColumnSpec | None = None) -> str:
        """Bind a value and return its placeholder, or render an `Inline` literal."""
        if isinstance(value, Inline):
            return value.render(self.dialect)
        self.values.append(encode_value(value, self.dialect, column))
        return placeholder(len(self.values), self.dialect)

    def bind_raw(self, value: Any) -> str:
        """Bind a value that is already encoded."""
        self.values.append(value)
        return placeholder(len(self.values), self.dialect)

    def bind_many(self, values: Any, column: ColumnSpec | None = None) -> str:
        """Bind every item of a sequence, returning comma-joined placeholders."""
        return ",".join(self.bind(v, column) for v in values)

    def __len__(self) -> int:
        return len(self.values)
