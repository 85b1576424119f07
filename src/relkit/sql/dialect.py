"""SQL dialect profiles.

Dialects are a closed set, so they are modelled as a tagged enum and every
dialect-specific rule is an explicit branch here rather than a subclass.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from relkit.core.values import json_dumps
from relkit.exceptions import ConfigError
from relkit.schema.models import ColumnSpec, ColumnType


class Dialect(StrEnum):
    """Supported database families."""

    MYSQL = "mysql"
    MARIADB = "mariadb"
    TIDB = "tidb"
    POSTGRES = "postgres"
    SQLITE = "sqlite"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid dialect names."""
        return [d.value for d in cls]

    @classmethod
    def parse(cls, name: str | Dialect) -> Dialect:
        """Parse a dialect name, accepting common aliases."""
        if isinstance(name, Dialect):
            return name
        key = name.strip().lower()
        key = _DIALECT_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError as e:
            raise ConfigError(
                f"Unknown database type '{name}'. Supported: {', '.join(cls.values())}",
                {"type": name, "supported": cls.values()},
            ) from e

    @property
    def is_mysql_family(self) -> bool:
        return self in (Dialect.MYSQL, Dialect.MARIADB, Dialect.TIDB)

    @property
    def quote_char(self) -> str:
        return "`" if self.is_mysql_family else '"'

    @property
    def supports_returning(self) -> bool:
        return self in (Dialect.POSTGRES, Dialect.SQLITE)

    @property
    def has_native_arrays(self) -> bool:
        return self == Dialect.POSTGRES

    @property
    def supports_multi_row_insert(self) -> bool:
        return True

    @property
    def sqlalchemy_scheme(self) -> str:
        """SQLAlchemy URL scheme of the async DBAPI driver for this dialect."""
        if self.is_mysql_family:
            return "mysql+aiomysql"
        if self == Dialect.POSTGRES:
            return "postgresql+psycopg"
        return "sqlite+aiosqlite"


_DIALECT_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlite3": "sqlite",
}

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Keywords that cannot be used as bare identifiers in SQLite
SQLITE_RESERVED = frozenset(
    {
        "add", "all", "alter", "and", "as", "between", "by", "case", "check", "collate",
        "column", "commit", "constraint", "create", "cross", "default", "delete", "desc",
        "distinct", "drop", "else", "end", "except", "exists", "foreign", "from", "full",
        "group", "having", "in", "index", "inner", "insert", "intersect", "into", "is",
        "join", "key", "left", "like", "limit", "natural", "not", "null", "offset", "on",
        "or", "order", "outer", "primary", "references", "right", "select", "set", "table",
        "then", "to", "transaction", "union", "unique", "update", "using", "values", "when",
        "where", "with",
    }
)  # fmt: skip


def quote_identifier(name: str, dialect: Dialect) -> str:
    """Quote a single identifier, doubling any interior quote characters.

    SQLite identifiers are only quoted when they are not plain words.
    """
    if dialect == Dialect.SQLITE and _SIMPLE_IDENTIFIER.match(name):
        if name.lower() not in SQLITE_RESERVED:
            return name
    quote = dialect.quote_char
    return f"{quote}{name.replace(quote, quote * 2)}{quote}"


def quote_field(key: str, dialect: Dialect) -> str:
    """Quote a possibly qualified field (`table.column`)."""
    if key == "*":
        return key
    if "." in key:
        qualifier, name = key.split(".", 1)
        if name == "*":
            return f"{quote_identifier(qualifier, dialect)}.*"
        return f"{quote_identifier(qualifier, dialect)}.{quote_identifier(name, dialect)}"
    return quote_identifier(key, dialect)


def escape_string(value: str) -> str:
    """Render a string literal with interior single quotes doubled."""
    return "'" + value.replace("'", "''") + "'"


def placeholder(index: int, dialect: Dialect) -> str:
    """Parameter placeholder for the 1-based parameter `index`."""
    if dialect == Dialect.POSTGRES:
        return f"${index}"
    return "?"


# === Type Mapping ===


def _scalar_type(col_type: ColumnType, dialect: Dialect, col: ColumnSpec | None = None) -> str:
    length = col.length if col else None
    if dialect.is_mysql_family:
        mapping = {
            ColumnType.BOOL: "BOOLEAN",
            ColumnType.I16: "SMALLINT",
            ColumnType.I32: "INT",
            ColumnType.I64: "BIGINT",
            ColumnType.U16: "SMALLINT UNSIGNED",
            ColumnType.U32: "INT UNSIGNED",
            ColumnType.U64: "BIGINT UNSIGNED",
            ColumnType.F32: "FLOAT",
            ColumnType.F64: "DOUBLE",
            ColumnType.TEXT: "TEXT",
            ColumnType.BYTES: "BLOB",
            ColumnType.DATE: "DATE",
            ColumnType.TIME: "TIME",
            ColumnType.DATETIME: "TIMESTAMP(6)",
            ColumnType.UUID: "CHAR(36)",
            ColumnType.JSON: "JSON",
        }
        if col_type == ColumnType.STRING:
            return f"VARCHAR({length or 255})"
    elif dialect == Dialect.POSTGRES:
        mapping = {
            ColumnType.BOOL: "BOOLEAN",
            ColumnType.I16: "SMALLINT",
            ColumnType.I32: "INT",
            ColumnType.I64: "BIGINT",
            ColumnType.U16: "SMALLINT",
            ColumnType.U32: "INT",
            ColumnType.U64: "BIGINT",
            ColumnType.F32: "REAL",
            ColumnType.F64: "DOUBLE PRECISION",
            ColumnType.TEXT: "TEXT",
            ColumnType.BYTES: "BYTEA",
            ColumnType.DATE: "DATE",
            ColumnType.TIME: "TIME",
            ColumnType.DATETIME: "TIMESTAMPTZ",
            ColumnType.UUID: "UUID",
            ColumnType.JSON: "JSONB",
        }
        if col_type == ColumnType.STRING:
            return f"VARCHAR({length})" if length else "TEXT"
    else:
        mapping = {
            ColumnType.BOOL: "BOOLEAN",
            ColumnType.F32: "REAL",
            ColumnType.F64: "REAL",
            ColumnType.STRING: "TEXT",
            ColumnType.TEXT: "TEXT",
            ColumnType.BYTES: "BLOB",
            ColumnType.DATE: "DATE",
            ColumnType.TIME: "TIME",
            ColumnType.DATETIME: "TIMESTAMP",
            ColumnType.UUID: "TEXT",
            ColumnType.JSON: "JSON",
        }
        if col_type.is_integer:
            return "INTEGER"
    if col_type == ColumnType.DECIMAL:
        if dialect == Dialect.SQLITE:
            return "TEXT"
        name = "NUMERIC" if dialect == Dialect.POSTGRES else "DECIMAL"
        if col and col.precision:
            if col.scale is not None:
                return f"{name}({col.precision},{col.scale})"
            return f"{name}({col.precision})"
        return name
    return mapping.get(col_type, "TEXT")


def column_type(col: ColumnSpec, dialect: Dialect) -> str:
    """SQL type name of a column for a dialect."""
    if col.type == ColumnType.ARRAY:
        if dialect == Dialect.POSTGRES:
            element_type = col.element_type or ColumnType.TEXT
            if element_type == ColumnType.STRING:
                return "TEXT[]"
            return f"{_scalar_type(element_type, dialect)}[]"
        return "JSON"
    if dialect == Dialect.POSTGRES and col.auto_increment:
        if col.type in (ColumnType.I64, ColumnType.U64):
            return "BIGSERIAL"
        if col.type in (ColumnType.I32, ColumnType.U32):
            return "SERIAL"
        return "SMALLSERIAL"
    return _scalar_type(col.type, dialect, col)


# === Default Expressions ===

# Named generators that may be rendered inline as column defaults
DEFAULT_GENERATORS = frozenset({"now", "today", "tomorrow", "yesterday", "epoch", "uuid"})

_SQLITE_UUID = (
    "lower(hex(randomblob(4))) || '-' || lower(hex(randomblob(2))) || '-4' || "
    "substr(lower(hex(randomblob(2))), 2) || '-' || "
    "substr('89ab', 1 + (abs(random()) % 4), 1) || "
    "substr(lower(hex(randomblob(2))), 2) || '-' || lower(hex(randomblob(6)))"
)


def _datetime_default(name: str, dialect: Dialect) -> str | None:
    if dialect.is_mysql_family:
        return {
            "now": "CURRENT_TIMESTAMP(6)",
            "today": "(CURRENT_DATE)",
            "tomorrow": "(CURRENT_DATE + INTERVAL 1 DAY)",
            "yesterday": "(CURRENT_DATE - INTERVAL 1 DAY)",
            "epoch": "'1970-01-01 00:00:00'",
        }.get(name)
    if dialect == Dialect.POSTGRES:
        return {
            "now": "now()",
            "today": "date_trunc('day', now())",
            "tomorrow": "date_trunc('day', now()) + '1 day'::INTERVAL",
            "yesterday": "date_trunc('day', now()) - '1 day'::INTERVAL",
            "epoch": "'epoch'",
        }.get(name)
    return {
        "now": "CURRENT_TIMESTAMP",
        "today": "datetime('now', 'start of day')",
        "tomorrow": "datetime('now', 'start of day', '+1 day')",
        "yesterday": "datetime('now', 'start of day', '-1 day')",
        "epoch": "'1970-01-01 00:00:00'",
    }.get(name)


def _date_default(name: str, dialect: Dialect) -> str | None:
    if dialect.is_mysql_family:
        return {
            "today": "(CURRENT_DATE)",
            "now": "(CURRENT_DATE)",
            "tomorrow": "(CURRENT_DATE + INTERVAL 1 DAY)",
            "yesterday": "(CURRENT_DATE - INTERVAL 1 DAY)",
            "epoch": "'1970-01-01'",
        }.get(name)
    if dialect == Dialect.POSTGRES:
        return {
            "today": "CURRENT_DATE",
            "now": "CURRENT_DATE",
            "tomorrow": "CURRENT_DATE + 1",
            "yesterday": "CURRENT_DATE - 1",
            "epoch": "'epoch'",
        }.get(name)
    return {
        "today": "CURRENT_DATE",
        "now": "CURRENT_DATE",
        "tomorrow": "date('now', '+1 day')",
        "yesterday": "date('now', '-1 day')",
        "epoch": "'1970-01-01'",
    }.get(name)


def _time_default(name: str, dialect: Dialect) -> str | None:
    if name == "midnight":
        return "'00:00:00'"
    if name != "now":
        return None
    if dialect.is_mysql_family:
        return "(CURRENT_TIME)"
    if dialect == Dialect.POSTGRES:
        return "LOCALTIME"
    return "CURRENT_TIME"


def _uuid_default(name: str, dialect: Dialect) -> str | None:
    if name not in ("uuid", "random"):
        return None
    if dialect.is_mysql_family:
        return "(UUID())"
    if dialect == Dialect.POSTGRES:
        return "gen_random_uuid()"
    return _SQLITE_UUID


def _is_number(value: str) -> bool:
    try:
        Decimal(value)
    except InvalidOperation:
        return False
    return True


def format_value(col: ColumnSpec, value: Any, dialect: Dialect) -> str:
    """Render a column default as an inline SQL expression.

    Only literals and named generators from the default catalog are rendered;
    a value that does not fit the column type becomes NULL.
    """
    if value is None:
        return "NULL"
    col_type = col.type
    if col_type == ColumnType.BOOL:
        truthy = value is True or str(value).lower() in ("true", "1")
        if dialect == Dialect.SQLITE:
            return "1" if truthy else "0"
        return "TRUE" if truthy else "FALSE"
    if col_type.is_numeric:
        if isinstance(value, bool):
            return "1" if value else "0"
        text = str(value)
        return text if _is_number(text) else "NULL"
    if col_type == ColumnType.JSON:
        text = value if isinstance(value, str) else json_dumps(value)
        literal = escape_string(text)
        return f"{literal}::jsonb" if dialect == Dialect.POSTGRES else literal
    if col_type == ColumnType.ARRAY:
        items = list(value) if isinstance(value, (list, tuple)) else str(value).split(",")
        if dialect == Dialect.POSTGRES:
            rendered = ",".join(
                escape_string(str(v)) if isinstance(v, str) else str(v) for v in items
            )
            return f"ARRAY[{rendered}]::{column_type(col, dialect)}"
        return escape_string(json_dumps(items))

    text = str(value)
    generated = None
    if col_type == ColumnType.DATETIME:
        generated = _datetime_default(text, dialect)
    elif col_type == ColumnType.DATE:
        generated = _date_default(text, dialect)
    elif col_type == ColumnType.TIME:
        generated = _time_default(text, dialect)
    elif col_type == ColumnType.UUID:
        generated = _uuid_default(text, dialect)
        if generated is None and dialect == Dialect.POSTGRES:
            return f"{escape_string(text)}::uuid"
    elif col_type == ColumnType.BYTES and dialect == Dialect.POSTGRES:
        return escape_string(f"\\x{text}")
    if generated is not None:
        return generated
    return escape_string(text)
