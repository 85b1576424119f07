"""DDL generation and live-type compatibility checks."""

from __future__ import annotations

import re

from relkit.schema.models import ColumnSpec, ColumnType, Entity, IndexKind
from relkit.sql.dialect import Dialect, column_type, format_value, quote_identifier


def _default_sql(col: ColumnSpec, dialect: Dialect) -> str:
    value = format_value(col, col.default, dialect)
    # SQLite only accepts expression defaults inside parentheses
    if dialect == Dialect.SQLITE and "(" in value and not value.startswith("("):
        return f"({value})"
    return value


def field_definition(col: ColumnSpec, dialect: Dialect, for_alter: bool = False) -> str:
    """Column definition as used in CREATE TABLE or ALTER TABLE ADD COLUMN.

    Args:
        col: Column descriptor
        dialect: Target dialect
        for_alter: Render for ALTER TABLE, which cannot add key constraints and
            cannot add a NOT NULL column without a default to a populated table
    """
    parts = [quote_identifier(col.physical_name, dialect), column_type(col, dialect)]
    if col.primary and not for_alter:
        parts.append("PRIMARY KEY")
    if col.auto_random and dialect == Dialect.TIDB:
        parts.append("AUTO_RANDOM")
    elif col.auto_increment and dialect.is_mysql_family:
        parts.append("AUTO_INCREMENT")
    if col.default is not None:
        parts.append(f"DEFAULT {_default_sql(col, dialect)}")
    elif col.not_null and not col.primary and not for_alter:
        parts.append("NOT NULL")
    if col.unique and not col.primary and not (for_alter and dialect == Dialect.SQLITE):
        parts.append("UNIQUE")
    return " ".join(parts)


def table_constraints(entity: Entity, dialect: Dialect) -> list[str]:
    """Table-level FOREIGN KEY constraints for columns that opt in."""
    constraints = []
    for col in entity.columns:
        ref = col.reference
        if ref is None or not ref.foreign_key:
            continue
        sql = (
            f"FOREIGN KEY ({quote_identifier(col.physical_name, dialect)}) "
            f"REFERENCES {quote_identifier(ref.table, dialect)}"
            f"({quote_identifier(ref.column, dialect)})"
        )
        if ref.on_delete is not None:
            sql += f" ON DELETE {ref.on_delete.sql}"
        if ref.on_update is not None:
            sql += f" ON UPDATE {ref.on_update.sql}"
        constraints.append(sql)
    return constraints


def create_table_sql(entity: Entity, dialect: Dialect) -> str:
    """Idempotent CREATE TABLE statement for an entity."""
    definitions = [field_definition(col, dialect) for col in entity.columns]
    definitions.extend(table_constraints(entity, dialect))
    table = quote_identifier(entity.table_name, dialect)
    return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(definitions)})"


def _index_name(entity: Entity, col: ColumnSpec, suffix: str = "index") -> str:
    return f"{entity.table_name}_{col.physical_name}_{suffix}"


def index_statements(entity: Entity, dialect: Dialect) -> list[str]:
    """CREATE INDEX statements for every indexed column."""
    table = quote_identifier(entity.table_name, dialect)
    statements: list[str] = []
    fulltext: list[str] = []
    for col in entity.indices:
        name = quote_identifier(_index_name(entity, col), dialect)
        column = quote_identifier(col.physical_name, dialect)
        kind = col.index
        if dialect.is_mysql_family:
            if kind == IndexKind.TEXT:
                fulltext.append(column)
            elif kind == IndexKind.SPATIAL:
                statements.append(f"CREATE SPATIAL INDEX {name} ON {table} ({column})")
            else:
                method = "HASH" if kind == IndexKind.HASH else "BTREE"
                statements.append(f"CREATE INDEX {name} ON {table} ({column}) USING {method}")
        elif dialect == Dialect.POSTGRES:
            if kind == IndexKind.TEXT:
                text_name = quote_identifier(_index_name(entity, col, "text_index"), dialect)
                statements.append(
                    f"CREATE INDEX IF NOT EXISTS {text_name} ON {table} "
                    f"USING gin(to_tsvector('english', coalesce({column}, '')))"
                )
            else:
                method = {
                    IndexKind.HASH: "hash",
                    IndexKind.GIN: "gin",
                    IndexKind.SPATIAL: "gist",
                }.get(kind, "btree")
                statements.append(
                    f"CREATE INDEX IF NOT EXISTS {name} ON {table} USING {method}({column})"
                )
        else:
            statements.append(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({column})")
    if fulltext:
        name = quote_identifier(f"{entity.table_name}_fulltext", dialect)
        statements.append(f"CREATE FULLTEXT INDEX {name} ON {table} ({','.join(fulltext)})")
    return statements


def ddl_statements(entity: Entity, dialect: Dialect) -> list[str]:
    """CREATE TABLE followed by index DDL."""
    return [create_table_sql(entity, dialect), *index_statements(entity, dialect)]


def ddl(entity: Entity, dialect: Dialect | str) -> str:
    """Full DDL script for an entity, one statement per line."""
    dialect = Dialect.parse(dialect)
    return "".join(f"{stmt};\n" for stmt in ddl_statements(entity, dialect))


def add_column_sql(entity: Entity, col: ColumnSpec, dialect: Dialect) -> str:
    table = quote_identifier(entity.table_name, dialect)
    return f"ALTER TABLE {table} ADD COLUMN {field_definition(col, dialect, for_alter=True)}"


# === Compatibility ===

# Live type names that are interchangeable with each other
_TYPE_GROUPS = (
    frozenset({"SMALLINT", "INT2", "SMALLSERIAL"}),
    frozenset({"INT", "INTEGER", "INT4", "SERIAL", "MEDIUMINT"}),
    frozenset({"BIGINT", "INT8", "BIGSERIAL"}),
    frozenset({"BOOLEAN", "BOOL", "TINYINT"}),
    frozenset({"REAL", "FLOAT", "FLOAT4"}),
    frozenset({"DOUBLE", "DOUBLE PRECISION", "FLOAT8"}),
    frozenset({"NUMERIC", "DECIMAL"}),
    frozenset({"BLOB", "BYTEA", "MEDIUMBLOB", "LONGBLOB"}),
    frozenset({"JSON", "JSONB", "LONGTEXT"}),
    frozenset(
        {
            "TEXT",
            "VARCHAR",
            "CHARACTER VARYING",
            "CHAR",
            "CHARACTER",
            "TINYTEXT",
            "MEDIUMTEXT",
            "LONGTEXT",
            "ENUM",
        }
    ),
)

_PARENS = re.compile(r"\(.*?\)")


def _normalize_type(type_name: str) -> str:
    normalized = _PARENS.sub("", type_name.upper())
    normalized = normalized.replace(" UNSIGNED", "").replace(" ZEROFILL", "")
    return " ".join(normalized.split())


def _is_timestamp(type_name: str) -> bool:
    return type_name.startswith("TIMESTAMP") or type_name == "DATETIME"


def is_compatible(col: ColumnSpec, live_type: str, dialect: Dialect) -> bool:
    """Return True if a live column type can hold the declared column."""
    declared_raw = column_type(col, dialect).upper()
    live_raw = live_type.strip().upper()
    if declared_raw == live_raw:
        return True
    if declared_raw.endswith("[]"):
        return dialect == Dialect.POSTGRES and live_raw == "ARRAY"

    declared, live = _normalize_type(declared_raw), _normalize_type(live_raw)
    if declared == live:
        return True
    if _is_timestamp(declared):
        return _is_timestamp(live)
    if declared == "TIME":
        return live.startswith("TIME") and not live.startswith("TIMESTAMP")
    return any(declared in group and live in group for group in _TYPE_GROUPS)


def type_annotation(col: ColumnSpec, dialect: Dialect) -> str:
    """Cast suffix for a placeholder bound to this column (PostgreSQL only)."""
    if dialect != Dialect.POSTGRES:
        return ""
    if col.type == ColumnType.UUID:
        return "::UUID"
    if col.type in (ColumnType.I64, ColumnType.U64):
        return "::BIGINT"
    if col.type in (ColumnType.I32, ColumnType.U32):
        return "::INT"
    if col.type in (ColumnType.I16, ColumnType.U16):
        return "::SMALLINT"
    if col.type.is_textual:
        return "::TEXT"
    return ""
