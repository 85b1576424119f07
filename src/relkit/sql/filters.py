"""Dialect translation of filter predicates.

`format_filter` always returns valid SQL: an operator or value shape that
does not fit the column falls back to `column = value` as a bound parameter.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from relkit.core.values import json_dumps
from relkit.exceptions import EncodeError
from relkit.schema.ddl import type_annotation
from relkit.schema.models import ColumnSpec, ColumnType
from relkit.sql.dialect import Dialect, column_type
from relkit.sql.params import ParamBuffer

logger = logging.getLogger(__name__)

_COMPARISONS = frozenset({"=", "<>", "<", "<=", ">", ">="})

_sqlite_text_search_warned = False


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _holds_sequence(column: ColumnSpec | None) -> bool:
    return column is not None and column.type in (ColumnType.ARRAY, ColumnType.JSON)


def _uuid_cast(column: ColumnSpec | None, dialect: Dialect) -> str:
    if column is not None and column.type == ColumnType.UUID:
        return type_annotation(column, dialect)
    return ""


def _fallback(expr: str, column: ColumnSpec | None, value: Any, params: ParamBuffer) -> str:
    try:
        return f"{expr} = {params.bind(value, column)}"
    except EncodeError:
        return f"{expr} = {params.bind(str(value))}"


def format_filter(
    expr: str,
    column: ColumnSpec | None,
    op: str,
    value: Any,
    params: ParamBuffer,
) -> str:
    """Render one predicate on an already-quoted column expression.

    Args:
        expr: Quoted column expression
        column: Column descriptor, if the expression is a known column
        op: Operator (one of `relkit.query.filters.OPERATORS`)
        value: Operand
        params: Parameter buffer receiving bound values

    Returns:
        SQL fragment
    """
    dialect = params.dialect
    op = op.lower()

    if op == "is null":
        return f"{expr} IS NULL"
    if op == "is not null":
        return f"{expr} IS NOT NULL"

    if op in _COMPARISONS:
        if value is None and op in ("=", "<>"):
            return f"{expr} IS NULL" if op == "=" else f"{expr} IS NOT NULL"
        if _is_sequence(value) and not _holds_sequence(column):
            if op == "=":
                return format_filter(expr, column, "in", value, params)
            if op == "<>":
                return format_filter(expr, column, "not in", value, params)
            return _fallback(expr, column, value, params)
        return f"{expr} {op} {params.bind(value, column)}{_uuid_cast(column, dialect)}"

    if op in ("in", "not in"):
        values = list(value) if _is_sequence(value) else [value]
        if not values:
            return "1 = 0" if op == "in" else "1 = 1"
        keyword = "IN" if op == "in" else "NOT IN"
        cast = _uuid_cast(column, dialect)
        placeholders = ",".join(f"{params.bind(v, column)}{cast}" for v in values)
        return f"{expr} {keyword} ({placeholders})"

    if op == "between":
        if _is_sequence(value) and len(value) == 2:
            low, high = tuple(value)
            return f"{expr} BETWEEN {params.bind(low, column)} AND {params.bind(high, column)}"
        return _fallback(expr, column, value, params)

    if op == "like" and isinstance(value, str):
        return f"{expr} LIKE {params.bind(value)}"

    if op == "ilike" and isinstance(value, str):
        if dialect == Dialect.POSTGRES:
            return f"{expr} ILIKE {params.bind(value)}"
        return f"LOWER({expr}) LIKE LOWER({params.bind(value)})"

    if op == "@>":
        values = list(value) if _is_sequence(value) else [value]
        return _format_contains(expr, column, values, params)

    return _fallback(expr, column, value, params)


def _format_contains(
    expr: str, column: ColumnSpec | None, values: list[Any], params: ParamBuffer
) -> str:
    dialect = params.dialect
    if dialect == Dialect.POSTGRES:
        if column is not None and column.type == ColumnType.JSON:
            return f"{expr} @> {params.bind_raw(json_dumps(values))}::jsonb"
        if column is not None and column.type == ColumnType.ARRAY:
            return f"{expr} @> {params.bind(values)}::{column_type(column, dialect)}"
        return f"{expr} @> {params.bind(values)}"
    if dialect.is_mysql_family:
        return f"JSON_CONTAINS({expr}, {params.bind_raw(json_dumps(values))})"
    if not values:
        return "1 = 1"
    parts = [
        f"EXISTS (SELECT 1 FROM json_each({expr}) WHERE json_each.value = {params.bind(v)})"
        for v in values
    ]
    return parts[0] if len(parts) == 1 else "(" + " AND ".join(parts) + ")"


def format_overlaps(
    start: str, end: str, lower: Any, upper: Any, params: ParamBuffer
) -> str:
    """Range overlap of `[start, end]` with `[lower, upper]`."""
    if params.dialect == Dialect.POSTGRES:
        return f"({start}, {end}) OVERLAPS ({params.bind(lower)}, {params.bind(upper)})"
    return f"({start} <= {params.bind(upper)} AND {end} >= {params.bind(lower)})"


def format_text_search(exprs: Sequence[str], query: str, params: ParamBuffer) -> str:
    """Full-text search over one or more columns.

    SQLite has no built-in full-text operator on plain tables, so the search
    degrades to a substring match.
    """
    global _sqlite_text_search_warned
    dialect = params.dialect
    if dialect.is_mysql_family:
        return f"MATCH({','.join(exprs)}) AGAINST ({params.bind(query)} IN NATURAL LANGUAGE MODE)"
    if dialect == Dialect.POSTGRES:
        document = exprs[0] if len(exprs) == 1 else f"concat_ws(' ', {', '.join(exprs)})"
        return f"to_tsvector({document}) @@ plainto_tsquery({params.bind(query)})"

    if not _sqlite_text_search_warned:
        logger.warning("SQLite has no full-text operator; text search falls back to LIKE")
        _sqlite_text_search_warned = True
    parts = [f"{expr} LIKE {params.bind(f'%{query}%')}" for expr in exprs]
    return parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")"


def format_sample(probability: float, params: ParamBuffer) -> str:
    """Keep each row with the given probability."""
    dialect = params.dialect
    if dialect.is_mysql_family:
        return f"rand() < {params.bind(probability)}"
    if dialect == Dialect.POSTGRES:
        return f"random() < {params.bind(probability)}"
    return f"(random() / 18446744073709551616.0 + 0.5) < {params.bind(probability)}"
