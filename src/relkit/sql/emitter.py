"""Render queries and mutations to `(sql, params)`.

Rendering is a pure function of the statement and the dialect. Values
are bound in the order they appear in the SQL text, so placeholder `n`
always refers to `params[n - 1]`. LIMIT and OFFSET are validated integers
and are inlined.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from relkit.core.values import json_dumps
from relkit.exceptions import (
    BuildError,
    FieldNotFoundError,
    MixedAggregationError,
    SetOpArityMismatchError,
    UnboundedMutationError,
)
from relkit.query.aggregate import AggregateFunction, Aggregation, Window, WindowFunction
from relkit.query.builder import Aliased, LockMode, Query, SortKey, Statement
from relkit.query.filters import (
    And,
    Exists,
    Filter,
    Not,
    Or,
    Overlaps,
    Predicate,
    Ref,
    Sample,
    TextSearch,
)
from relkit.query.join import JoinKind
from relkit.query.mutation import Assignment, Mutation, MutationKind, UpdateOperator
from relkit.schema.models import ColumnSpec, ColumnType, Entity
from relkit.sql.dialect import (
    Dialect,
    column_type,
    format_value,
    quote_field,
    quote_identifier,
)
from relkit.sql.filters import (
    format_filter,
    format_overlaps,
    format_sample,
    format_text_search,
)
from relkit.sql.params import ParamBuffer

# Largest row count MySQL accepts in LIMIT, used to express "no limit"
MYSQL_MAX_LIMIT = 18446744073709551615

_COMPARISONS = frozenset({"=", "<>", "<", "<=", ">", ">="})


class _Scope:
    """Resolves field keys against the entities visible to one SELECT."""

    def __init__(
        self,
        entities: Sequence[Entity],
        params: ParamBuffer,
        outer: _Scope | None = None,
    ) -> None:
        self.entities = list(entities)
        self.params = params
        self.dialect = params.dialect
        self.outer = outer

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.dialect)

    def qualified(self, entity: Entity, col: ColumnSpec) -> str:
        return f"{self.quote(entity.table_name)}.{self.quote(col.physical_name)}"

    def _owner(self, qualifier: str) -> Entity | None:
        for entity in self.entities:
            if entity.owns(qualifier):
                return entity
        if self.outer is not None:
            return self.outer._owner(qualifier)
        return None

    def resolve(self, key: str, allow_alias: bool = False) -> tuple[str, ColumnSpec | None]:
        """Quoted expression and descriptor for a field key."""
        if key == "*":
            return "*", None
        if "." in key:
            qualifier, name = key.split(".", 1)
            owner = self._owner(qualifier)
            if owner is None:
                return quote_field(key, self.dialect), None
            if name == "*":
                return f"{self.quote(owner.table_name)}.*", None
            col = owner.column(name)
            return self.qualified(owner, col), col
        for entity in self.entities:
            col = entity.find_column(key)
            if col is not None:
                return self.quote(col.physical_name), col
        if allow_alias:
            return self.quote(key), None
        main = self.entities[0]
        raise FieldNotFoundError(key, main.name, main.column_names)

    def qualify(self, key: str) -> str:
        """Table-qualified expression for a field key."""
        if key == "*" or "." in key:
            return self.resolve(key)[0]
        for entity in self.entities:
            col = entity.find_column(key)
            if col is not None:
                return self.qualified(entity, col)
        main = self.entities[0]
        raise FieldNotFoundError(key, main.name, main.column_names)


# === Expressions ===


def _aggregate_sql(agg: Aggregation, scope: _Scope) -> str:
    dialect = scope.dialect
    fn = agg.function
    x = scope.qualify(agg.field)
    if fn == AggregateFunction.COUNT:
        return f"count({x})"
    if fn == AggregateFunction.COUNT_DISTINCT:
        return f"count(DISTINCT {x})"
    if fn in (
        AggregateFunction.SUM,
        AggregateFunction.AVG,
        AggregateFunction.MIN,
        AggregateFunction.MAX,
    ):
        return f"{fn.value}({x})"
    if fn == AggregateFunction.STDDEV:
        if dialect == Dialect.SQLITE:
            return f"sqrt(avg({x} * {x}) - avg({x}) * avg({x}))"
        return f"stddev({x})"
    if fn == AggregateFunction.VARIANCE:
        if dialect == Dialect.SQLITE:
            return f"(avg({x} * {x}) - avg({x}) * avg({x}))"
        return f"variance({x})"
    if fn == AggregateFunction.JSON_ARRAYAGG:
        if dialect == Dialect.POSTGRES:
            return f"jsonb_agg({x})"
        if dialect == Dialect.SQLITE:
            return f"json_group_array({x})"
        return f"json_arrayagg({x})"
    y = scope.qualify(agg.value_field or "")
    if dialect == Dialect.POSTGRES:
        return f"jsonb_object_agg({x}, {y})"
    if dialect == Dialect.SQLITE:
        return f"json_group_object({x}, {y})"
    return f"json_objectagg({x}, {y})"


def _window_sql(window: Window, scope: _Scope) -> str:
    fn = window.function
    if fn == WindowFunction.AGGREGATE:
        agg = window.aggregation
        if agg is None:
            raise BuildError("An aggregate window needs an aggregation")
        if scope.dialect == Dialect.SQLITE and agg.function in (
            AggregateFunction.STDDEV,
            AggregateFunction.VARIANCE,
        ):
            raise BuildError(f"SQLite has no {agg.function} window function")
        call = _aggregate_sql(agg, scope)
    elif fn in (WindowFunction.LAG, WindowFunction.LEAD, WindowFunction.NTH_VALUE):
        call = f"{fn.value}({scope.qualify(window.field or '')}, {window.argument})"
    elif fn in (WindowFunction.FIRST_VALUE, WindowFunction.LAST_VALUE):
        call = f"{fn.value}({scope.qualify(window.field or '')})"
    elif fn == WindowFunction.NTILE:
        call = f"ntile({window.argument})"
    else:
        call = f"{fn.value}()"

    clauses = []
    if window.partition_by:
        clauses.append("PARTITION BY " + ", ".join(scope.qualify(f) for f in window.partition_by))
    if window.order_by:
        keys = [
            f"{scope.qualify(field)} {'DESC' if descending else 'ASC'}"
            for field, descending in window.order_by
        ]
        clauses.append("ORDER BY " + ", ".join(keys))
    if window.frame is not None:
        clauses.append(window.frame.render())
    return f"{call} OVER ({' '.join(clauses)})"


def _render_filter(node: Filter, scope: _Scope, nested: bool = False, having: bool = False) -> str:
    if isinstance(node, Predicate):
        if isinstance(node.target, Aggregation):
            expr, col = _aggregate_sql(node.target, scope), None
        else:
            expr, col = scope.resolve(node.target, allow_alias=having)
        if isinstance(node.value, Ref):
            other = scope.resolve(node.value.field)[0]
            op = node.op if node.op in _COMPARISONS else "="
            return f"{expr} {op} {other}"
        return format_filter(expr, col, node.op, node.value, scope.params)
    if isinstance(node, And):
        sql = " AND ".join(_render_filter(n, scope, True, having) for n in node.nodes)
        return f"({sql})" if nested else sql
    if isinstance(node, Or):
        return "(" + " OR ".join(_render_filter(n, scope, True, having) for n in node.nodes) + ")"
    if isinstance(node, Not):
        return f"NOT ({_render_filter(node.node, scope, False, having)})"
    if isinstance(node, Overlaps):
        start = scope.resolve(node.start)[0]
        end = scope.resolve(node.end)[0]
        return format_overlaps(start, end, node.lower, node.upper, scope.params)
    if isinstance(node, TextSearch):
        exprs = [scope.resolve(f)[0] for f in node.fields]
        return format_text_search(exprs, node.query, scope.params)
    if isinstance(node, Sample):
        return format_sample(node.probability, scope.params)
    if isinstance(node, Exists):
        keyword = "NOT EXISTS" if node.negated else "EXISTS"
        return f"{keyword} ({_select_sql(node.query, scope.params, outer=scope)})"
    raise BuildError(f"Unsupported filter node {type(node).__name__}")


def render_filter(node: Filter, entity: Entity, params: ParamBuffer) -> str:
    """Render a filter tree against a single entity."""
    return _render_filter(node, _Scope([entity], params))


# === SELECT ===


def _projection_name(field: str | Aliased) -> str:
    return field.field if isinstance(field, Aliased) else field


def _check_aggregation(query: Query, scope: _Scope) -> list[str]:
    """Validate grouping and return group-by keys to project implicitly."""
    if not query.has_aggregation:
        return []
    grouped = {scope.resolve(g)[0] for g in query.grouping}
    plain = [_projection_name(f) for f in query.fields if isinstance(f, (str, Aliased))]
    ungrouped = [name for name in plain if name == "*" or scope.resolve(name)[0] not in grouped]
    if ungrouped:
        raise MixedAggregationError(ungrouped)
    projected = {scope.resolve(name)[0] for name in plain}
    return [g for g in query.grouping if scope.resolve(g)[0] not in projected]


def _plain_field_sql(field: str | Aliased, scope: _Scope) -> str:
    if isinstance(field, Aliased):
        return f"{scope.resolve(field.field)[0]} AS {scope.quote(field.alias)}"
    expr, col = scope.resolve(field)
    if col is not None and "." not in field and col.physical_name != col.name:
        return f"{expr} AS {scope.quote(col.name)}"
    return expr


def _projection_sql(query: Query, scope: _Scope, implicit: list[str]) -> str:
    items: list[tuple[bool, str]] = [(False, _plain_field_sql(g, scope)) for g in implicit]
    for field in query.fields:
        if isinstance(field, Aggregation):
            expr = _aggregate_sql(field, scope)
            items.append((True, f"{expr} AS {scope.quote(field.output_name)}"))
        elif isinstance(field, Window):
            expr = _window_sql(field, scope)
            items.append((True, f"{expr} AS {scope.quote(field.output_name)}"))
        else:
            items.append((False, _plain_field_sql(field, scope)))
    if not items:
        return "*"
    sql = items[0][1]
    for (prev_is_expr, _), (is_expr, text) in zip(items, items[1:]):
        sql += (", " if is_expr or prev_is_expr else ",") + text
    return sql


def _sort_sql(key: SortKey, scope: _Scope) -> str:
    expr = scope.resolve(key.field, allow_alias=True)[0]
    direction = "DESC" if key.descending else "ASC"
    if not key.nulls_last:
        return f"{expr} {direction}"
    if scope.dialect.is_mysql_family:
        return f"{expr} IS NULL, {expr} {direction}"
    return f"{expr} {direction} NULLS LAST"


def _pagination_sql(query: Query, dialect: Dialect) -> str:
    limit, offset = query.limit_count, query.offset_count
    if limit is not None:
        sql = f" LIMIT {limit}"
        return sql + f" OFFSET {offset}" if offset is not None else sql
    if offset is None:
        return ""
    if dialect.is_mysql_family:
        return f" LIMIT {MYSQL_MAX_LIMIT} OFFSET {offset}"
    if dialect == Dialect.SQLITE:
        return f" LIMIT -1 OFFSET {offset}"
    return f" OFFSET {offset}"


def _lock_sql(lock: LockMode, dialect: Dialect) -> str:
    if lock == LockMode.NONE or dialect == Dialect.SQLITE:
        return ""
    if lock == LockMode.UPDATE:
        return " FOR UPDATE"
    if dialect == Dialect.MARIADB:
        return " LOCK IN SHARE MODE"
    return " FOR SHARE"


def _select_sql(query: Query, params: ParamBuffer, outer: _Scope | None = None) -> str:
    dialect = params.dialect
    for join in query.joins:
        join.validate()
        if join.kind == JoinKind.FULL and dialect.is_mysql_family:
            raise BuildError(f"{dialect} does not support FULL JOIN")
    for operation in query.set_operations:
        left, right = query.arity(), operation.query.arity()
        if left != right:
            raise SetOpArityMismatchError(operation.operator.value, left, right)
    if query.set_operations and query.lock != LockMode.NONE:
        raise BuildError("A locking clause cannot be combined with set operators")

    scope = _Scope([query.entity, *(j.entity for j in query.joins)], params, outer)
    implicit = _check_aggregation(query, scope)

    sql = "SELECT DISTINCT " if query.is_distinct else "SELECT "
    sql += _projection_sql(query, scope, implicit)
    sql += f" FROM {scope.quote(query.entity.table_name)}"
    for join in query.joins:
        sql += f" {join.kind.sql} {scope.quote(join.entity.table_name)}"
        if join.conditions:
            conditions = [
                f"{scope.resolve(c.left)[0]} {c.op} {scope.resolve(c.right)[0]}"
                for c in join.conditions
            ]
            sql += " ON " + " AND ".join(conditions)
    if query.where is not None:
        sql += f" WHERE {_render_filter(query.where, scope)}"
    if query.grouping:
        sql += " GROUP BY " + ", ".join(scope.resolve(g)[0] for g in query.grouping)
    if query.having_filter is not None:
        sql += f" HAVING {_render_filter(query.having_filter, scope, having=True)}"
    for operation in query.set_operations:
        keyword = f"{operation.operator.value} ALL" if operation.all else operation.operator.value
        sql += f" {keyword} {_select_sql(operation.query, params, outer)}"
    if query.sort:
        sql += " ORDER BY " + ", ".join(_sort_sql(key, scope) for key in query.sort)
    sql += _pagination_sql(query, dialect)
    sql += _lock_sql(query.lock, dialect)
    return sql


def render_query(query: Query, dialect: Dialect) -> Statement:
    """Render a SELECT statement.

    Raises:
        BuildError: If the query violates a builder contract
    """
    params = ParamBuffer(dialect)
    sql = _select_sql(query, params)
    return Statement(sql, params.values)


# === Mutations ===


def _as_items(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _concat_sql(col: ColumnSpec, c: str, value: Any, params: ParamBuffer, prepend: bool) -> str:
    dialect = params.dialect
    if col.type == ColumnType.ARRAY:
        items = _as_items(value)
        if dialect == Dialect.POSTGRES:
            arg = f"{params.bind(items, col)}::{column_type(col, dialect)}"
            return f"{arg} || {c}" if prepend else f"{c} || {arg}"
        if dialect.is_mysql_family:
            arg = params.bind(items, col)
            current = f"COALESCE({c}, JSON_ARRAY())"
            if prepend:
                return f"JSON_MERGE_PRESERVE({arg}, {current})"
            return f"JSON_MERGE_PRESERVE({current}, {arg})"
        current = f"COALESCE({c}, '[]')"
        if prepend:
            head = params.bind(items)
            return (
                f"(SELECT json_group_array(value) FROM (SELECT value FROM json_each({head}) "
                f"UNION ALL SELECT value FROM json_each({current})))"
            )
        pairs = ", ".join(f"'$[#]', {params.bind(item)}" for item in items)
        return f"json_insert({current}, {pairs})"
    arg = params.bind(value)
    if dialect.is_mysql_family:
        return f"CONCAT({arg}, {c})" if prepend else f"CONCAT({c}, {arg})"
    return f"{arg} || {c}" if prepend else f"{c} || {arg}"


def _pull_sql(col: ColumnSpec, c: str, value: Any, params: ParamBuffer) -> str:
    dialect = params.dialect
    if col.type != ColumnType.ARRAY:
        raise BuildError(f"$pull needs an array column, '{col.name}' is {col.type}")
    if dialect == Dialect.POSTGRES:
        return f"array_remove({c}, {params.bind(value)})"
    if dialect.is_mysql_family:
        item = params.bind_raw(json_dumps(value))
        return (
            f"(SELECT COALESCE(JSON_ARRAYAGG(jt.item), JSON_ARRAY()) FROM JSON_TABLE({c}, '$[*]' "
            f"COLUMNS (item JSON PATH '$')) AS jt WHERE jt.item <> CAST({item} AS JSON))"
        )
    item = params.bind(value)
    return f"(SELECT json_group_array(value) FROM json_each({c}) WHERE value <> {item})"


def _assignment_sql(assignment: Assignment, entity: Entity, params: ParamBuffer) -> str:
    dialect = params.dialect
    col = entity.column(assignment.field)
    c = quote_identifier(col.physical_name, dialect)
    op, value = assignment.operator, assignment.value
    if op == UpdateOperator.SET:
        return f"{c} = {params.bind(value, col)}"
    if op == UpdateOperator.NOW:
        if col.type not in (ColumnType.DATETIME, ColumnType.DATE, ColumnType.TIME):
            raise BuildError(f"set_now() needs a date/time column, '{col.name}' is {col.type}")
        return f"{c} = {format_value(col, 'now', dialect)}"
    if op == UpdateOperator.INC:
        return f"{c} = {c} + {params.bind(value, col)}"
    if op == UpdateOperator.MUL:
        return f"{c} = {c} * {params.bind(value, col)}"
    if op in (UpdateOperator.MIN, UpdateOperator.MAX):
        if dialect == Dialect.SQLITE:
            fn = "MIN" if op == UpdateOperator.MIN else "MAX"
        else:
            fn = "LEAST" if op == UpdateOperator.MIN else "GREATEST"
        return f"{c} = {fn}({c}, {params.bind(value, col)})"
    if op in (UpdateOperator.APPEND, UpdateOperator.PREPEND):
        return f"{c} = {_concat_sql(col, c, value, params, op == UpdateOperator.PREPEND)}"
    return f"{c} = {_pull_sql(col, c, value, params)}"


def _upsert_sql(mutation: Mutation, dialect: Dialect) -> str:
    entity = mutation.entity

    def quoted(name: str) -> str:
        return quote_identifier(entity.column(name).physical_name, dialect)

    targets = [quoted(key) for key in mutation.conflict_target]
    if mutation.update_columns is not None:
        updates = [quoted(name) for name in mutation.update_columns]
    else:
        updates = [
            quoted(name) for name in mutation.columns if name not in mutation.conflict_target
        ]
    if dialect.is_mysql_family:
        if not updates:
            return f" ON DUPLICATE KEY UPDATE {targets[0]} = {targets[0]}"
        return " ON DUPLICATE KEY UPDATE " + ", ".join(f"{u} = VALUES({u})" for u in updates)
    conflict = f" ON CONFLICT ({','.join(targets)})"
    if not updates:
        return conflict + " DO NOTHING"
    return conflict + " DO UPDATE SET " + ", ".join(f"{u} = EXCLUDED.{u}" for u in updates)


def _returning_sql(mutation: Mutation, dialect: Dialect) -> str:
    if not mutation.returning_fields or not dialect.supports_returning:
        return ""
    parts = []
    for name in mutation.returning_fields:
        col = mutation.entity.column(name)
        expr = quote_identifier(col.physical_name, dialect)
        if col.physical_name != col.name:
            expr += f" AS {quote_identifier(col.name, dialect)}"
        parts.append(expr)
    return " RETURNING " + ",".join(parts)


def render_mutation(mutation: Mutation, dialect: Dialect) -> Statement:
    """Render an INSERT, UPDATE, DELETE or upsert statement.

    Raises:
        BuildError: If the mutation violates a builder contract
    """
    entity = mutation.entity
    params = ParamBuffer(dialect)
    table = quote_identifier(entity.table_name, dialect)
    kind = mutation.kind

    if kind in (MutationKind.INSERT, MutationKind.UPSERT):
        cols = [entity.column(name) for name in mutation.columns]
        col_list = ",".join(quote_identifier(col.physical_name, dialect) for col in cols)
        rows = [
            "(" + ",".join(params.bind(v, col) for v, col in zip(row, cols)) + ")"
            for row in mutation.rows
        ]
        sql = f"INSERT INTO {table} ({col_list}) VALUES {','.join(rows)}"
        if kind == MutationKind.UPSERT:
            sql += _upsert_sql(mutation, dialect)
    else:
        if mutation.where is None and not mutation.all_rows:
            raise UnboundedMutationError(kind.value, entity.name)
        if kind == MutationKind.UPDATE:
            if not mutation.assignments:
                raise BuildError(f"UPDATE on '{entity.name}' has no assignments")
            sets = ", ".join(_assignment_sql(a, entity, params) for a in mutation.assignments)
            sql = f"UPDATE {table} SET {sets}"
        else:
            sql = f"DELETE FROM {table}"
        if mutation.where is not None:
            sql += f" WHERE {_render_filter(mutation.where, _Scope([entity], params))}"
    sql += _returning_sql(mutation, dialect)
    return Statement(sql, params.values)
