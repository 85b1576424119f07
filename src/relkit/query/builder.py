"""Immutable SELECT query specifications.

Every chainable method returns a new `Query`; nothing here performs I/O.
Rendering is done by `relkit.sql.emitter`:

    >>> q = (
    ...     select(User, "id", "name")
    ...     .filter(in_("status", ["Active", "Inactive"]))
    ...     .order_by("id")
    ...     .limit(10)
    ... )
    >>> sql, params = q.build(Dialect.MYSQL)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, NamedTuple

from relkit.exceptions import BuildError
from relkit.query.aggregate import Aggregation, Window
from relkit.query.filters import Filter, and_, gt, lt, parse_filter
from relkit.query.join import Join
from relkit.schema.models import Entity
from relkit.schema.registry import resolve_entity
from relkit.sql.dialect import Dialect


class Statement(NamedTuple):
    """Rendered SQL and its bound parameters, in placeholder order."""

    sql: str
    params: list[Any]


class LockMode(StrEnum):
    NONE = "none"
    SHARE = "share"
    UPDATE = "update"


class SetOperator(StrEnum):
    UNION = "UNION"
    INTERSECT = "INTERSECT"
    EXCEPT = "EXCEPT"


@dataclass(frozen=True)
class Aliased:
    """A plain field projected under another name."""

    field: str
    alias: str


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False
    nulls_last: bool = False


@dataclass(frozen=True)
class SetOperation:
    operator: SetOperator
    query: Query
    all: bool = False


Projection = str | Aliased | Aggregation | Window


def alias(field: str, name: str) -> Aliased:
    return Aliased(field, name)


def as_filter(node: Filter | Mapping[str, Any] | None) -> Filter | None:
    if node is None or isinstance(node, Filter):
        return node
    return parse_filter(node)


def _check_count(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise BuildError(f"{name} must be a non-negative integer, got {value!r}", {name: value})
    return value


@dataclass(frozen=True)
class Query:
    """Specification of a SELECT statement over one entity."""

    entity: Entity
    fields: tuple[Projection, ...] = ()
    is_distinct: bool = False
    where: Filter | None = None
    joins: tuple[Join, ...] = ()
    grouping: tuple[str, ...] = ()
    having_filter: Filter | None = None
    sort: tuple[SortKey, ...] = ()
    limit_count: int | None = None
    offset_count: int | None = None
    set_operations: tuple[SetOperation, ...] = ()
    lock: LockMode = LockMode.NONE

    # === Projection ===

    def select(self, *fields: Projection) -> Query:
        """Append projection elements (fields, aliases, aggregations or windows)."""
        return replace(self, fields=self.fields + fields)

    def aggregate(self, *aggregations: Aggregation) -> Query:
        return replace(self, fields=self.fields + aggregations)

    def window(self, window: Window) -> Query:
        return replace(self, fields=self.fields + (window,))

    def distinct(self) -> Query:
        return replace(self, is_distinct=True)

    # === Filtering ===

    def filter(self, *nodes: Filter | Mapping[str, Any] | None) -> Query:
        """AND the given filters (or filter mappings) into the WHERE clause."""
        parsed = [as_filter(n) for n in nodes]
        parsed = [n for n in parsed if n is not None]
        if not parsed:
            return self
        return replace(self, where=and_(self.where, *parsed))

    def join(self, join: Join) -> Query:
        return replace(self, joins=self.joins + (join,))

    def group_by(self, *fields: str) -> Query:
        return replace(self, grouping=self.grouping + fields)

    def having(self, *nodes: Filter) -> Query:
        if not nodes:
            return self
        return replace(self, having_filter=and_(self.having_filter, *nodes))

    # === Ordering & pagination ===

    def order_by(self, field: str, descending: bool = False, nulls_last: bool = False) -> Query:
        return replace(self, sort=self.sort + (SortKey(field, descending, nulls_last),))

    def order_asc(self, field: str) -> Query:
        return self.order_by(field)

    def order_desc(self, field: str, nulls_last: bool = False) -> Query:
        return self.order_by(field, descending=True, nulls_last=nulls_last)

    def limit(self, n: int) -> Query:
        return replace(self, limit_count=_check_count("limit", n))

    def offset(self, n: int) -> Query:
        return replace(self, offset_count=_check_count("offset", n))

    def paginate(self, page: int, page_size: int) -> Query:
        """1-based page of `page_size` rows."""
        if page < 1:
            raise BuildError(f"page must be >= 1, got {page}", {"page": page})
        return self.limit(page_size).offset((page - 1) * page_size)

    def paginate_after(self, last_seen: Any) -> Query:
        """Keyset pagination: rows after `last_seen` in primary-key order.

        Replaces any offset by a filter on the primary key. The query must
        be unsorted or sorted by the primary key only.
        """
        pk = self.entity.primary_key
        sort = self.sort
        if not sort:
            sort = (SortKey(pk.name),)
        if len(sort) != 1 or self.entity.find_column(sort[0].field) is not pk:
            raise BuildError(
                "paginate_after() requires the query to be sorted by the primary key only",
                {"primary_key": pk.name, "sort": [key.field for key in self.sort]},
            )
        keyset = lt(pk.name, last_seen) if sort[0].descending else gt(pk.name, last_seen)
        return replace(self, sort=sort, offset_count=None, where=and_(self.where, keyset))

    # === Set operators ===

    def _combine(self, operator: SetOperator, other: Query, all: bool) -> Query:
        if other.sort or other.limit_count is not None or other.offset_count is not None:
            raise BuildError(
                f"The right-hand query of {operator} cannot carry ORDER BY, LIMIT or OFFSET",
                {"operator": operator.value},
            )
        operation = SetOperation(operator, other, all)
        return replace(self, set_operations=self.set_operations + (operation,))

    def union(self, other: Query, all: bool = False) -> Query:
        return self._combine(SetOperator.UNION, other, all)

    def intersect(self, other: Query, all: bool = False) -> Query:
        return self._combine(SetOperator.INTERSECT, other, all)

    def except_(self, other: Query, all: bool = False) -> Query:
        return self._combine(SetOperator.EXCEPT, other, all)

    # === Locking ===

    def for_update(self) -> Query:
        return replace(self, lock=LockMode.UPDATE)

    def for_share(self) -> Query:
        return replace(self, lock=LockMode.SHARE)

    # === Introspection ===

    @property
    def has_aggregation(self) -> bool:
        return any(isinstance(f, Aggregation) for f in self.fields)

    def arity(self) -> int:
        """Number of columns this query projects."""
        if not self.fields:
            return len(self.entity.columns) + sum(len(j.entity.columns) for j in self.joins)
        total = 0
        for f in self.fields:
            if f == "*":
                total += len(self.entity.columns)
            elif isinstance(f, str) and f.endswith(".*"):
                qualifier = f[:-2]
                entities = (self.entity, *(j.entity for j in self.joins))
                owner = next((e for e in entities if e.owns(qualifier)), None)
                total += len(owner.columns) if owner else 1
            else:
                total += 1
        if self.has_aggregation:
            projected = {f for f in self.fields if isinstance(f, str)}
            total += sum(1 for g in self.grouping if g not in projected)
        return total

    def build(self, dialect: Dialect | str) -> Statement:
        """Render this query for a dialect.

        Raises:
            BuildError: If the query violates a builder contract
        """
        from relkit.sql.emitter import render_query

        return render_query(self, Dialect.parse(dialect))


def select(entity: Any, *fields: Projection) -> Query:
    """Start a query over an entity, model class or registered entity name."""
    return Query(resolve_entity(entity), fields=fields)
