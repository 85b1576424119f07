"""INSERT / UPDATE / DELETE / upsert specifications.

Updates accept field operators, either chained:

    >>> update(Task).inc("attempts", 1).append("tags", "retried").filter(eq("id", 7))

or as a MongoDB-style mapping:

    >>> update(Task, {"$inc": {"attempts": 1}, "status": "Running"}).filter(eq("id", 7))
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from relkit.exceptions import BuildError, EmptyInsertError
from relkit.query.builder import Statement, as_filter
from relkit.query.filters import Filter, and_
from relkit.schema.models import Entity
from relkit.schema.registry import resolve_entity
from relkit.sql.dialect import Dialect


class MutationKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"


class UpdateOperator(StrEnum):
    """Field operators of an UPDATE assignment."""

    SET = "$set"
    INC = "$inc"
    MUL = "$mul"
    MIN = "$min"
    MAX = "$max"
    APPEND = "$append"
    PREPEND = "$prepend"
    PULL = "$pull"
    NOW = "$now"

    @classmethod
    def values(cls) -> list[str]:
        return [op.value for op in cls]


@dataclass(frozen=True)
class Assignment:
    field: str
    operator: UpdateOperator
    value: Any = None


@dataclass(frozen=True)
class Mutation:
    """Specification of a write statement on one entity."""

    entity: Entity
    kind: MutationKind
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    assignments: tuple[Assignment, ...] = ()
    where: Filter | None = None
    all_rows: bool = False
    conflict_target: tuple[str, ...] = ()
    update_columns: tuple[str, ...] | None = None
    returning_fields: tuple[str, ...] = ()

    # === Filtering ===

    def filter(self, *nodes: Filter | Mapping[str, Any] | None) -> Mutation:
        if self.kind in (MutationKind.INSERT, MutationKind.UPSERT):
            raise BuildError(f"An {self.kind} statement does not take a filter")
        parsed = [n for n in (as_filter(n) for n in nodes) if n is not None]
        if not parsed:
            return self
        return replace(self, where=and_(self.where, *parsed))

    def all(self) -> Mutation:
        """Allow an UPDATE or DELETE without a filter to affect every row."""
        return replace(self, all_rows=True)

    def returning(self, *fields: str) -> Mutation:
        """Return the given fields of affected rows (all columns if none given)."""
        fields = fields or tuple(self.entity.column_names)
        for field in fields:
            self.entity.column(field)
        return replace(self, returning_fields=fields)

    # === Assignments ===

    def _assign(self, field: str, operator: UpdateOperator, value: Any = None) -> Mutation:
        if self.kind != MutationKind.UPDATE:
            raise BuildError(f"Field operators only apply to UPDATE, not {self.kind}")
        self.entity.column(field)
        return replace(self, assignments=self.assignments + (Assignment(field, operator, value),))

    def set(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.SET, value)

    def set_if_not_null(self, field: str, value: Any) -> Mutation:
        if value is None:
            return self
        return self.set(field, value)

    def set_null(self, field: str) -> Mutation:
        return self.set(field, None)

    def set_now(self, field: str) -> Mutation:
        """Set a date/time column to the database's current time."""
        return self._assign(field, UpdateOperator.NOW)

    def inc(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.INC, value)

    def inc_one(self, field: str) -> Mutation:
        return self.inc(field, 1)

    def mul(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.MUL, value)

    def min(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.MIN, value)

    def max(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.MAX, value)

    def append(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.APPEND, value)

    def prepend(self, field: str, value: Any) -> Mutation:
        return self._assign(field, UpdateOperator.PREPEND, value)

    def pull(self, field: str, value: Any) -> Mutation:
        """Remove every occurrence of `value` from an array column."""
        return self._assign(field, UpdateOperator.PULL, value)

    def apply(self, assignments: Mapping[str, Any]) -> Mutation:
        """Add assignments from a mapping; `$op` keys hold `{field: value}` maps."""
        mutation = self
        for key, value in assignments.items():
            if key.startswith("$"):
                if key not in UpdateOperator.values():
                    raise BuildError(
                        f"Unknown update operator '{key}'",
                        {"supported": UpdateOperator.values()},
                    )
                if not isinstance(value, Mapping):
                    raise BuildError(f"Operator '{key}' expects a mapping of fields to values")
                for field, operand in value.items():
                    mutation = mutation._assign(field, UpdateOperator(key), operand)
            else:
                mutation = mutation.set(key, value)
        return mutation

    def build(self, dialect: Dialect | str) -> Statement:
        """Render this mutation for a dialect.

        Raises:
            BuildError: If the mutation violates a builder contract
        """
        from relkit.sql.emitter import render_mutation

        return render_mutation(self, Dialect.parse(dialect))


def _normalize_rows(
    entity: Entity,
    rows: Sequence[Sequence[Any] | Mapping[str, Any]],
    columns: Sequence[str] | None,
) -> tuple[tuple[str, ...], tuple[tuple[Any, ...], ...]]:
    if not rows:
        raise EmptyInsertError(entity.name)
    first = rows[0]
    if isinstance(first, Mapping):
        names = tuple(columns) if columns else tuple(first.keys())
        normalized = []
        for row in rows:
            if not isinstance(row, Mapping) or set(row.keys()) != set(names):
                raise BuildError(
                    "Every row of a multi-row insert must set the same columns",
                    {"columns": list(names)},
                )
            normalized.append(tuple(row[name] for name in names))
    else:
        if not columns:
            raise BuildError("Tuple rows need an explicit column list")
        names = tuple(columns)
        normalized = []
        for row in rows:
            if isinstance(row, Mapping) or len(row) != len(names):
                raise BuildError(
                    f"Row {tuple(row)!r} does not match the columns {list(names)}",
                    {"columns": list(names)},
                )
            normalized.append(tuple(row))
    if not names:
        raise BuildError(f"Cannot insert into '{entity.name}' without columns")
    for name in names:
        entity.column(name)
    return names, tuple(normalized)


def insert(
    entity: Any,
    rows: Sequence[Sequence[Any] | Mapping[str, Any]],
    columns: Sequence[str] | None = None,
) -> Mutation:
    """INSERT one or more rows.

    Rows are tuples ordered like `columns`, or mappings keyed by field.

    Raises:
        EmptyInsertError: If `rows` is empty
    """
    target = resolve_entity(entity)
    names, values = _normalize_rows(target, rows, columns)
    return Mutation(target, MutationKind.INSERT, columns=names, rows=values)


def upsert(
    entity: Any,
    rows: Sequence[Sequence[Any] | Mapping[str, Any]],
    columns: Sequence[str] | None = None,
    conflict_target: Sequence[str] | None = None,
    update_columns: Sequence[str] | None = None,
) -> Mutation:
    """INSERT rows, updating `update_columns` of rows that hit a unique key.

    `conflict_target` defaults to the primary key; `update_columns` defaults
    to every inserted column outside the target.
    """
    target = resolve_entity(entity)
    names, values = _normalize_rows(target, rows, columns)
    keys = tuple(conflict_target) if conflict_target else (target.primary_key.name,)
    for key in keys:
        col = target.column(key)
        if not (col.primary or col.unique):
            raise BuildError(
                f"Upsert target '{key}' is neither the primary key nor a unique column",
                {"entity": target.name, "column": key},
            )
    if update_columns is not None:
        for name in update_columns:
            target.column(name)
        updates: tuple[str, ...] | None = tuple(update_columns)
    else:
        updates = None
    return Mutation(
        target,
        MutationKind.UPSERT,
        columns=names,
        rows=values,
        conflict_target=keys,
        update_columns=updates,
    )


def update(entity: Any, assignments: Mapping[str, Any] | None = None) -> Mutation:
    """UPDATE rows; add assignments via the mapping or chained operators."""
    mutation = Mutation(resolve_entity(entity), MutationKind.UPDATE)
    if assignments:
        mutation = mutation.apply(assignments)
    return mutation


def delete(entity: Any) -> Mutation:
    return Mutation(resolve_entity(entity), MutationKind.DELETE)
