"""Filter tree construction.

Filters are immutable nodes combined with `and_`/`or_`/`not_` or with the
`&`, `|` and `~` operators:

    >>> where = in_("status", ["Active", "Inactive"]) & gt("age", 18)
    >>> where = (eq("role", "admin") | eq("vip", True)) & ~is_null("email")

A MongoDB-style mapping can also be parsed with `parse_filter`:

    >>> parse_filter({"status": {"$in": ["Active"]}, "$or": [{"age": {"$gt": 18}}]})
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relkit.exceptions import BuildError

if TYPE_CHECKING:
    from relkit.query.aggregate import Aggregation
    from relkit.query.builder import Query


class Filter:
    """Base class of filter nodes."""

    def __and__(self, other: Filter) -> Filter:
        return and_(self, other)

    def __or__(self, other: Filter) -> Filter:
        return or_(self, other)

    def __invert__(self) -> Filter:
        return not_(self)


@dataclass(frozen=True)
class Ref:
    """A column reference used as the right-hand side of a predicate."""

    field: str


@dataclass(frozen=True)
class Predicate(Filter):
    """A single-column predicate `(target, op, value)`.

    `target` is a field key (optionally `table.field`) or, in HAVING clauses,
    an aggregation.
    """

    target: str | Aggregation
    op: str
    value: Any = None


@dataclass(frozen=True)
class Overlaps(Filter):
    """Range overlap between a `[start, end]` column pair and a value range."""

    start: str
    end: str
    lower: Any
    upper: Any


@dataclass(frozen=True)
class And(Filter):
    nodes: tuple[Filter, ...]


@dataclass(frozen=True)
class Or(Filter):
    nodes: tuple[Filter, ...]


@dataclass(frozen=True)
class Not(Filter):
    node: Filter


@dataclass(frozen=True)
class TextSearch(Filter):
    """Full-text search over one or more text columns."""

    fields: tuple[str, ...]
    query: str


@dataclass(frozen=True)
class Sample(Filter):
    """Bernoulli sampling: keep each row with the given probability."""

    probability: float


@dataclass(frozen=True)
class Exists(Filter):
    """EXISTS / NOT EXISTS over a subquery."""

    query: Query
    negated: bool = False


# Operators accepted on a single column
OPERATORS = frozenset(
    {
        "=", "<>", "<", "<=", ">", ">=",
        "in", "not in", "between", "like", "ilike",
        "is null", "is not null", "@>",
    }
)  # fmt: skip


def _flatten(kind: type[And] | type[Or], nodes: Iterable[Filter | None]) -> list[Filter]:
    flat: list[Filter] = []
    for node in nodes:
        if node is None:
            continue
        if isinstance(node, kind):
            flat.extend(node.nodes)
        else:
            flat.append(node)
    return flat


# === Predicates ===


def eq(field: str, value: Any) -> Predicate:
    """`field = value`; a None value becomes `IS NULL`."""
    if value is None:
        return is_null(field)
    return Predicate(field, "=", value)


def ne(field: str, value: Any) -> Predicate:
    if value is None:
        return is_not_null(field)
    return Predicate(field, "<>", value)


def lt(field: str, value: Any) -> Predicate:
    return Predicate(field, "<", value)


def le(field: str, value: Any) -> Predicate:
    return Predicate(field, "<=", value)


def gt(field: str, value: Any) -> Predicate:
    return Predicate(field, ">", value)


def ge(field: str, value: Any) -> Predicate:
    return Predicate(field, ">=", value)


def in_(field: str, values: Iterable[Any]) -> Predicate:
    return Predicate(field, "in", tuple(values))


def not_in(field: str, values: Iterable[Any]) -> Predicate:
    return Predicate(field, "not in", tuple(values))


def between(field: str, low: Any, high: Any) -> Predicate:
    return Predicate(field, "between", (low, high))


def like(field: str, pattern: str) -> Predicate:
    return Predicate(field, "like", pattern)


def ilike(field: str, pattern: str) -> Predicate:
    """Case-insensitive LIKE; emulated with LOWER() where not native."""
    return Predicate(field, "ilike", pattern)


def is_null(field: str) -> Predicate:
    return Predicate(field, "is null")


def is_not_null(field: str) -> Predicate:
    return Predicate(field, "is not null")


def contains(field: str, values: Any) -> Predicate:
    """Array or JSON containment (`@>` on PostgreSQL)."""
    if not isinstance(values, (list, tuple)):
        values = (values,)
    return Predicate(field, "@>", tuple(values))


def overlaps(start: str, end: str, lower: Any, upper: Any) -> Overlaps:
    """Rows whose `[start, end]` range overlaps `[lower, upper]`."""
    return Overlaps(start, end, lower, upper)


# === Combinators ===


def and_(*nodes: Filter | None) -> Filter:
    flat = _flatten(And, nodes)
    if not flat:
        raise BuildError("and_() needs at least one filter")
    return flat[0] if len(flat) == 1 else And(tuple(flat))


def or_(*nodes: Filter | None) -> Filter:
    flat = _flatten(Or, nodes)
    if not flat:
        raise BuildError("or_() needs at least one filter")
    return flat[0] if len(flat) == 1 else Or(tuple(flat))


def not_(node: Filter) -> Filter:
    if isinstance(node, Not):
        return node.node
    return Not(node)


# === Special constructs ===


def text_search(fields: str | Iterable[str], query: str) -> TextSearch:
    """Full-text search (`$text`). Degrades to LIKE on SQLite."""
    if isinstance(fields, str):
        fields = [fields]
    fields = tuple(fields)
    if not fields:
        raise BuildError("text_search() needs at least one field")
    return TextSearch(fields, query)


def sample(probability: float) -> Sample:
    """Random sampling (`$rand`)."""
    if not 0.0 <= probability <= 1.0:
        raise BuildError(
            f"Sampling probability must be within [0, 1], got {probability}",
            {"probability": probability},
        )
    return Sample(float(probability))


def exists(query: Query) -> Exists:
    return Exists(query)


def not_exists(query: Query) -> Exists:
    return Exists(query, negated=True)


# === Mapping syntax ===

_MAPPING_OPERATORS = {
    "$eq": "=",
    "$ne": "<>",
    "$lt": "<",
    "$le": "<=",
    "$lte": "<=",
    "$gt": ">",
    "$ge": ">=",
    "$gte": ">=",
    "$in": "in",
    "$nin": "not in",
    "$betw": "between",
    "$like": "like",
    "$ilike": "ilike",
    "$contains": "@>",
}


def _parse_field(field: str, value: Any) -> list[Filter]:
    if not isinstance(value, Mapping):
        if isinstance(value, (list, tuple)):
            return [in_(field, value)]
        return [eq(field, value)]

    nodes: list[Filter] = []
    for key, operand in value.items():
        if key == "$is":
            if operand is None or str(operand).lower() == "null":
                nodes.append(is_null(field))
            else:
                nodes.append(is_not_null(field))
        elif key == "$betw":
            low, high = operand
            nodes.append(between(field, low, high))
        elif key == "$contains":
            nodes.append(contains(field, operand))
        elif key in ("$in", "$nin"):
            nodes.append(Predicate(field, _MAPPING_OPERATORS[key], tuple(operand)))
        elif key in _MAPPING_OPERATORS:
            op = _MAPPING_OPERATORS[key]
            if operand is None and op in ("=", "<>"):
                nodes.append(is_null(field) if op == "=" else is_not_null(field))
            else:
                nodes.append(Predicate(field, op, operand))
        else:
            # Unknown operators become a plain equality on the whole mapping value
            return [eq(field, dict(value))]
    return nodes


def parse_filter(mapping: Mapping[str, Any]) -> Filter | None:
    """Parse a MongoDB-style filter mapping into a filter tree.

    Top-level keys are ANDed. Supported special keys are `$and`, `$or`,
    `$not`, `$text` (`{"$search": q, "$fields": [...]}`) and `$rand`.
    """
    nodes: list[Filter] = []
    for key, value in mapping.items():
        if key == "$and":
            nodes.extend(n for n in (parse_filter(v) for v in value) if n is not None)
        elif key == "$or":
            children = [n for n in (parse_filter(v) for v in value) if n is not None]
            if children:
                nodes.append(or_(*children))
        elif key == "$not":
            child = parse_filter(value)
            if child is not None:
                nodes.append(not_(child))
        elif key == "$text":
            nodes.append(text_search(value["$fields"], value["$search"]))
        elif key == "$rand":
            nodes.append(sample(value))
        else:
            nodes.extend(_parse_field(key, value))
    if not nodes:
        return None
    return and_(*nodes)
