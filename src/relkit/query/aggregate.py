"""Aggregations and window functions used in projections."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from relkit.exceptions import BuildError
from relkit.query.filters import Predicate


class AggregateFunction(StrEnum):
    """Aggregate functions with a default alias suffix."""

    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    STDDEV = "stddev"
    VARIANCE = "variance"
    JSON_ARRAYAGG = "json_arrayagg"
    JSON_OBJECTAGG = "json_objectagg"

    @property
    def alias_suffix(self) -> str:
        return _ALIAS_SUFFIXES[self]


_ALIAS_SUFFIXES = {
    AggregateFunction.COUNT: "count",
    AggregateFunction.COUNT_DISTINCT: "distinct",
    AggregateFunction.SUM: "sum",
    AggregateFunction.AVG: "avg",
    AggregateFunction.MIN: "min",
    AggregateFunction.MAX: "max",
    AggregateFunction.STDDEV: "stddev",
    AggregateFunction.VARIANCE: "variance",
    AggregateFunction.JSON_ARRAYAGG: "arrayagg",
    AggregateFunction.JSON_OBJECTAGG: "objectagg",
}


def _short(field: str) -> str:
    return field.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class Aggregation:
    """An aggregate expression over one column (two for json_objectagg)."""

    function: AggregateFunction
    field: str
    value_field: str | None = None
    alias: str | None = None

    def __post_init__(self) -> None:
        if self.function == AggregateFunction.COUNT_DISTINCT and self.field == "*":
            raise BuildError("count(DISTINCT ...) needs a column, not '*'", {"field": "*"})

    @property
    def default_alias(self) -> str:
        if self.function == AggregateFunction.JSON_OBJECTAGG:
            return f"{_short(self.field)}_{_short(self.value_field or '')}_objectagg"
        if self.field == "*":
            return self.function.alias_suffix
        return f"{_short(self.field)}_{self.function.alias_suffix}"

    @property
    def output_name(self) -> str:
        return self.alias or self.default_alias

    def as_(self, alias: str) -> Aggregation:
        return replace(self, alias=alias)

    # Comparisons for HAVING clauses

    def eq(self, value: Any) -> Predicate:
        return Predicate(self, "=", value)

    def ne(self, value: Any) -> Predicate:
        return Predicate(self, "<>", value)

    def lt(self, value: Any) -> Predicate:
        return Predicate(self, "<", value)

    def le(self, value: Any) -> Predicate:
        return Predicate(self, "<=", value)

    def gt(self, value: Any) -> Predicate:
        return Predicate(self, ">", value)

    def ge(self, value: Any) -> Predicate:
        return Predicate(self, ">=", value)


def count(field: str = "*", distinct: bool = False) -> Aggregation:
    if distinct:
        return Aggregation(AggregateFunction.COUNT_DISTINCT, field)
    return Aggregation(AggregateFunction.COUNT, field)


def count_distinct(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.COUNT_DISTINCT, field)


def sum_(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.SUM, field)


def avg(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.AVG, field)


def min_(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.MIN, field)


def max_(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.MAX, field)


def stddev(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.STDDEV, field)


def variance(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.VARIANCE, field)


def json_arrayagg(field: str) -> Aggregation:
    return Aggregation(AggregateFunction.JSON_ARRAYAGG, field)


def json_objectagg(key_field: str, value_field: str) -> Aggregation:
    return Aggregation(AggregateFunction.JSON_OBJECTAGG, key_field, value_field)


# === Windows ===


class WindowFunction(StrEnum):
    """Window-only functions. Aggregate windows wrap an `Aggregation`."""

    AGGREGATE = "aggregate"
    ROW_NUMBER = "row_number"
    RANK = "rank"
    DENSE_RANK = "dense_rank"
    PERCENT_RANK = "percent_rank"
    CUME_DIST = "cume_dist"
    NTILE = "ntile"
    LAG = "lag"
    LEAD = "lead"
    FIRST_VALUE = "first_value"
    LAST_VALUE = "last_value"
    NTH_VALUE = "nth_value"


_FRAME_BOUND = re.compile(
    r"^(unbounded preceding|unbounded following|current row|\d+ preceding|\d+ following)$"
)


@dataclass(frozen=True)
class Frame:
    """A window frame: `ROWS|RANGE BETWEEN start AND end`."""

    unit: str
    start: str
    end: str

    def __post_init__(self) -> None:
        if self.unit not in ("rows", "range"):
            raise BuildError(f"Window frame unit must be 'rows' or 'range', got '{self.unit}'")
        for bound in (self.start, self.end):
            if not _FRAME_BOUND.match(bound.lower()):
                raise BuildError(f"Invalid window frame bound '{bound}'", {"bound": bound})

    @classmethod
    def rows(cls, start: str, end: str = "current row") -> Frame:
        return cls("rows", start.lower(), end.lower())

    @classmethod
    def range(cls, start: str, end: str = "current row") -> Frame:
        return cls("range", start.lower(), end.lower())

    def render(self) -> str:
        return f"{self.unit.upper()} BETWEEN {self.start.upper()} AND {self.end.upper()}"


@dataclass(frozen=True)
class Window:
    """A window expression. Always projected with an alias."""

    function: WindowFunction
    field: str | None = None
    aggregation: Aggregation | None = None
    argument: int | None = None
    partition_by: tuple[str, ...] = ()
    order_by: tuple[tuple[str, bool], ...] = ()
    frame: Frame | None = None
    alias: str | None = None

    @property
    def default_alias(self) -> str:
        fn = self.function
        if fn == WindowFunction.AGGREGATE and self.aggregation is not None:
            agg = self.aggregation
            return f"{_short(agg.field)}_{agg.function.alias_suffix}_window"
        field = _short(self.field or "")
        if fn == WindowFunction.LAG:
            return f"{field}_prev"
        if fn == WindowFunction.LEAD:
            return f"{field}_next"
        if fn == WindowFunction.FIRST_VALUE:
            return f"{field}_first"
        if fn == WindowFunction.LAST_VALUE:
            return f"{field}_last"
        if fn == WindowFunction.NTH_VALUE:
            return f"{field}_nth"
        return fn.value

    @property
    def output_name(self) -> str:
        return self.alias or self.default_alias

    def partition(self, *fields: str) -> Window:
        return replace(self, partition_by=self.partition_by + fields)

    def order_asc(self, field: str) -> Window:
        return replace(self, order_by=self.order_by + ((field, False),))

    def order_desc(self, field: str) -> Window:
        return replace(self, order_by=self.order_by + ((field, True),))

    def rows(self, start: str, end: str = "current row") -> Window:
        return replace(self, frame=Frame.rows(start, end))

    def range(self, start: str, end: str = "current row") -> Window:
        return replace(self, frame=Frame.range(start, end))

    def as_(self, alias: str) -> Window:
        return replace(self, alias=alias)


def over(aggregation: Aggregation) -> Window:
    """Use an aggregation as a window function."""
    if aggregation.function in (
        AggregateFunction.JSON_ARRAYAGG,
        AggregateFunction.JSON_OBJECTAGG,
    ):
        raise BuildError(f"{aggregation.function} cannot be used as a window function")
    return Window(WindowFunction.AGGREGATE, aggregation.field, aggregation=aggregation)


def row_number() -> Window:
    return Window(WindowFunction.ROW_NUMBER)


def rank() -> Window:
    return Window(WindowFunction.RANK)


def dense_rank() -> Window:
    return Window(WindowFunction.DENSE_RANK)


def percent_rank() -> Window:
    return Window(WindowFunction.PERCENT_RANK)


def cume_dist() -> Window:
    return Window(WindowFunction.CUME_DIST)


def ntile(buckets: int) -> Window:
    if buckets < 1:
        raise BuildError(f"ntile() needs a positive bucket count, got {buckets}")
    return Window(WindowFunction.NTILE, argument=buckets)


def lag(field: str, offset: int = 1) -> Window:
    return Window(WindowFunction.LAG, field, argument=offset)


def lead(field: str, offset: int = 1) -> Window:
    return Window(WindowFunction.LEAD, field, argument=offset)


def first_value(field: str) -> Window:
    return Window(WindowFunction.FIRST_VALUE, field)


def last_value(field: str) -> Window:
    return Window(WindowFunction.LAST_VALUE, field)


def nth_value(field: str, n: int) -> Window:
    if n < 1:
        raise BuildError(f"nth_value() needs a positive position, got {n}")
    return Window(WindowFunction.NTH_VALUE, field, argument=n)
