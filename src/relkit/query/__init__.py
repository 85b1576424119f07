"""Immutable query and mutation builders."""

from relkit.query.aggregate import (
    Aggregation,
    Frame,
    Window,
    avg,
    count,
    count_distinct,
    cume_dist,
    dense_rank,
    first_value,
    json_arrayagg,
    json_objectagg,
    lag,
    last_value,
    lead,
    max_,
    min_,
    nth_value,
    ntile,
    over,
    percent_rank,
    rank,
    row_number,
    stddev,
    sum_,
    variance,
)
from relkit.query.builder import Query, Statement, alias, select
from relkit.query.filters import (
    Filter,
    Ref,
    and_,
    between,
    contains,
    eq,
    exists,
    ge,
    gt,
    ilike,
    in_,
    is_not_null,
    is_null,
    le,
    like,
    lt,
    ne,
    not_,
    not_exists,
    not_in,
    or_,
    overlaps,
    parse_filter,
    sample,
    text_search,
)
from relkit.query.join import Join, cross_join, full_join, inner_join, join, left_join, right_join
from relkit.query.mutation import Mutation, delete, insert, update, upsert

__all__ = [
    # Builders
    "Query",
    "Statement",
    "Mutation",
    "select",
    "alias",
    "insert",
    "update",
    "delete",
    "upsert",
    # Filters
    "Filter",
    "Ref",
    "eq",
    "ne",
    "lt",
    "le",
    "gt",
    "ge",
    "in_",
    "not_in",
    "between",
    "like",
    "ilike",
    "is_null",
    "is_not_null",
    "contains",
    "overlaps",
    "and_",
    "or_",
    "not_",
    "text_search",
    "sample",
    "exists",
    "not_exists",
    "parse_filter",
    # Aggregations and windows
    "Aggregation",
    "Window",
    "Frame",
    "count",
    "count_distinct",
    "sum_",
    "avg",
    "min_",
    "max_",
    "stddev",
    "variance",
    "json_arrayagg",
    "json_objectagg",
    "over",
    "row_number",
    "rank",
    "dense_rank",
    "percent_rank",
    "cume_dist",
    "ntile",
    "lag",
    "lead",
    "first_value",
    "last_value",
    "nth_value",
    # Joins
    "Join",
    "join",
    "inner_join",
    "left_join",
    "right_join",
    "full_join",
    "cross_join",
]
