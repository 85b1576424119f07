"""Tests for filter trees and their dialect translation."""

import re
from uuid import UUID

import pytest

from relkit.exceptions import BuildError, FieldNotFoundError
from relkit.query.filters import (
    And,
    Not,
    Or,
    Predicate,
    Ref,
    and_,
    between,
    contains,
    eq,
    gt,
    ilike,
    in_,
    is_not_null,
    like,
    ne,
    not_,
    not_in,
    or_,
    overlaps,
    parse_filter,
    sample,
    text_search,
)
from relkit.sql.dialect import Dialect
from relkit.sql.emitter import render_filter
from relkit.sql.params import ParamBuffer

REF = UUID("12345678-1234-5678-1234-567812345678")


def render(node, entity, dialect=Dialect.POSTGRES):
    params = ParamBuffer(dialect)
    return render_filter(node, entity, params), params.values


class TestFilterTree:
    """Tests for building filter nodes."""

    def test_operators_combine(self):
        node = eq("a", 1) & gt("b", 2) | ~eq("c", 3)
        assert isinstance(node, Or)
        assert isinstance(node.nodes[0], And)
        assert isinstance(node.nodes[1], Not)

    def test_and_flattens(self):
        node = and_(and_(eq("a", 1), eq("b", 2)), eq("c", 3))
        assert len(node.nodes) == 3

    def test_single_child_collapses(self):
        assert and_(None, eq("a", 1)) == eq("a", 1)

    def test_empty_combinator(self):
        with pytest.raises(BuildError):
            or_()

    def test_double_negation(self):
        assert not_(not_(eq("a", 1))) == eq("a", 1)

    def test_eq_none_is_null(self):
        assert eq("a", None) == Predicate("a", "is null")
        assert ne("a", None) == is_not_null("a")

    def test_sample_bounds(self):
        with pytest.raises(BuildError):
            sample(1.5)

    def test_text_search_needs_fields(self):
        with pytest.raises(BuildError):
            text_search([], "x")


class TestParseFilter:
    """Tests for the mapping syntax."""

    def test_field_operators(self):
        node = parse_filter({"status": {"$in": ["A", "B"]}, "age": {"$gte": 18}})
        assert node == And((in_("status", ["A", "B"]), Predicate("age", ">=", 18)))

    def test_plain_values(self):
        assert parse_filter({"status": "A"}) == eq("status", "A")
        assert parse_filter({"status": ["A", "B"]}) == in_("status", ["A", "B"])

    def test_logical_keys(self):
        node = parse_filter({"$or": [{"a": 1}, {"b": 2}], "$not": {"c": 3}})
        assert node == And((or_(eq("a", 1), eq("b", 2)), not_(eq("c", 3))))

    def test_is_and_between(self):
        node = parse_filter({"a": {"$is": None}, "b": {"$betw": [1, 5]}})
        assert node == And((Predicate("a", "is null"), between("b", 1, 5)))

    def test_special_constructs(self):
        node = parse_filter({"$text": {"$search": "bob", "$fields": ["name"]}, "$rand": 0.1})
        assert node == And((text_search("name", "bob"), sample(0.1)))

    def test_empty_mapping(self):
        assert parse_filter({}) is None


class TestRenderFilter:
    """Tests for rendering predicates."""

    def test_comparison(self, user_entity):
        assert render(eq("status", "Active"), user_entity) == ('"status" = $1', ["Active"])

    def test_null_checks(self, user_entity):
        assert render(eq("status", None), user_entity) == ('"status" IS NULL', [])
        assert render(ne("status", None), user_entity) == ('"status" IS NOT NULL', [])

    def test_in_list(self, user_entity):
        assert render(in_("status", ["A", "B"]), user_entity, Dialect.MYSQL) == (
            "`status` IN (?,?)",
            ["A", "B"],
        )

    def test_empty_in_list(self, user_entity):
        """An empty IN list matches nothing; an empty NOT IN list matches everything."""
        assert render(in_("status", []), user_entity) == ("1 = 0", [])
        assert render(not_in("status", []), user_entity) == ("1 = 1", [])

    def test_sequence_equality_becomes_in(self, user_entity):
        assert render(eq("age", [1, 2]), user_entity) == ('"age" IN ($1,$2)', [1, 2])

    def test_between(self, user_entity):
        assert render(between("age", 18, 65), user_entity) == (
            '"age" BETWEEN $1 AND $2',
            [18, 65],
        )

    def test_like_and_ilike(self, user_entity):
        assert render(like("name", "a%"), user_entity) == ('"name" LIKE $1', ["a%"])
        assert render(ilike("name", "a%"), user_entity) == ('"name" ILIKE $1', ["a%"])
        assert render(ilike("name", "a%"), user_entity, Dialect.MYSQL) == (
            "LOWER(`name`) LIKE LOWER(?)",
            ["a%"],
        )

    def test_unknown_operator_falls_back_to_equality(self, user_entity):
        """Unsupported operators still render valid SQL."""
        assert render(Predicate("age", "~~", 3), user_entity) == ('"age" = $1', [3])

    def test_uuid_cast_on_postgres(self, task_entity):
        assert render(eq("ref", REF), task_entity) == ('"ref" = $1::UUID', [REF])
        assert render(eq("ref", REF), task_entity, Dialect.MYSQL) == ("`ref` = ?", [str(REF)])

    def test_unknown_field(self, user_entity):
        with pytest.raises(FieldNotFoundError):
            render(eq("email", "x"), user_entity)

    def test_column_reference(self, user_entity):
        assert render(Predicate("age", ">", Ref("project_id")), user_entity) == (
            '"age" > "project_id"',
            [],
        )


class TestContains:
    """Tests for array and JSON containment."""

    def test_postgres_array(self, task_entity):
        assert render(contains("tags", "a"), task_entity) == ('"tags" @> $1::TEXT[]', [["a"]])

    def test_postgres_json(self, task_entity):
        assert render(contains("meta", ["a"]), task_entity) == ('"meta" @> $1::jsonb', ['["a"]'])

    def test_mysql(self, task_entity):
        assert render(contains("tags", ["a", "b"]), task_entity, Dialect.MYSQL) == (
            "JSON_CONTAINS(`tags`, ?)",
            ['["a","b"]'],
        )

    def test_sqlite(self, task_entity):
        sql, params = render(contains("tags", ["a", "b"]), task_entity, Dialect.SQLITE)
        assert sql == (
            "(EXISTS (SELECT 1 FROM json_each(tags) WHERE json_each.value = ?) AND "
            "EXISTS (SELECT 1 FROM json_each(tags) WHERE json_each.value = ?))"
        )
        assert params == ["a", "b"]


class TestLogicalRendering:
    """Tests for AND / OR / NOT rendering."""

    def test_or_parenthesized(self, user_entity):
        node = eq("status", "A") | eq("status", "B")
        assert render(node, user_entity) == ('("status" = $1 OR "status" = $2)', ["A", "B"])

    def test_top_level_and_bare(self, user_entity):
        node = eq("status", "A") & gt("age", 18)
        assert render(node, user_entity) == ('"status" = $1 AND "age" > $2', ["A", 18])

    def test_nested_and_parenthesized(self, user_entity):
        node = or_(and_(eq("status", "A"), gt("age", 18)), eq("name", "root"))
        assert render(node, user_entity) == (
            '(("status" = $1 AND "age" > $2) OR "name" = $3)',
            ["A", 18, "root"],
        )

    def test_not(self, user_entity):
        assert render(~eq("status", "A"), user_entity) == ('NOT ("status" = $1)', ["A"])


class TestSpecialFilters:
    """Tests for text search, sampling and range overlap."""

    def test_text_search_mysql(self, user_entity):
        assert render(text_search(["name", "status"], "bob"), user_entity, Dialect.MYSQL) == (
            "MATCH(`name`,`status`) AGAINST (? IN NATURAL LANGUAGE MODE)",
            ["bob"],
        )

    def test_text_search_postgres(self, user_entity):
        assert render(text_search("name", "bob"), user_entity) == (
            'to_tsvector("name") @@ plainto_tsquery($1)',
            ["bob"],
        )

    def test_text_search_sqlite_degrades_to_like(self, user_entity):
        assert render(text_search("name", "bob"), user_entity, Dialect.SQLITE) == (
            "name LIKE ?",
            ["%bob%"],
        )

    def test_sample(self, user_entity):
        assert render(sample(0.25), user_entity) == ("random() < $1", [0.25])
        assert render(sample(0.25), user_entity, Dialect.MYSQL) == ("rand() < ?", [0.25])

    def test_overlaps(self, user_entity):
        assert render(overlaps("age", "project_id", 1, 9), user_entity, Dialect.SQLITE) == (
            "(age <= ? AND project_id >= ?)",
            [9, 1],
        )
        assert render(overlaps("age", "project_id", 1, 9), user_entity)[0] == (
            '("age", "project_id") OVERLAPS ($1, $2)'
        )


class TestPlaceholderCount:
    """Placeholders in the text always match the parameter list."""

    @pytest.mark.parametrize("dialect", list(Dialect))
    def test_counts_match(self, dialect, user_entity):
        node = parse_filter(
            {
                "status": {"$in": ["A", "B", "C"]},
                "age": {"$betw": [1, 9]},
                "$or": [{"name": {"$like": "a%"}}, {"project_id": {"$ne": 3}}],
            }
        )
        sql, params = render(node, user_entity, dialect)
        marks = re.findall(r"\$\d+", sql) if dialect == Dialect.POSTGRES else re.findall(r"\?", sql)
        assert len(marks) == len(params) == 7
        if dialect == Dialect.POSTGRES:
            assert marks == [f"${i}" for i in range(1, 8)]
