"""Tests for dialect profiles and identifier quoting."""

import pytest

from relkit.exceptions import ConfigError
from relkit.sql.dialect import Dialect, escape_string, placeholder, quote_field, quote_identifier


class TestDialect:
    """Tests for dialect parsing and capabilities."""

    @pytest.mark.parametrize(
        ("name", "dialect"),
        [
            ("mysql", Dialect.MYSQL),
            ("MariaDB", Dialect.MARIADB),
            ("tidb", Dialect.TIDB),
            ("postgresql", Dialect.POSTGRES),
            ("pg", Dialect.POSTGRES),
            (" sqlite3 ", Dialect.SQLITE),
        ],
    )
    def test_parse(self, name, dialect):
        assert Dialect.parse(name) == dialect

    def test_parse_unknown(self):
        with pytest.raises(ConfigError) as exc_info:
            Dialect.parse("oracle")
        assert "sqlite" in exc_info.value.context["supported"]

    def test_mysql_family(self):
        assert Dialect.TIDB.is_mysql_family
        assert not Dialect.POSTGRES.is_mysql_family

    def test_returning(self):
        assert Dialect.POSTGRES.supports_returning
        assert Dialect.SQLITE.supports_returning
        assert not Dialect.MARIADB.supports_returning

    def test_sqlalchemy_scheme(self):
        assert Dialect.MARIADB.sqlalchemy_scheme == "mysql+aiomysql"
        assert Dialect.POSTGRES.sqlalchemy_scheme == "postgresql+psycopg"
        assert Dialect.SQLITE.sqlalchemy_scheme == "sqlite+aiosqlite"


class TestQuoting:
    """Tests for identifier quoting."""

    def test_mysql_backticks(self):
        assert quote_identifier("user", Dialect.MYSQL) == "`user`"
        assert quote_identifier("we`ird", Dialect.MYSQL) == "`we``ird`"

    def test_postgres_double_quotes(self):
        assert quote_identifier("user", Dialect.POSTGRES) == '"user"'
        assert quote_identifier('we"ird', Dialect.POSTGRES) == '"we""ird"'

    def test_sqlite_plain_words_unquoted(self):
        assert quote_identifier("task", Dialect.SQLITE) == "task"

    def test_sqlite_reserved_and_odd_names_quoted(self):
        assert quote_identifier("order", Dialect.SQLITE) == '"order"'
        assert quote_identifier("first name", Dialect.SQLITE) == '"first name"'

    def test_qualified_field(self):
        assert quote_field("task.id", Dialect.POSTGRES) == '"task"."id"'
        assert quote_field("task.*", Dialect.MYSQL) == "`task`.*"
        assert quote_field("*", Dialect.MYSQL) == "*"


class TestLiterals:
    """Tests for placeholders and string literals."""

    def test_placeholders(self):
        assert placeholder(3, Dialect.POSTGRES) == "$3"
        assert placeholder(3, Dialect.TIDB) == "?"

    def test_escape_string(self):
        assert escape_string("O'Brien") == "'O''Brien'"
