"""Tests for the SQLAlchemy driver's statement and URL translation."""

from relkit.core.config import PoolConfig, set_password_decryptor
from relkit.drivers.sqlalchemy import SQLAlchemyDriver, build_url, to_named_binds
from relkit.sql.dialect import Dialect


class TestNamedBinds:
    """Tests for rewriting dialect placeholders into named binds."""

    def test_question_marks(self):
        sql, binds = to_named_binds(
            "SELECT * FROM t WHERE a = ? AND b = ?", [1, "x"], Dialect.MYSQL
        )
        assert sql == "SELECT * FROM t WHERE a = :p1 AND b = :p2"
        assert binds == {"p1": 1, "p2": "x"}

    def test_dollar_placeholders(self):
        sql, binds = to_named_binds(
            'SELECT "a" FROM t WHERE "b" IN ($1,$2)', [1, 2], Dialect.POSTGRES
        )
        assert sql == 'SELECT "a" FROM t WHERE "b" IN (:p1,:p2)'
        assert binds == {"p1": 1, "p2": 2}

    def test_multi_digit_placeholder(self):
        sql, _ = to_named_binds("SELECT $10", list(range(10)), Dialect.POSTGRES)
        assert sql == "SELECT :p10"

    def test_casts_escaped(self):
        sql, _ = to_named_binds('"meta" @> $1::jsonb', ['["a"]'], Dialect.POSTGRES)
        assert sql == '"meta" @> :p1\\:\\:jsonb'

    def test_question_mark_in_string_untouched(self):
        sql, binds = to_named_binds("SELECT '?' , a FROM t WHERE b = ?", [5], Dialect.SQLITE)
        assert sql == "SELECT '?' , a FROM t WHERE b = :p1"
        assert binds == {"p1": 5}

    def test_doubled_quotes(self):
        sql, _ = to_named_binds("SELECT 'it''s ?' WHERE a = ?", [1], Dialect.SQLITE)
        assert sql == "SELECT 'it''s ?' WHERE a = :p1"

    def test_quoted_identifier(self):
        sql, _ = to_named_binds("SELECT `odd?name` FROM t WHERE a = ?", [1], Dialect.MARIADB)
        assert sql == "SELECT `odd?name` FROM t WHERE a = :p1"

    def test_colon_in_literal_escaped(self):
        sql, _ = to_named_binds("SELECT '10:30' WHERE a = ?", [1], Dialect.MYSQL)
        assert sql == "SELECT '10\\:30' WHERE a = :p1"

    def test_sqlite_json_path(self):
        sql, binds = to_named_binds(
            "UPDATE task SET tags = json_insert(tags, '$[#]', ?)", ["x"], Dialect.SQLITE
        )
        assert sql == "UPDATE task SET tags = json_insert(tags, '$[#]', :p1)"
        assert binds == {"p1": "x"}


class TestBuildUrl:
    """Tests for SQLAlchemy URLs."""

    def test_sqlite_file(self):
        url = build_url(PoolConfig(database="app.db"), Dialect.SQLITE)
        assert url.drivername == "sqlite+aiosqlite"
        assert url.database == "app.db"

    def test_sqlite_read_only(self):
        url = build_url(PoolConfig(database="app.db", read_only=True), Dialect.SQLITE)
        assert url.database == "file:app.db"
        assert dict(url.query) == {"mode": "ro", "uri": "true"}

    def test_postgres(self):
        config = PoolConfig(
            database="app",
            host="db.internal",
            port=5433,
            username="app",
            password="secret",
            ssl_mode="require",
        )
        url = build_url(config, Dialect.POSTGRES)
        assert url.drivername == "postgresql+psycopg"
        assert (url.host, url.port, url.database) == ("db.internal", 5433, "app")
        assert url.password == "secret"
        assert url.query["sslmode"] == "require"

    def test_password_decrypted(self):
        set_password_decryptor(lambda value: value[::-1])
        try:
            url = build_url(PoolConfig(database="app", password="terces"), Dialect.MYSQL)
        finally:
            set_password_decryptor(None)
        assert url.password == "secret"


class TestEngineOptions:
    """Tests for engine sizing."""

    def test_server_pool_sizing(self):
        config = PoolConfig(database="app", max_connections=8, acquire_timeout=5)
        options = SQLAlchemyDriver(config, Dialect.MYSQL)._engine_options()
        assert options["isolation_level"] == "AUTOCOMMIT"
        assert options["pool_size"] == 8
        assert options["max_overflow"] == 0
        assert options["pool_timeout"] == 5.0
        assert options["pool_recycle"] == 3600

    def test_sqlite_unsized(self):
        options = SQLAlchemyDriver(PoolConfig(database="app.db"), Dialect.SQLITE)._engine_options()
        assert "pool_size" not in options
        assert options["pool_pre_ping"] is True

    def test_engine_is_lazy(self):
        driver = SQLAlchemyDriver(PoolConfig(database="app.db"), Dialect.SQLITE)
        assert driver._engine is None
