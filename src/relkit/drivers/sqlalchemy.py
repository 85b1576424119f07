"""Driver backed by SQLAlchemy's asyncio engine.

Statements arrive with dialect placeholders (`?` or `$N`) and positional
parameters. They are rewritten to SQLAlchemy named binds (`:p1`, `:p2`, ...)
and run through `text()` on an autocommit connection.
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import URL, event, exc, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from relkit.core.config import PoolConfig
from relkit.drivers.base import Row
from relkit.exceptions import DriverError, PoolTimeoutError
from relkit.sql.dialect import Dialect

logger = logging.getLogger(__name__)

_QUOTES = ("'", '"', "`")


def to_named_binds(sql: str, params: Sequence[Any], dialect: Dialect) -> tuple[str, dict[str, Any]]:
    """Rewrite positional placeholders into SQLAlchemy named binds.

    Placeholders inside quoted strings and identifiers are left alone. Every
    colon of the input text is escaped so `text()` never mistakes a cast
    (`::jsonb`) or a time literal for a bind parameter.

    Returns:
        The rewritten SQL and the bind dict
    """
    out: list[str] = []
    quote: str | None = None
    counter = 0
    i = 0
    length = len(sql)
    while i < length:
        char = sql[i]
        if quote is not None:
            if char == ":":
                out.append("\\:")
            else:
                out.append(char)
                if char == quote:
                    if i + 1 < length and sql[i + 1] == quote:
                        out.append(quote)
                        i += 1
                    else:
                        quote = None
            i += 1
            continue

        if char in _QUOTES:
            quote = char
            out.append(char)
        elif char == ":":
            out.append("\\:")
        elif char == "?" and dialect != Dialect.POSTGRES:
            counter += 1
            out.append(f":p{counter}")
        elif (
            char == "$" and dialect == Dialect.POSTGRES and i + 1 < length and sql[i + 1].isdigit()
        ):
            j = i + 1
            while j < length and sql[j].isdigit():
                j += 1
            out.append(f":p{sql[i + 1:j]}")
            i = j
            continue
        else:
            out.append(char)
        i += 1
    return "".join(out), {f"p{index}": value for index, value in enumerate(params, start=1)}


def build_url(config: PoolConfig, dialect: Dialect) -> URL:
    """SQLAlchemy URL for a pool."""
    if dialect == Dialect.SQLITE:
        if config.read_only:
            return URL.create(
                dialect.sqlalchemy_scheme,
                database=f"file:{config.database}",
                query={"mode": "ro", "uri": "true"},
            )
        return URL.create(dialect.sqlalchemy_scheme, database=config.database)

    query = {}
    if dialect == Dialect.POSTGRES and config.ssl_mode:
        query["sslmode"] = config.ssl_mode
    return URL.create(
        dialect.sqlalchemy_scheme,
        username=config.username,
        password=config.resolved_password(),
        host=config.host,
        port=config.port,
        database=config.database,
        query=query,
    )


def _translate(error: Exception, pool_name: str, timeout: float | None = None) -> Exception:
    if isinstance(error, exc.TimeoutError):
        return PoolTimeoutError(pool_name, timeout)
    if isinstance(error, exc.DBAPIError) and error.orig is not None:
        message = str(error.orig)
    else:
        message = str(error)
    return DriverError(message, {"pool": pool_name, "error": type(error).__name__})


class SQLAlchemyConnection:
    """One acquired `AsyncConnection`."""

    def __init__(
        self,
        conn: AsyncConnection,
        dialect: Dialect,
        pool_name: str,
        decoder: Callable[[Row, str | int], Any] | None = None,
    ) -> None:
        self._conn = conn
        self._dialect = dialect
        self._pool_name = pool_name
        self._decoder = decoder

    async def execute(self, sql: str, params: Sequence[Any]) -> int:
        statement, binds = to_named_binds(sql, params, self._dialect)
        try:
            result = await self._conn.execute(text(statement), binds)
        except (exc.SQLAlchemyError, OSError) as e:
            raise _translate(e, self._pool_name) from e
        return max(result.rowcount, 0)

    async def stream(self, sql: str, params: Sequence[Any]) -> AsyncIterator[Row]:
        statement, binds = to_named_binds(sql, params, self._dialect)
        try:
            result = await self._conn.stream(text(statement), binds)
            keys = list(result.keys())
            async for row in result:
                yield Row(keys, tuple(row), self._decoder)
        except (exc.SQLAlchemyError, OSError) as e:
            raise _translate(e, self._pool_name) from e

    async def ping(self) -> None:
        await self.execute("SELECT 1", [])


class SQLAlchemyDriver:
    """Connection factory wrapping an `AsyncEngine`.

    The engine is created on first use and disposed on `close()`.
    """

    def __init__(self, config: PoolConfig, dialect: Dialect, time_zone: str | None = None) -> None:
        self.config = config
        self.dialect = dialect
        self.time_zone = time_zone
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _engine_options(self) -> dict[str, Any]:
        config = self.config
        options: dict[str, Any] = {
            "isolation_level": "AUTOCOMMIT",
            "pool_pre_ping": True,
            "pool_recycle": int(min(config.max_lifetime, config.idle_timeout)),
            "query_cache_size": config.statement_cache_capacity,
        }
        # SQLite engines run on a static or null pool without sizing options
        if self.dialect != Dialect.SQLITE:
            options["pool_size"] = config.max_connections
            options["max_overflow"] = 0
            options["pool_timeout"] = config.acquire_timeout
        if self.dialect.is_mysql_family and config.ssl_mode and config.ssl_mode != "disable":
            options["connect_args"] = {"ssl": ssl.create_default_context()}
        return options

    def _create_engine(self) -> AsyncEngine:
        url = build_url(self.config, self.dialect)
        try:
            engine = create_async_engine(url, **self._engine_options())
        except (exc.SQLAlchemyError, ImportError) as e:
            raise DriverError(
                f"Failed to create database engine for '{self.config.name}': {e}",
                {"pool": self.config.name},
            ) from e

        dialect = self.dialect
        time_zone = self.time_zone

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            try:
                if dialect == Dialect.SQLITE:
                    cursor.execute("PRAGMA foreign_keys = ON")
                elif time_zone and dialect.is_mysql_family:
                    cursor.execute(f"SET time_zone = '{time_zone}'")
                elif time_zone:
                    cursor.execute(f"SET TIME ZONE '{time_zone}'")
            finally:
                cursor.close()

        logger.debug(f"Created {dialect} engine for pool '{self.config.name}'")
        return engine

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[SQLAlchemyConnection]:
        try:
            conn = await self.engine.connect()
        except (exc.SQLAlchemyError, OSError) as e:
            raise _translate(e, self.config.name, self.config.acquire_timeout) from e
        try:
            yield SQLAlchemyConnection(conn, self.dialect, self.config.name, self.decode)
        finally:
            await conn.close()

    async def ping(self) -> None:
        async with self.acquire() as conn:
            await conn.ping()

    async def close(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.dispose()

    def decode(self, row: Row, column: str | int) -> Any:
        value = row[column]
        # Some DBAPI drivers hand binary columns back as memoryview
        if isinstance(value, memoryview):
            return value.tobytes()
        return value
