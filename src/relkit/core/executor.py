"""Executor façade over one connection pool.

Every operation takes either raw SQL with dialect placeholders plus a
parameter list, a rendered `Statement`, or a builder (`Query` / `Mutation`)
that is rendered for the pool's dialect.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing, asynccontextmanager
from typing import Any, TypeVar

from relkit.core.decode import decode_scalar
from relkit.core.pool import ConnectionPool
from relkit.core.registry import ConnectionPools
from relkit.drivers.base import Row
from relkit.exceptions import BuildError, NotFoundError, PoolTimeoutError
from relkit.query.builder import Statement, select
from relkit.query.filters import in_
from relkit.query.mutation import Mutation, MutationKind
from relkit.sql.dialect import Dialect

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Executor:
    """Runs statements on a pool.

    Args:
        pool: Pool the statements run on
        max_rows: Row cap of `fetch`; defaults to the pool's
        debug_only: Log writes instead of running them; defaults to the pool's
        pools: Registry reconnected when the pool times out
    """

    def __init__(
        self,
        pool: ConnectionPool,
        max_rows: int | None = None,
        debug_only: bool | None = None,
        pools: ConnectionPools | None = None,
    ) -> None:
        self.pool = pool
        self.max_rows = pool.max_rows if max_rows is None else max_rows
        self.debug_only = pool.debug_only if debug_only is None else debug_only
        self._pools = pools if pools is not None else ConnectionPools([pool])

    @property
    def dialect(self) -> Dialect:
        return self.pool.dialect

    def _statement(self, sql: Any, params: Sequence[Any] | None) -> Statement:
        if hasattr(sql, "build"):
            return sql.build(self.dialect)
        if isinstance(sql, tuple) and params is None:
            return Statement(sql[0], list(sql[1]))
        return Statement(sql, list(params or []))

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        try:
            yield
        except PoolTimeoutError:
            logger.error(f"Pool '{self.pool.name}' timed out; reconnecting all pools")
            self._pools.reconnect_all()
            raise

    # === Writes ===

    async def execute(self, sql: Any, params: Sequence[Any] | None = None) -> int:
        """Run a statement and return the number of affected rows.

        Raises:
            PoolTimeoutError: If no connection was free in time
            DriverError: If the statement failed
        """
        statement = self._statement(sql, params)
        if self.debug_only:
            logger.info(f"[debug-only] {statement.sql} {statement.params}")
            return 0
        logger.debug(f"Execute: {statement.sql}")
        async with self._guard():
            async with self.pool.acquire() as conn:
                return await conn.execute(statement.sql, statement.params)

    async def execute_returning(self, mutation: Mutation) -> list[Row]:
        """Run a mutation and return the affected rows.

        Uses RETURNING where the dialect has it. On the MySQL family the rows
        are read back by primary key: after an insert or upsert, before a
        delete, and both before and after an update.

        Raises:
            BuildError: If an insert on MySQL does not set the primary key
        """
        if not mutation.returning_fields:
            mutation = mutation.returning()
        if self.debug_only:
            await self.execute(mutation)
            return []
        if self.dialect.supports_returning:
            return await self._collect(mutation.build(self.dialect), limit=None)

        statement = mutation.build(self.dialect)
        entity = mutation.entity
        pk = entity.primary_key.name
        reread = select(entity, *mutation.returning_fields).order_by(pk)

        if mutation.kind in (MutationKind.INSERT, MutationKind.UPSERT):
            if pk not in mutation.columns:
                raise BuildError(
                    f"Reading back inserted rows of '{entity.name}' needs the primary key "
                    f"'{pk}' among the inserted columns",
                    {"entity": entity.name, "primary_key": pk},
                )
            index = mutation.columns.index(pk)
            keys = [row[index] for row in mutation.rows]
            await self.execute(statement)
            return await self._collect(reread.filter(in_(pk, keys)).build(self.dialect), None)

        if mutation.kind == MutationKind.DELETE:
            rows = await self._collect(reread.filter(mutation.where).build(self.dialect), None)
            await self.execute(statement)
            return rows

        matched = await self._collect(
            select(entity, pk).filter(mutation.where).build(self.dialect), None
        )
        keys = [row[pk] for row in matched]
        await self.execute(statement)
        if not keys:
            return []
        return await self._collect(reread.filter(in_(pk, keys)).build(self.dialect), None)

    # === Reads ===

    async def stream(self, sql: Any, params: Sequence[Any] | None = None) -> AsyncIterator[Row]:
        """Yield rows one by one; the connection is released when iteration stops."""
        statement = self._statement(sql, params)
        logger.debug(f"Stream: {statement.sql}")
        async with self._guard():
            async with self.pool.acquire() as conn:
                async with aclosing(conn.stream(statement.sql, statement.params)) as results:
                    async for row in results:
                        yield row

    async def _collect(
        self, statement: Statement, limit: int | None, warn: bool = True
    ) -> list[Row]:
        rows: list[Row] = []
        logger.debug(f"Fetch: {statement.sql}")
        async with self._guard():
            async with self.pool.acquire() as conn:
                async with aclosing(conn.stream(statement.sql, statement.params)) as results:
                    async for row in results:
                        if limit is not None and len(rows) >= limit:
                            if warn:
                                logger.warning(
                                    f"Query returned more than {limit} rows; "
                                    "the result is truncated"
                                )
                            break
                        rows.append(row)
        return rows

    async def fetch(self, sql: Any, params: Sequence[Any] | None = None) -> list[Row]:
        """Fetch rows, truncated to `max_rows` with a single warning."""
        return await self._collect(self._statement(sql, params), self.max_rows)

    async def fetch_optional(self, sql: Any, params: Sequence[Any] | None = None) -> Row | None:
        statement = self._statement(sql, params)
        rows = await self._collect(statement, 1, warn=False)
        return rows[0] if rows else None

    async def fetch_one(self, sql: Any, params: Sequence[Any] | None = None) -> Row:
        """Fetch the first row.

        Raises:
            NotFoundError: If the query returned no rows
        """
        statement = self._statement(sql, params)
        row = await self.fetch_optional(statement)
        if row is None:
            raise NotFoundError(statement.sql)
        return row

    async def fetch_scalar(
        self,
        sql: Any,
        params: Sequence[Any] | None = None,
        type_: type[T] | None = None,
    ) -> T | None:
        """Decode column 0 of the first row as `type_`.

        Raises:
            NotFoundError: If the query returned no rows
        """
        row = await self.fetch_one(sql, params)
        return decode_scalar(row, type_)
