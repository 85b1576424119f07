"""Main entry point: pools plus schema registry.

    db = Database.load("relkit.toml")
    await db.connect()
    users = db.model(User)
    await users.insert(User(name="a", status="Active"))
    active = await users.find(eq("status", "Active"))
    await db.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from relkit.core.config import DatabaseSettings
from relkit.core.decode import decode_scalar
from relkit.core.executor import Executor
from relkit.core.model import Model
from relkit.core.pool import DriverFactory
from relkit.core.registry import ConnectionPools, init_pools
from relkit.drivers.base import Row
from relkit.exceptions import ConfigError, NotFoundError
from relkit.query.aggregate import count
from relkit.query.builder import Query, as_filter, select
from relkit.query.filters import Filter, eq, in_
from relkit.query.mutation import Mutation, delete, insert, update, upsert
from relkit.schema.migrations import synchronize
from relkit.schema.models import Entity
from relkit.schema.registry import SchemaRegistry, get_registry
from relkit.sql.dialect import Dialect

logger = logging.getLogger(__name__)

FilterLike = Filter | Mapping[str, Any] | None


class Database:
    """Connection pools and the schema registry of one application.

    Args:
        settings: Validated configuration; installs the process-wide pool registry
        pools: Pools to use instead of building them from settings
        registry: Schema registry (defaults to the shared one)
        driver_factory: Driver constructor used by every pool
    """

    def __init__(
        self,
        settings: DatabaseSettings | None = None,
        *,
        pools: ConnectionPools | None = None,
        registry: SchemaRegistry | None = None,
        driver_factory: DriverFactory | None = None,
    ) -> None:
        if pools is None:
            if settings is None:
                raise ConfigError("Database needs either settings or pools")
            pools = init_pools(settings, driver_factory)
        self.settings = settings
        self.pools = pools
        self.registry = registry or get_registry()

    @classmethod
    def from_toml(cls, text: str, **kwargs: Any) -> Database:
        return cls(DatabaseSettings.from_toml(text), **kwargs)

    @classmethod
    def load(cls, path: str | Path, **kwargs: Any) -> Database:
        return cls(DatabaseSettings.load(path), **kwargs)

    async def connect(self) -> None:
        """Apply the namespace, freeze the schema and check every pool."""
        if self.settings is not None:
            self.registry.set_namespace(self.settings.engine.namespace)
        self.registry.freeze()
        await self.pools.connect_all()
        logger.info(f"Connected {len(self.pools)} pool(s), {len(self.registry)} entities")

    async def close(self) -> None:
        await self.pools.close_all()

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def executor(self, service: str = "main") -> Executor:
        """Executor over the pool currently serving `service`."""
        return Executor(self.pools.get(service), pools=self.pools)

    def model(self, target: type[Model] | Entity | str) -> ModelHandle:
        """Handle for reading and writing one entity."""
        if isinstance(target, type) and issubclass(target, Model):
            return ModelHandle(self, target.entity(), target)
        if isinstance(target, Entity):
            return ModelHandle(self, target)
        return ModelHandle(self, self.registry.get(target))


class ModelHandle:
    """Reads go through the entity's reader service, writes through its writer.

    The first use of an entity on a pool with auto-migration enabled creates
    or extends its table.
    """

    def __init__(self, db: Database, entity: Entity, model: type[Model] | None = None) -> None:
        self.db = db
        self.entity = entity
        self.model = model

    def __repr__(self) -> str:
        return f"ModelHandle({self.entity.name!r}, table={self.entity.table_name!r})"

    async def _executor(self, service: str) -> Executor:
        pool = self.db.pools.get(service)
        if not pool.is_available and pool.is_retryable():
            await pool.check_availability()
            pool = self.db.pools.get(service)
        executor = Executor(pool, pools=self.db.pools)
        if pool.claim_migration(self.entity.name):
            try:
                await synchronize(executor, self.entity)
            except Exception:
                pool.release_migration(self.entity.name)
                raise
        return executor

    async def reader(self) -> Executor:
        return await self._executor(self.entity.reader)

    async def writer(self) -> Executor:
        return await self._executor(self.entity.writer)

    def _decode(self, rows: Iterable[Row], dialect: Dialect) -> list[Any]:
        if self.model is None:
            return list(rows)
        return [self.model.from_row(row, dialect) for row in rows]

    # === Reads ===

    def query(self, *fields: Any) -> Query:
        return select(self.entity, *fields)

    def _as_query(self, target: Query | FilterLike) -> Query:
        if isinstance(target, Query):
            return target
        return self.query().filter(as_filter(target))

    async def find(self, target: Query | FilterLike = None) -> list[Any]:
        """Rows matching a filter or query, as model instances when a model is bound."""
        executor = await self.reader()
        rows = await executor.fetch(self._as_query(target))
        return self._decode(rows, executor.dialect)

    async def find_one(self, target: Query | FilterLike = None) -> Any | None:
        executor = await self.reader()
        row = await executor.fetch_optional(self._as_query(target).limit(1))
        if row is None:
            return None
        return self._decode([row], executor.dialect)[0]

    async def get(self, pk: Any) -> Any:
        """Row by primary key.

        Raises:
            NotFoundError: If no row has that key
        """
        row = await self.find_one(eq(self.entity.primary_key.name, pk))
        if row is None:
            raise NotFoundError(f"{self.entity.table_name}.{self.entity.primary_key.name} = {pk!r}")
        return row

    async def find_as(self, model: type[Model], target: Query | FilterLike = None) -> list[Any]:
        """Rows decoded into another model, e.g. a projection of a join."""
        executor = await self.reader()
        rows = await executor.fetch(self._as_query(target))
        return [model.from_row(row, executor.dialect) for row in rows]

    async def fetch_as_map(self, target: Query | FilterLike = None) -> list[dict[str, Any]]:
        """Rows as plain dicts keyed by output column."""
        executor = await self.reader()
        rows = await executor.fetch(self._as_query(target))
        return [dict(row) for row in rows]

    async def count(self, target: FilterLike = None) -> int:
        executor = await self.reader()
        query = self.query(count().as_("count")).filter(as_filter(target))
        row = await executor.fetch_one(query)
        return decode_scalar(row, int) or 0

    async def aggregate(self, query: Query) -> list[dict[str, Any]]:
        return await self.fetch_as_map(query)

    async def lookup(self, keys: Iterable[Any]) -> dict[Any, Any]:
        """Rows keyed by primary key, for the given keys."""
        keys = list(keys)
        if not keys:
            return {}
        pk = self.entity.primary_key.name
        executor = await self.reader()
        rows = await executor.fetch(self.query(*self.entity.column_names).filter(in_(pk, keys)))
        decoded = self._decode(rows, executor.dialect)
        return {row[pk]: item for row, item in zip(rows, decoded)}

    # === Writes ===

    def _row(self, item: Model | Mapping[str, Any]) -> Mapping[str, Any]:
        return item.to_row() if isinstance(item, Model) else item

    async def run(self, mutation: Mutation) -> int:
        """Execute a mutation through the writer service; return affected rows."""
        executor = await self.writer()
        return await executor.execute(mutation)

    async def run_returning(self, mutation: Mutation) -> list[Any]:
        executor = await self.writer()
        rows = await executor.execute_returning(mutation)
        return self._decode(rows, executor.dialect)

    async def insert(self, item: Model | Mapping[str, Any]) -> int:
        return await self.run(insert(self.entity, [self._row(item)]))

    async def insert_many(self, items: Sequence[Model | Mapping[str, Any]]) -> int:
        return await self.run(insert(self.entity, [self._row(item) for item in items]))

    async def update(self, target: FilterLike, assignments: Mapping[str, Any]) -> int:
        return await self.run(update(self.entity, assignments).filter(target))

    async def delete(self, target: FilterLike) -> int:
        return await self.run(delete(self.entity).filter(target))

    async def upsert(
        self,
        items: Sequence[Model | Mapping[str, Any]],
        conflict_target: Sequence[str] | None = None,
        update_columns: Sequence[str] | None = None,
    ) -> int:
        mutation = upsert(
            self.entity,
            [self._row(item) for item in items],
            conflict_target=conflict_target,
            update_columns=update_columns,
        )
        return await self.run(mutation)
