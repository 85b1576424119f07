"""Shared test fixtures for relkit."""

from collections.abc import Callable, Generator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

import pytest

from relkit.core.config import PoolConfig
from relkit.core.pool import ConnectionPool
from relkit.core.registry import reset_pools
from relkit.drivers.base import Row
from relkit.schema.models import Entity
from relkit.schema.registry import SchemaRegistry, get_registry
from relkit.sql.dialect import Dialect


# === Fake driver ===


class FakeConnection:
    """Connection of FakeDriver: records statements and replays scripted rows."""

    def __init__(self, driver: "FakeDriver") -> None:
        self.driver = driver

    async def execute(self, sql: str, params: Sequence[Any]) -> int:
        self.driver.executed.append((sql, list(params)))
        failure = self.driver.fail_execute
        if failure is not None and (self.driver.fail_on is None or self.driver.fail_on in sql):
            raise failure
        return self.driver.affected

    async def stream(self, sql: str, params: Sequence[Any]):
        self.driver.executed.append((sql, list(params)))
        for row in self.driver.rows_for(sql):
            self.driver.yielded += 1
            yield row

    async def ping(self) -> None:
        await self.driver.ping()


class FakeDriver:
    """In-memory driver implementing the Driver protocol."""

    def __init__(self, dialect: Dialect = Dialect.SQLITE) -> None:
        self.dialect = dialect
        self.executed: list[tuple[str, list[Any]]] = []
        self.results: list[tuple[str, list[Row]]] = []
        self.affected = 1
        self.yielded = 0
        self.acquired = 0
        self.pings = 0
        self.closed = False
        self.fail_acquire: Exception | None = None
        self.fail_ping: Exception | None = None
        self.fail_execute: Exception | None = None
        self.fail_on: str | None = None
        self.decoded: list[str | int] = []

    def add_result(self, fragment: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Rows returned by any query whose SQL contains `fragment`."""
        decoded_rows = [Row(list(r.keys()), list(r.values()), self.decode) for r in rows]
        self.results.append((fragment, decoded_rows))

    def rows_for(self, sql: str) -> list[Row]:
        for fragment, rows in self.results:
            if fragment in sql:
                return rows
        return []

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]

    @asynccontextmanager
    async def acquire(self):
        if self.fail_acquire is not None:
            raise self.fail_acquire
        self.acquired += 1
        yield FakeConnection(self)

    async def ping(self) -> None:
        self.pings += 1
        if self.fail_ping is not None:
            raise self.fail_ping

    async def close(self) -> None:
        self.closed = True

    def decode(self, row: Row, column: str | int) -> Any:
        self.decoded.append(column)
        return row[column]


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def make_pool() -> Callable[..., tuple[ConnectionPool, FakeDriver]]:
    """Factory for pools backed by a FakeDriver."""

    def factory(
        name: str = "main",
        dialect: Dialect = Dialect.SQLITE,
        driver: FakeDriver | None = None,
        **options: Any,
    ) -> tuple[ConnectionPool, FakeDriver]:
        driver = driver or FakeDriver(dialect)
        database = options.pop("database", "test")
        health_check_interval = options.pop("health_check_interval", 60)
        config = PoolConfig(
            name=name, database=database, health_check_interval=health_check_interval
        )
        pool = ConnectionPool(config, dialect, driver_factory=lambda _pool: driver, **options)
        return pool, driver

    return factory


# === Registry isolation ===


@pytest.fixture(autouse=True)
def clean_registries() -> Generator[None, None, None]:
    """Clear the shared schema registry and pool registry around every test."""
    registry = get_registry()
    registry.clear()
    registry.set_namespace(None)
    reset_pools()
    yield
    registry.clear()
    registry.set_namespace(None)
    reset_pools()


# === Entities ===


@pytest.fixture
def schema() -> SchemaRegistry:
    return SchemaRegistry()


@pytest.fixture
def user_entity(schema: SchemaRegistry) -> Entity:
    return schema.register(
        {
            "name": "user",
            "columns": [
                {"name": "id", "type": "i64", "primary": True},
                {"name": "name", "type": "string", "length": 64, "not_null": True},
                {"name": "status", "type": "string", "length": 16},
                {"name": "project_id", "type": "i64"},
                {"name": "age", "type": "i32"},
            ],
        }
    )


@pytest.fixture
def project_entity(schema: SchemaRegistry) -> Entity:
    return schema.register(
        {
            "name": "project",
            "columns": [
                {"name": "id", "type": "i64", "primary": True},
                {"name": "name", "type": "string", "length": 64},
            ],
        }
    )


@pytest.fixture
def task_entity(schema: SchemaRegistry) -> Entity:
    return schema.register(
        {
            "name": "task",
            "columns": [
                {"name": "id", "type": "i64", "primary": True, "auto_increment": True},
                {"name": "project_id", "type": "i64", "not_null": True},
                {"name": "status", "type": "string", "default": "Pending"},
                {"name": "tags", "type": "array", "element_type": "string"},
                {"name": "meta", "type": "json"},
                {"name": "ref", "type": "uuid"},
                {"name": "attempts", "type": "i32", "default": 0},
            ],
        }
    )
