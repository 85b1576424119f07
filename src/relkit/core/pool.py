"""Connection pools with availability tracking.

A pool moves between four states:

    UNCONNECTED -> AVAILABLE <-> UNAVAILABLE -> CLOSED

The driver is created lazily on first use. Before every acquire, a pool
that has been idle for longer than its health-check interval pings the
database first.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import UTC, datetime
from enum import StrEnum

from relkit.core.config import PoolConfig
from relkit.drivers.base import Driver, DriverConnection
from relkit.exceptions import PoolTimeoutError, PoolUnavailableError, RelkitError
from relkit.sql.dialect import Dialect

logger = logging.getLogger(__name__)

DriverFactory = Callable[["ConnectionPool"], Driver]


class PoolState(StrEnum):
    UNCONNECTED = "unconnected"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    CLOSED = "closed"


def default_driver_factory(pool: ConnectionPool) -> Driver:
    """Build the SQLAlchemy driver for a pool."""
    from relkit.drivers.sqlalchemy import SQLAlchemyDriver

    return SQLAlchemyDriver(pool.config, pool.dialect, time_zone=pool.time_zone)


class ConnectionPool:
    """A named pool of connections to one database."""

    def __init__(
        self,
        config: PoolConfig,
        dialect: Dialect,
        *,
        auto_migration: bool = True,
        debug_only: bool = False,
        max_rows: int = 10000,
        time_zone: str | None = None,
        driver_factory: DriverFactory | None = None,
    ) -> None:
        self.config = config
        self.dialect = dialect
        self.auto_migration = auto_migration
        self.debug_only = debug_only
        self.max_rows = max_rows
        self.time_zone = time_zone
        self.created_at = datetime.now(UTC)
        self._driver_factory = driver_factory or default_driver_factory
        self._driver: Driver | None = None
        self._state = PoolState.UNCONNECTED
        self._missed_count = 0
        self._last_used: float | None = None
        self._migrated: set[str] = set()

    def __repr__(self) -> str:
        return (
            f"ConnectionPool(name={self.name!r}, database={self.database!r}, state={self._state})"
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def database(self) -> str:
        return self.config.database

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def is_available(self) -> bool:
        """True unless the pool is known to be down or closed."""
        return self._state in (PoolState.UNCONNECTED, PoolState.AVAILABLE)

    @property
    def missed_count(self) -> int:
        """Consecutive failed acquires or pings."""
        return self._missed_count

    def is_retryable(self) -> bool:
        """Whether an unavailable pool is due for another availability check.

        Checks back off exponentially: they happen when the missed count is a
        power of two greater than 2.
        """
        count = self._missed_count
        return count > 2 and count & (count - 1) == 0

    def mark_available(self) -> None:
        if self._state == PoolState.CLOSED:
            return
        if self._state != PoolState.AVAILABLE:
            logger.info(f"Connection pool '{self.name}' ({self.database}) is available")
        self._state = PoolState.AVAILABLE
        self._missed_count = 0

    def mark_unavailable(self) -> None:
        if self._state == PoolState.CLOSED:
            return
        self._state = PoolState.UNAVAILABLE
        self._missed_count += 1

    @property
    def driver(self) -> Driver:
        """The pool's driver, created on first access."""
        if self._driver is None:
            logger.warning(f"Connecting lazily to '{self.database}' for the '{self.name}' service")
            self._driver = self._driver_factory(self)
        return self._driver

    def _is_idle(self) -> bool:
        if self._last_used is None:
            return False
        return time.monotonic() - self._last_used > self.config.health_check_interval

    async def ping(self) -> None:
        """Ping the database, updating availability.

        Raises:
            PoolUnavailableError: If the pool is closed
        """
        if self._state == PoolState.CLOSED:
            raise PoolUnavailableError(self.name, "the pool is closed")
        try:
            await self.driver.ping()
        except RelkitError as e:
            self.mark_unavailable()
            logger.error(f"Health check of pool '{self.name}' ({self.database}) failed: {e}")
            raise
        self._last_used = time.monotonic()
        self.mark_available()

    async def check_availability(self) -> bool:
        """Ping without raising; return the resulting availability."""
        try:
            await self.ping()
        except RelkitError:
            return False
        return True

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[DriverConnection]:
        """Acquire a connection.

        Raises:
            PoolUnavailableError: If the pool is closed, or it was already
                unavailable and connecting failed again
            PoolTimeoutError: If no connection was free within the acquire timeout
            DriverError: If the database could not be reached
        """
        if self._state == PoolState.CLOSED:
            raise PoolUnavailableError(self.name, "the pool is closed")
        if self._is_idle():
            await self.ping()

        was_unavailable = self._state == PoolState.UNAVAILABLE
        stack = AsyncExitStack()
        try:
            conn = await stack.enter_async_context(self.driver.acquire())
        except RelkitError as e:
            self.mark_unavailable()
            logger.error(f"Failed to acquire a connection from pool '{self.name}': {e}")
            if was_unavailable and not isinstance(e, PoolTimeoutError):
                raise PoolUnavailableError(self.name, str(e)) from e
            raise
        self.mark_available()
        async with stack:
            try:
                yield conn
            finally:
                self._last_used = time.monotonic()

    def claim_migration(self, entity_name: str) -> bool:
        """Return True the first time an entity is seen on this pool.

        The entity is marked before any await, so concurrent first accesses
        migrate only once per process.
        """
        if not self.auto_migration or entity_name in self._migrated:
            return False
        self._migrated.add(entity_name)
        return True

    def release_migration(self, entity_name: str) -> None:
        """Forget a claim so the next access migrates again."""
        self._migrated.discard(entity_name)

    async def close(self) -> None:
        if self._state == PoolState.CLOSED:
            return
        self._state = PoolState.CLOSED
        if self._driver is not None:
            await self._driver.close()
        logger.warning(f"Closed connection pool '{self.name}' ({self.database})")

    async def reconnect(self) -> bool:
        """Drop the current driver and check availability with a fresh one."""
        if self._state == PoolState.CLOSED:
            return False
        if self._driver is not None:
            driver, self._driver = self._driver, None
            await driver.close()
        return await self.check_availability()
