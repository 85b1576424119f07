"""Process-wide registry of connection pools.

Several pools may share a service name (a primary and its replicas). Lookup
returns the first available one, falling back to the last configured.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator

from relkit.core.config import DatabaseSettings
from relkit.core.pool import ConnectionPool, DriverFactory
from relkit.exceptions import ConfigError, PoolUnavailableError

logger = logging.getLogger(__name__)


class ConnectionPools:
    """An ordered collection of pools addressable by service name."""

    def __init__(self, pools: Iterable[ConnectionPool] = ()) -> None:
        self._pools: list[ConnectionPool] = list(pools)
        self._reconnect_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls, settings: DatabaseSettings, driver_factory: DriverFactory | None = None
    ) -> ConnectionPools:
        """Create one (unconnected) pool per configured pool table."""
        pools = [
            ConnectionPool(
                config,
                settings.dialect,
                auto_migration=settings.auto_migration(config),
                debug_only=settings.debug_only(config),
                max_rows=settings.max_rows(config),
                time_zone=settings.time_zone(config),
                driver_factory=driver_factory,
            )
            for config in settings.pools
        ]
        return cls(pools)

    def __iter__(self) -> Iterator[ConnectionPool]:
        return iter(self._pools)

    def __len__(self) -> int:
        return len(self._pools)

    def add(self, pool: ConnectionPool) -> None:
        self._pools.append(pool)

    def names(self) -> list[str]:
        """Distinct service names in configuration order."""
        return list(dict.fromkeys(pool.name for pool in self._pools))

    def get(self, name: str) -> ConnectionPool:
        """Resolve a service name to a pool.

        Returns the first available pool with that name, or the last
        configured one when none is available.

        Raises:
            PoolUnavailableError: If no pool is configured for the service
        """
        candidates = [pool for pool in self._pools if pool.name == name]
        if not candidates:
            raise PoolUnavailableError(name, "no connection pool is configured for this service")
        for pool in candidates:
            if pool.is_available:
                return pool
        return candidates[-1]

    async def connect_all(self) -> None:
        """Eagerly check every pool, logging the ones that are down."""
        results = await asyncio.gather(*(pool.check_availability() for pool in self._pools))
        for pool, available in zip(self._pools, results):
            if not available:
                logger.error(f"Connection pool '{pool.name}' ({pool.database}) is unavailable")

    async def _reconnect(self) -> None:
        for pool in self._pools:
            if not pool.is_available:
                recovered = await pool.reconnect()
                logger.warning(
                    f"Reconnect of pool '{pool.name}' ({pool.database}) "
                    f"{'succeeded' if recovered else 'failed'}"
                )

    def reconnect_all(self) -> asyncio.Task[None] | None:
        """Schedule a background reconnect of every unavailable pool.

        Returns immediately. A reconnect already in flight is reused.
        """
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipping pool reconnect")
            return None
        self._reconnect_task = loop.create_task(self._reconnect())
        self._reconnect_task.add_done_callback(_log_reconnect_failure)
        return self._reconnect_task

    async def close_all(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        for pool in self._pools:
            await pool.close()


def _log_reconnect_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background pool reconnect failed: {error!r}")


_pools: ConnectionPools | None = None


def init_pools(
    settings: DatabaseSettings, driver_factory: DriverFactory | None = None
) -> ConnectionPools:
    """Install the process-wide pool registry."""
    global _pools
    _pools = ConnectionPools.from_settings(settings, driver_factory)
    return _pools


def get_pools() -> ConnectionPools:
    """The process-wide pool registry.

    Raises:
        ConfigError: If `init_pools` has not been called
    """
    if _pools is None:
        raise ConfigError("Connection pools are not initialized; call init_pools() first")
    return _pools


def reset_pools() -> None:
    global _pools
    _pools = None
