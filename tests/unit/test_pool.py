"""Tests for connection pools and the pool registry."""

import asyncio
import logging
import time

import pytest

from relkit.core.config import DatabaseSettings
from relkit.core.pool import PoolState
from relkit.core.registry import ConnectionPools, get_pools, init_pools
from relkit.exceptions import ConfigError, DriverError, PoolTimeoutError, PoolUnavailableError
from relkit.sql.dialect import Dialect

SQLITE_TOML = """
[database]
type = "sqlite"
max-rows = 200

[[sqlite]]
name = "main"
database = "app.db"

[[sqlite]]
name = "analytics"
database = "analytics.db"
debug-only = true
"""


async def use(pool):
    async with pool.acquire() as conn:
        return conn


class TestPoolState:
    """Tests for availability bookkeeping."""

    def test_starts_unconnected(self, make_pool):
        pool, driver = make_pool()
        assert pool.state == PoolState.UNCONNECTED
        assert pool.is_available
        assert driver.acquired == 0

    def test_unavailable_counts_misses(self, make_pool):
        pool, _ = make_pool()
        pool.mark_unavailable()
        pool.mark_unavailable()
        assert not pool.is_available
        assert pool.missed_count == 2
        pool.mark_available()
        assert pool.missed_count == 0
        assert pool.state == PoolState.AVAILABLE

    @pytest.mark.parametrize(
        ("misses", "retryable"),
        [(1, False), (2, False), (3, False), (4, True), (6, False), (8, True)],
    )
    def test_retry_backoff(self, make_pool, misses, retryable):
        """Checks are due when the missed count is a power of two above 2."""
        pool, _ = make_pool()
        for _ in range(misses):
            pool.mark_unavailable()
        assert pool.is_retryable() is retryable

    def test_closed_is_terminal(self, make_pool):
        pool, driver = make_pool()
        asyncio.run(use(pool))
        asyncio.run(pool.close())
        pool.mark_available()
        assert pool.state == PoolState.CLOSED
        assert driver.closed


class TestAcquire:
    """Tests for acquiring connections."""

    def test_success_marks_available(self, make_pool):
        pool, driver = make_pool()
        asyncio.run(use(pool))
        assert pool.state == PoolState.AVAILABLE
        assert driver.acquired == 1

    def test_first_failure_reraised(self, make_pool):
        pool, driver = make_pool()
        driver.fail_acquire = DriverError("connection refused")
        with pytest.raises(DriverError):
            asyncio.run(use(pool))
        assert pool.state == PoolState.UNAVAILABLE

    def test_repeated_failure_is_unavailable(self, make_pool):
        """A pool that was already down reports itself unavailable."""
        pool, driver = make_pool()
        driver.fail_acquire = DriverError("connection refused")
        with pytest.raises(DriverError):
            asyncio.run(use(pool))
        with pytest.raises(PoolUnavailableError) as exc_info:
            asyncio.run(use(pool))
        assert exc_info.value.pool_name == "main"
        assert pool.missed_count == 2

    def test_repeated_timeout_keeps_its_kind(self, make_pool):
        """A timeout on a pool that was already down is not reported as unavailable."""
        pool, driver = make_pool()
        pool.mark_unavailable()
        driver.fail_acquire = PoolTimeoutError("main", 5)
        with pytest.raises(PoolTimeoutError):
            asyncio.run(use(pool))
        assert pool.state == PoolState.UNAVAILABLE
        assert pool.missed_count == 2

    def test_recovers_after_success(self, make_pool):
        pool, driver = make_pool()
        pool.mark_unavailable()
        asyncio.run(use(pool))
        assert pool.state == PoolState.AVAILABLE
        assert pool.missed_count == 0

    def test_closed_pool(self, make_pool):
        pool, driver = make_pool()
        asyncio.run(pool.close())
        with pytest.raises(PoolUnavailableError, match="closed"):
            asyncio.run(use(pool))
        assert driver.acquired == 0

    def test_idle_pool_pings_first(self, make_pool):
        pool, driver = make_pool(health_check_interval=0)
        pool._last_used = time.monotonic() - 5
        asyncio.run(use(pool))
        assert driver.pings == 1
        assert driver.acquired == 1

    def test_recent_pool_skips_ping(self, make_pool):
        pool, driver = make_pool()
        pool._last_used = time.monotonic()
        asyncio.run(use(pool))
        assert driver.pings == 0

    def test_failed_idle_ping(self, make_pool):
        pool, driver = make_pool(health_check_interval=0)
        pool._last_used = time.monotonic() - 5
        driver.fail_ping = DriverError("server has gone away")
        with pytest.raises(DriverError):
            asyncio.run(use(pool))
        assert driver.acquired == 0
        assert pool.state == PoolState.UNAVAILABLE


class TestHealth:
    """Tests for ping, availability checks and reconnects."""

    def test_check_availability(self, make_pool):
        pool, driver = make_pool()
        assert asyncio.run(pool.check_availability()) is True
        driver.fail_ping = DriverError("down")
        assert asyncio.run(pool.check_availability()) is False
        assert pool.state == PoolState.UNAVAILABLE

    def test_ping_closed_pool(self, make_pool):
        pool, _ = make_pool()
        asyncio.run(pool.close())
        with pytest.raises(PoolUnavailableError):
            asyncio.run(pool.ping())

    def test_reconnect_replaces_driver(self, make_pool):
        pool, driver = make_pool()
        pool.mark_unavailable()
        _ = pool.driver
        assert asyncio.run(pool.reconnect()) is True
        assert driver.closed
        assert pool.state == PoolState.AVAILABLE

    def test_reconnect_closed_pool(self, make_pool):
        pool, _ = make_pool()
        asyncio.run(pool.close())
        assert asyncio.run(pool.reconnect()) is False


class TestMigrationClaims:
    """Tests for once-per-process migration claims."""

    def test_claimed_once(self, make_pool):
        pool, _ = make_pool()
        assert pool.claim_migration("task") is True
        assert pool.claim_migration("task") is False

    def test_release(self, make_pool):
        pool, _ = make_pool()
        pool.claim_migration("task")
        pool.release_migration("task")
        assert pool.claim_migration("task") is True

    def test_disabled(self, make_pool):
        pool, _ = make_pool(auto_migration=False)
        assert pool.claim_migration("task") is False


class TestConnectionPools:
    """Tests for service-name lookup and failover."""

    def test_first_available(self, make_pool):
        primary, _ = make_pool(database="primary")
        replica, _ = make_pool(database="replica")
        pools = ConnectionPools([primary, replica])
        assert pools.get("main") is primary

    def test_failover_to_next(self, make_pool):
        """An unavailable primary is skipped in favour of an available replica."""
        primary, _ = make_pool(database="primary")
        replica, _ = make_pool(database="replica")
        primary.mark_unavailable()
        pools = ConnectionPools([primary, replica])
        assert pools.get("main") is replica

    def test_all_down_returns_last(self, make_pool):
        primary, _ = make_pool(database="primary")
        replica, _ = make_pool(database="replica")
        primary.mark_unavailable()
        replica.mark_unavailable()
        assert ConnectionPools([primary, replica]).get("main") is replica

    def test_unknown_service(self, make_pool):
        pool, _ = make_pool()
        with pytest.raises(PoolUnavailableError):
            ConnectionPools([pool]).get("billing")

    def test_names(self, make_pool):
        pools = ConnectionPools(
            [make_pool()[0], make_pool(database="replica")[0], make_pool(name="billing")[0]]
        )
        assert pools.names() == ["main", "billing"]

    def test_connect_all_logs_failures(self, make_pool, caplog):
        healthy, _ = make_pool()
        broken, driver = make_pool(name="billing")
        driver.fail_ping = DriverError("refused")
        with caplog.at_level(logging.ERROR):
            asyncio.run(ConnectionPools([healthy, broken]).connect_all())
        assert healthy.state == PoolState.AVAILABLE
        assert "'billing'" in caplog.text

    def test_reconnect_all_without_loop(self, make_pool, caplog):
        pools = ConnectionPools([make_pool()[0]])
        with caplog.at_level(logging.WARNING):
            assert pools.reconnect_all() is None
        assert "No running event loop" in caplog.text

    def test_reconnect_all_in_background(self, make_pool):
        pool, driver = make_pool()
        pool.mark_unavailable()
        pools = ConnectionPools([pool])

        async def scenario():
            task = pools.reconnect_all()
            assert pools.reconnect_all() is task
            await task

        asyncio.run(scenario())
        assert pool.state == PoolState.AVAILABLE
        assert driver.pings == 1

    def test_reconnect_all_logs_unexpected_failure(self, make_pool, caplog):
        pool, driver = make_pool()
        _ = pool.driver
        pool.mark_unavailable()

        async def broken_close():
            raise RuntimeError("socket already closed")

        driver.close = broken_close
        pools = ConnectionPools([pool])

        async def scenario():
            await asyncio.wait([pools.reconnect_all()])
            await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR):
            asyncio.run(scenario())
        assert "Background pool reconnect failed" in caplog.text
        assert "socket already closed" in caplog.text

    def test_close_all(self, make_pool):
        first, first_driver = make_pool()
        second, _ = make_pool(name="billing")
        _ = first.driver
        asyncio.run(ConnectionPools([first, second]).close_all())
        assert first.state == second.state == PoolState.CLOSED
        assert first_driver.closed


class TestGlobalPools:
    """Tests for the process-wide registry."""

    def test_not_initialized(self):
        with pytest.raises(ConfigError):
            get_pools()

    def test_init_from_settings(self):
        settings = DatabaseSettings.from_toml(SQLITE_TOML)
        pools = init_pools(settings)
        assert get_pools() is pools
        main = pools.get("main")
        assert main.dialect == Dialect.SQLITE
        assert main.max_rows == 200
        assert pools.get("analytics").debug_only
        assert main.state == PoolState.UNCONNECTED
