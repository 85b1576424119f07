"""Tests for configuration parsing."""

import pytest

from relkit.core.config import DatabaseSettings, PoolConfig, parse_duration, set_password_decryptor
from relkit.exceptions import ConfigError
from relkit.sql.dialect import Dialect

BASIC_TOML = """
[database]
type = "postgres"
namespace = "app"
max-rows = 500
auto-migration = false

[[postgres]]
name = "main"
host = "10.0.0.1"
database = "app"
username = "app"
password = "secret"
max-connections = 8
idle-timeout = "10m"

[[postgres]]
name = "main"
host = "10.0.0.2"
database = "app"
auto-migration = true
max-rows = 50
"""


class TestParseDuration:
    """Tests for duration strings."""

    @pytest.mark.parametrize(
        ("value", "seconds"),
        [(30, 30.0), (1.5, 1.5), ("45", 45.0), ("30s", 30.0), ("10m", 600.0), ("24h", 86400.0)],
    )
    def test_valid(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["soon", "10x", True, None])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestDatabaseSettings:
    """Tests for loading settings from TOML."""

    def test_pools_in_order(self):
        """Pools keep configuration order and share the service name."""
        settings = DatabaseSettings.from_toml(BASIC_TOML)
        assert settings.dialect == Dialect.POSTGRES
        assert [pool.host for pool in settings.pools] == ["10.0.0.1", "10.0.0.2"]
        assert settings.engine.namespace == "app"

    def test_pool_options(self):
        pool = DatabaseSettings.from_toml(BASIC_TOML).pools[0]
        assert pool.max_connections == 8
        assert pool.idle_timeout == 600.0
        assert pool.max_lifetime == 86400.0

    def test_pool_overrides_engine(self):
        """Pool keys override the engine-wide defaults."""
        settings = DatabaseSettings.from_toml(BASIC_TOML)
        first, second = settings.pools
        assert settings.auto_migration(first) is False
        assert settings.auto_migration(second) is True
        assert settings.max_rows(first) == 500
        assert settings.max_rows(second) == 50

    def test_dialect_alias(self):
        settings = DatabaseSettings.from_toml(
            '[database]\ntype = "postgresql"\n[[postgresql]]\ndatabase = "app"\n'
        )
        assert settings.dialect == Dialect.POSTGRES

    def test_single_pool_table(self):
        """A single `[sqlite]` table is accepted as one pool."""
        settings = DatabaseSettings.from_toml(
            '[database]\ntype = "sqlite"\n[sqlite]\ndatabase = "app.db"\n'
        )
        assert len(settings.pools) == 1
        assert settings.pools[0].name == "main"

    def test_missing_database_table(self):
        with pytest.raises(ConfigError, match=r"\[database\]"):
            DatabaseSettings.from_toml('[[mysql]]\ndatabase = "app"\n')

    def test_unknown_type(self):
        with pytest.raises(ConfigError):
            DatabaseSettings.from_toml('[database]\ntype = "oracle"\n')

    def test_no_pools_for_type(self):
        """Pools of another driver kind do not count."""
        with pytest.raises(ConfigError, match="mysql"):
            DatabaseSettings.from_toml(
                '[database]\ntype = "mysql"\n[[postgres]]\ndatabase = "app"\n'
            )

    def test_unknown_pool_key(self):
        with pytest.raises(ConfigError) as exc_info:
            DatabaseSettings.from_toml(
                '[database]\ntype = "mysql"\n[[mysql]]\ndatabase = "app"\nmax-conns = 3\n'
            )
        assert exc_info.value.context["index"] == 0

    def test_invalid_toml(self):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            DatabaseSettings.from_toml("[database")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            DatabaseSettings.load(tmp_path / "missing.toml")

    def test_load_file(self, tmp_path):
        path = tmp_path / "relkit.toml"
        path.write_text(BASIC_TOML, encoding="utf-8")
        assert len(DatabaseSettings.load(path).pools) == 2


class TestPasswordDecryptor:
    """Tests for the password decryption hook."""

    def test_plain_password(self):
        assert PoolConfig(database="app", password="secret").resolved_password() == "secret"

    def test_decryptor_applied(self):
        set_password_decryptor(lambda value: value[::-1])
        try:
            assert PoolConfig(database="app", password="terces").resolved_password() == "secret"
        finally:
            set_password_decryptor(None)
