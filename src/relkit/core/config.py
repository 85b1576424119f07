"""Database configuration.

Configuration is a TOML document with a `[database]` table of engine-wide
keys and one array of pool tables per driver kind:

    [database]
    type = "postgres"
    namespace = "app"
    max-rows = 5000

    [[postgres]]
    name = "main"
    host = "127.0.0.1"
    database = "app"
    username = "app"
    password = "secret"

    [[postgres]]
    name = "main"
    host = "127.0.0.2"
    database = "app"
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from relkit.exceptions import ConfigError
from relkit.sql.dialect import Dialect

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

_password_decryptor: Callable[[str], str] | None = None


def set_password_decryptor(decryptor: Callable[[str], str] | None) -> None:
    """Install the process-wide decryptor applied to configured passwords."""
    global _password_decryptor
    _password_decryptor = decryptor


def parse_duration(value: Any) -> float:
    """Parse seconds from an int/float or a string like `30s`, `10m`, `24h`, `7d`."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _DURATION.match(value.lower())
        if match:
            return float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    raise ValueError(f"invalid duration {value!r}")


class PoolConfig(BaseModel):
    """Options of one connection pool."""

    name: str = Field(default="main", description="Service name the pool is registered under")
    database: str = Field(..., description="Database name, or file path for SQLite")
    host: str = "127.0.0.1"
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = None
    password: str | None = Field(default=None, description="Password, possibly encrypted")
    max_connections: int = Field(default=16, ge=1, alias="max-connections")
    min_connections: int = Field(default=1, ge=0, alias="min-connections")
    max_lifetime: float = Field(default=86400.0, gt=0, alias="max-lifetime")
    idle_timeout: float = Field(default=3600.0, gt=0, alias="idle-timeout")
    acquire_timeout: float = Field(default=60.0, gt=0, alias="acquire-timeout")
    health_check_interval: int = Field(default=60, ge=0, alias="health-check-interval")
    statement_cache_capacity: int = Field(default=500, ge=0, alias="statement-cache-capacity")
    ssl_mode: str | None = Field(default=None, alias="ssl-mode")
    read_only: bool = Field(default=False, alias="read-only")
    auto_migration: bool | None = Field(default=None, alias="auto-migration")
    debug_only: bool | None = Field(default=None, alias="debug-only")
    time_zone: str | None = Field(default=None, alias="time-zone")
    max_rows: int | None = Field(default=None, ge=1, alias="max-rows")

    model_config = {"populate_by_name": True, "extra": "forbid", "frozen": True}

    @field_validator("max_lifetime", "idle_timeout", "acquire_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    def resolved_password(self) -> str | None:
        """The password after applying the installed decryptor."""
        if self.password is None or _password_decryptor is None:
            return self.password
        return _password_decryptor(self.password)


class EngineConfig(BaseModel):
    """Engine-wide keys of the `[database]` table."""

    type: Dialect = Field(..., description="Driver kind")
    namespace: str | None = Field(default=None, description="Table-name prefix")
    time_zone: str | None = Field(default=None, alias="time-zone")
    max_rows: int = Field(default=10000, ge=1, alias="max-rows")
    auto_migration: bool = Field(default=True, alias="auto-migration")
    debug_only: bool = Field(default=False, alias="debug-only")

    model_config = {"populate_by_name": True, "extra": "forbid", "frozen": True}

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Dialect:
        return Dialect.parse(value)


def _validation_context(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in error.errors()
    ]


class DatabaseSettings(BaseModel):
    """Validated database configuration: engine keys plus pools in order."""

    engine: EngineConfig
    pools: tuple[PoolConfig, ...] = Field(..., min_length=1)

    model_config = {"frozen": True}

    @property
    def dialect(self) -> Dialect:
        return self.engine.type

    def auto_migration(self, pool: PoolConfig) -> bool:
        return self.engine.auto_migration if pool.auto_migration is None else pool.auto_migration

    def debug_only(self, pool: PoolConfig) -> bool:
        return self.engine.debug_only if pool.debug_only is None else pool.debug_only

    def max_rows(self, pool: PoolConfig) -> int:
        return pool.max_rows or self.engine.max_rows

    def time_zone(self, pool: PoolConfig) -> str | None:
        return pool.time_zone or self.engine.time_zone

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DatabaseSettings:
        """Build settings from a parsed configuration document.

        Raises:
            ConfigError: If the document is malformed
        """
        database = data.get("database")
        if not isinstance(database, Mapping):
            raise ConfigError("Missing [database] table in configuration", {"key": "database"})
        try:
            engine = EngineConfig.model_validate(dict(database))
        except ConfigError:
            raise
        except ValidationError as e:
            raise ConfigError(
                "Invalid [database] configuration", {"errors": _validation_context(e)}
            ) from e

        key = engine.type.value
        raw_pools = data.get(key)
        if raw_pools is None and engine.type == Dialect.POSTGRES:
            raw_pools = data.get("postgresql")
        if isinstance(raw_pools, Mapping):
            raw_pools = [raw_pools]
        if not raw_pools:
            raise ConfigError(
                f"No [[{key}]] pool is configured for database type '{key}'", {"key": key}
            )
        pools = []
        for index, raw in enumerate(raw_pools):
            try:
                pools.append(PoolConfig.model_validate(dict(raw)))
            except (ValidationError, TypeError, ValueError) as e:
                context: dict[str, Any] = {"key": key, "index": index}
                if isinstance(e, ValidationError):
                    context["errors"] = _validation_context(e)
                raise ConfigError(f"Invalid [[{key}]] pool #{index + 1}", context) from e
        return cls(engine=engine, pools=tuple(pools))

    @classmethod
    def from_toml(cls, text: str) -> DatabaseSettings:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML: {e}", {"error": str(e)}) from e
        return cls.from_mapping(data)

    @classmethod
    def load(cls, path: str | Path) -> DatabaseSettings:
        """Load settings from a TOML file."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file {path}", {"path": str(path)}) from e
        return cls.from_toml(text)
