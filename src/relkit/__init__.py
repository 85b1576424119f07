"""relkit - a typed relational query engine over SQLAlchemy's asyncio drivers.

Entities are declared once, queries and mutations are immutable builders
rendered to `(sql, params)` per dialect, and execution goes through named
connection pools with availability tracking.

Example:
    from pydantic import Field
    from relkit import Database, Dialect, Model, eq, in_, select

    class User(Model):
        id: int | None = Field(default=None, json_schema_extra={"auto_increment": True})
        name: str = Field(max_length=64)
        status: str = Field(max_length=16)

    sql, params = (
        select(User, "id", "name")
        .filter(in_("status", ["Active", "Inactive"]))
        .order_by("id")
        .limit(10)
        .build(Dialect.MYSQL)
    )

    async with Database.load("relkit.toml") as db:
        users = db.model(User)
        await users.insert(User(name="a", status="Active"))
        active = await users.find(eq("status", "Active"))
"""

from relkit.core.config import DatabaseSettings, EngineConfig, PoolConfig, set_password_decryptor
from relkit.core.decode import (
    decode,
    decode_array,
    decode_decimal,
    decode_json,
    decode_optional,
    decode_scalar,
    decode_uuid,
)
from relkit.core.engine import Database, ModelHandle
from relkit.core.executor import Executor
from relkit.core.model import Model
from relkit.core.pool import ConnectionPool, PoolState
from relkit.core.registry import ConnectionPools, get_pools, init_pools, reset_pools
from relkit.core.values import ValueKind
from relkit.drivers.base import Row
from relkit.exceptions import (
    BuildError,
    ColumnNotFoundError,
    ConfigError,
    DecodeError,
    DriverError,
    EmptyInsertError,
    EncodeError,
    EntityNotFoundError,
    FieldNotFoundError,
    MixedAggregationError,
    NotFoundError,
    PoolTimeoutError,
    PoolUnavailableError,
    RelkitError,
    SchemaConflictError,
    SetOpArityMismatchError,
    UnboundedMutationError,
)
from relkit.query import (
    Query,
    Statement,
    alias,
    and_,
    avg,
    between,
    contains,
    count,
    count_distinct,
    delete,
    eq,
    ge,
    gt,
    in_,
    inner_join,
    insert,
    is_not_null,
    is_null,
    le,
    left_join,
    like,
    lt,
    max_,
    min_,
    ne,
    not_,
    not_in,
    or_,
    over,
    select,
    sum_,
    update,
    upsert,
)
from relkit.schema import ColumnSpec, ColumnType, Entity, EntitySpec, IndexKind, get_registry
from relkit.schema.ddl import ddl
from relkit.sql.dialect import Dialect
from relkit.sql.params import Inline

__version__ = "0.1.0"

__all__ = [
    # Main entry points
    "Database",
    "ModelHandle",
    "Model",
    "Executor",
    "Row",
    # Configuration and pools
    "DatabaseSettings",
    "EngineConfig",
    "PoolConfig",
    "set_password_decryptor",
    "ConnectionPool",
    "ConnectionPools",
    "PoolState",
    "init_pools",
    "get_pools",
    "reset_pools",
    # Schema
    "ColumnSpec",
    "ColumnType",
    "Entity",
    "EntitySpec",
    "IndexKind",
    "get_registry",
    "ddl",
    # SQL
    "Dialect",
    "Inline",
    "ValueKind",
    # Builders
    "Query",
    "Statement",
    "select",
    "alias",
    "insert",
    "update",
    "delete",
    "upsert",
    "inner_join",
    "left_join",
    "eq",
    "ne",
    "lt",
    "le",
    "gt",
    "ge",
    "in_",
    "not_in",
    "between",
    "like",
    "is_null",
    "is_not_null",
    "contains",
    "and_",
    "or_",
    "not_",
    "count",
    "count_distinct",
    "sum_",
    "avg",
    "min_",
    "max_",
    "over",
    # Decoding
    "decode",
    "decode_optional",
    "decode_decimal",
    "decode_uuid",
    "decode_array",
    "decode_json",
    "decode_scalar",
    # Exceptions
    "RelkitError",
    "ConfigError",
    "PoolTimeoutError",
    "PoolUnavailableError",
    "SchemaConflictError",
    "EntityNotFoundError",
    "FieldNotFoundError",
    "BuildError",
    "MixedAggregationError",
    "SetOpArityMismatchError",
    "UnboundedMutationError",
    "EmptyInsertError",
    "EncodeError",
    "DecodeError",
    "ColumnNotFoundError",
    "DriverError",
    "NotFoundError",
]
