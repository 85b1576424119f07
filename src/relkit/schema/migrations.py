"""Additive auto-migration.

On first access to an entity through a pool with auto-migration enabled, the
table is created if missing, columns declared but absent from the live table
are added, and indexes are created. Existing columns are never dropped or
altered.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relkit.exceptions import DriverError, SchemaConflictError
from relkit.schema.ddl import add_column_sql, create_table_sql, index_statements, is_compatible
from relkit.schema.models import Entity
from relkit.sql.dialect import Dialect, placeholder

if TYPE_CHECKING:
    from relkit.core.executor import Executor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveColumn:
    """A column as reported by the database catalog."""

    name: str
    data_type: str
    nullable: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LiveColumn:
        nullable = str(row.get("is_nullable", "YES")).upper() in ("YES", "1", "TRUE")
        return cls(str(row["name"]), str(row["data_type"]), nullable)


def live_columns_sql(dialect: Dialect) -> str:
    """Catalog query returning `name, data_type, is_nullable` for one table.

    The table name is the single bound parameter.
    """
    p = placeholder(1, dialect)
    if dialect.is_mysql_family:
        return (
            "SELECT column_name AS name, data_type AS data_type, is_nullable AS is_nullable "
            "FROM information_schema.columns "
            f"WHERE table_schema = DATABASE() AND table_name = {p} ORDER BY ordinal_position"
        )
    if dialect == Dialect.POSTGRES:
        return (
            "SELECT column_name AS name, data_type, is_nullable "
            "FROM information_schema.columns "
            f"WHERE table_schema = current_schema() AND table_name = {p} "
            "ORDER BY ordinal_position"
        )
    return (
        "SELECT name, type AS data_type, "
        "CASE WHEN \"notnull\" = 0 THEN 'YES' ELSE 'NO' END AS is_nullable "
        f"FROM pragma_table_info({p}) ORDER BY cid"
    )


def plan_migration(
    entity: Entity,
    live_columns: Sequence[LiveColumn],
    dialect: Dialect,
    strict: bool = False,
) -> list[str]:
    """Compute additive ALTER statements bringing a live table up to date.

    Args:
        entity: Declared entity
        live_columns: Columns of the live table (empty if the table is missing)
        dialect: Target dialect
        strict: Raise instead of warning when a live column type is incompatible

    Returns:
        ALTER TABLE ... ADD COLUMN statements, one per missing column

    Raises:
        SchemaConflictError: If `strict` and a live column has an incompatible type
    """
    if not live_columns:
        return []
    live = {col.name.lower(): col for col in live_columns}
    statements = []
    for col in entity.columns:
        existing = live.get(col.physical_name.lower())
        if existing is None:
            if col.not_null and col.default is None:
                logger.warning(
                    f"Column '{col.physical_name}' of '{entity.table_name}' is NOT NULL without "
                    "a default; it is added as nullable"
                )
            statements.append(add_column_sql(entity, col, dialect))
        elif not is_compatible(col, existing.data_type, dialect):
            reason = (
                f"column '{col.physical_name}' is declared as {col.type} but the live "
                f"type is {existing.data_type}"
            )
            if strict:
                raise SchemaConflictError(entity.name, reason)
            logger.warning(f"Schema drift on '{entity.table_name}': {reason}")
    return statements


async def fetch_live_columns(executor: Executor, entity: Entity) -> list[LiveColumn]:
    rows = await executor.fetch(live_columns_sql(executor.dialect), [entity.table_name])
    return [LiveColumn.from_row(row) for row in rows]


async def synchronize(executor: Executor, entity: Entity, strict: bool = False) -> list[str]:
    """Create the entity's table if missing and add missing columns.

    Returns:
        The ALTER statements that were executed
    """
    dialect = executor.dialect
    await executor.execute(create_table_sql(entity, dialect))
    statements = plan_migration(entity, await fetch_live_columns(executor, entity), dialect, strict)
    for sql in statements:
        logger.warning(f"Adding column to '{entity.table_name}': {sql}")
        await executor.execute(sql)
    for sql in index_statements(entity, dialect):
        try:
            await executor.execute(sql)
        except DriverError as e:
            # MySQL has no CREATE INDEX IF NOT EXISTS
            if not dialect.is_mysql_family:
                raise
            logger.debug(f"Index statement skipped on '{entity.table_name}': {e.message}")
    return statements
