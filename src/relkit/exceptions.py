"""Custom exceptions for relkit.

Every error carries a human-readable message plus a JSON-serializable context
dict, so callers (HTTP handlers, CLI importers) can surface it as-is.
"""

from __future__ import annotations

from typing import Any


class RelkitError(Exception):
    """Base exception for all relkit errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConfigError(RelkitError):
    """Malformed database or pool configuration."""

    pass


class PoolTimeoutError(RelkitError):
    """Acquiring a connection exceeded the pool's acquire timeout."""

    def __init__(self, pool_name: str, timeout: float | None = None) -> None:
        if timeout is not None:
            message = (
                f"Timed out after {timeout:g}s acquiring a connection for the "
                f"'{pool_name}' service."
            )
        else:
            message = f"Timed out acquiring a connection for the '{pool_name}' service."
        super().__init__(message, {"pool": pool_name, "timeout": timeout})
        self.pool_name = pool_name
        self.timeout = timeout


class PoolUnavailableError(RelkitError):
    """Resolved pool is closed, or unavailable with no fallback."""

    def __init__(self, pool_name: str, reason: str) -> None:
        message = f"Connection pool for the '{pool_name}' service is unavailable: {reason}"
        super().__init__(message, {"pool": pool_name, "reason": reason})
        self.pool_name = pool_name
        self.reason = reason


class SchemaConflictError(RelkitError):
    """Incompatible re-registration, or a migration that would be destructive."""

    def __init__(self, entity_name: str, reason: str) -> None:
        message = f"Schema conflict for entity '{entity_name}': {reason}"
        super().__init__(message, {"entity_name": entity_name, "reason": reason})
        self.entity_name = entity_name
        self.reason = reason


class EntityNotFoundError(RelkitError):
    """Entity is not registered."""

    def __init__(self, entity_name: str, available_entities: list[str] | None = None) -> None:
        available = available_entities or []
        if available:
            message = (
                f"Entity '{entity_name}' not found. Registered entities: {', '.join(available)}"
            )
        else:
            message = f"Entity '{entity_name}' not found. No entities are registered."
        super().__init__(message, {"entity_name": entity_name, "available_entities": available})
        self.entity_name = entity_name
        self.available_entities = available


class FieldNotFoundError(RelkitError):
    """Column does not exist on the entity."""

    def __init__(
        self, field_name: str, entity_name: str, available_fields: list[str] | None = None
    ) -> None:
        available = available_fields or []
        if available:
            message = (
                f"Field '{field_name}' not found on '{entity_name}'. "
                f"Available fields: {', '.join(available)}"
            )
        else:
            message = f"Field '{field_name}' not found on '{entity_name}'. No fields defined."

        super().__init__(
            message,
            {
                "field_name": field_name,
                "entity_name": entity_name,
                "available_fields": available,
            },
        )
        self.field_name = field_name
        self.entity_name = entity_name
        self.available_fields = available


# === Builder Errors ===


class BuildError(RelkitError):
    """A query or mutation builder contract was violated."""

    pass


class MixedAggregationError(BuildError):
    """An ungrouped plain column is projected next to an aggregate."""

    def __init__(self, columns: list[str]) -> None:
        message = (
            f"Columns {', '.join(columns)} are projected alongside an aggregation "
            "but are not part of GROUP BY. Add them to group_by() or drop them."
        )
        super().__init__(message, {"columns": columns})
        self.columns = columns


class SetOpArityMismatchError(BuildError):
    """Combined queries project a different number of columns."""

    def __init__(self, operator: str, left: int, right: int) -> None:
        message = (
            f"Cannot combine queries with {operator}: the left query projects {left} "
            f"column(s) but the right query projects {right}."
        )
        super().__init__(message, {"operator": operator, "left": left, "right": right})
        self.operator = operator
        self.left = left
        self.right = right


class UnboundedMutationError(BuildError):
    """UPDATE or DELETE without a filter and without an explicit all flag."""

    def __init__(self, kind: str, entity_name: str) -> None:
        message = (
            f"Refusing to build an unfiltered {kind.upper()} on '{entity_name}'. "
            "Add a filter, or pass all_rows=True to affect every row."
        )
        super().__init__(message, {"kind": kind, "entity_name": entity_name})
        self.kind = kind
        self.entity_name = entity_name


class EmptyInsertError(BuildError):
    """INSERT or upsert with no rows."""

    def __init__(self, entity_name: str) -> None:
        message = f"Cannot insert into '{entity_name}': the row list is empty."
        super().__init__(message, {"entity_name": entity_name})
        self.entity_name = entity_name


# === Codec Errors ===


class EncodeError(RelkitError):
    """A value cannot be bound for the target dialect."""

    pass


class DecodeError(RelkitError):
    """A row value cannot be decoded to the requested type."""

    def __init__(self, field: str, reason: str) -> None:
        message = f"Failed to decode the '{field}' field: {reason}"
        super().__init__(message, {"field": field, "reason": reason})
        self.field = field
        self.reason = reason


class ColumnNotFoundError(DecodeError):
    """The row has no column with the requested name."""

    def __init__(self, field: str, available: list[str] | None = None) -> None:
        available = available or []
        super().__init__(field, f"no such column (row has: {', '.join(available) or 'nothing'})")
        self.context["available"] = available
        self.available = available


# === Execution Errors ===


class DriverError(RelkitError):
    """Any error surfaced by the underlying SQL driver."""

    pass


class NotFoundError(RelkitError):
    """fetch_one returned zero rows."""

    def __init__(self, sql: str) -> None:
        super().__init__("Query returned no rows.", {"sql": sql})
        self.sql = sql
