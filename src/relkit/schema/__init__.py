"""Entity descriptors and the schema registry."""

from relkit.schema.models import (
    ColumnSpec,
    ColumnType,
    Entity,
    EntitySpec,
    IndexKind,
    ReferenceSpec,
    ReferentialAction,
)
from relkit.schema.registry import SchemaRegistry, get_registry, to_table_name

__all__ = [
    "ColumnSpec",
    "ColumnType",
    "Entity",
    "EntitySpec",
    "IndexKind",
    "ReferenceSpec",
    "ReferentialAction",
    "SchemaRegistry",
    "get_registry",
    "to_table_name",
]
