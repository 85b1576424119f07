"""Entity and column descriptors.

Descriptors are pydantic models so that entities can be declared either in
code or from plain dicts/JSON (as the CLI does). A descriptor is resolved into
an immutable `Entity` by the schema registry, which applies the table-name
namespace and freezes the column order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, Field, model_validator

from relkit.exceptions import FieldNotFoundError


class ColumnType(StrEnum):
    """Dialect-independent column types."""

    BOOL = "bool"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    F32 = "f32"
    F64 = "f64"
    STRING = "string"
    TEXT = "text"
    BYTES = "bytes"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    UUID = "uuid"
    DECIMAL = "decimal"
    JSON = "json"
    ARRAY = "array"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid column type values."""
        return [t.value for t in cls]

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_TYPES

    @property
    def is_unsigned(self) -> bool:
        return self in (ColumnType.U16, ColumnType.U32, ColumnType.U64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integer or self in (ColumnType.F32, ColumnType.F64, ColumnType.DECIMAL)

    @property
    def is_textual(self) -> bool:
        return self in (ColumnType.STRING, ColumnType.TEXT)


_INTEGER_TYPES = frozenset(
    {
        ColumnType.I16,
        ColumnType.I32,
        ColumnType.I64,
        ColumnType.U16,
        ColumnType.U32,
        ColumnType.U64,
    }
)


class IndexKind(StrEnum):
    """Secondary index kinds."""

    NONE = "none"
    BTREE = "btree"
    HASH = "hash"
    GIN = "gin"
    TEXT = "text"
    SPATIAL = "spatial"


class ReferentialAction(StrEnum):
    """Referential actions for foreign keys."""

    CASCADE = "cascade"
    SET_NULL = "set_null"
    SET_DEFAULT = "set_default"
    RESTRICT = "restrict"
    NO_ACTION = "no_action"

    @property
    def sql(self) -> str:
        return self.value.replace("_", " ").upper()


class ReferenceSpec(BaseModel):
    """A reference from a column to a column of another table."""

    table: str = Field(..., description="Referenced table name")
    column: str = Field(default="id", description="Referenced column name")
    on_delete: ReferentialAction | None = None
    on_update: ReferentialAction | None = None
    foreign_key: bool = Field(
        default=False,
        description="Emit a table-level FOREIGN KEY constraint for this reference",
    )

    model_config = {"frozen": True}


class ColumnSpec(BaseModel):
    """Specification for a column.

    This is the input format for declaring columns; a dict with the same keys
    is accepted anywhere a ColumnSpec is.
    """

    name: str = Field(..., description="Logical column name")
    column_name: str | None = Field(default=None, description="Physical column name override")
    type: ColumnType = Field(default=ColumnType.STRING, description="Column data type")
    length: int | None = Field(default=None, ge=1, description="Length for string columns")
    precision: int | None = Field(default=None, ge=1, description="Decimal precision")
    scale: int | None = Field(default=None, ge=0, description="Decimal scale")
    element_type: ColumnType | None = Field(default=None, description="Element type of arrays")
    not_null: bool = False
    unique: bool = False
    primary: bool = False
    auto_increment: bool = False
    auto_random: bool = False
    default: Any = Field(default=None, description="Literal default or a named generator")
    reference: ReferenceSpec | None = None
    index: IndexKind = IndexKind.NONE
    description: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_type_options(self) -> ColumnSpec:
        if self.type == ColumnType.ARRAY:
            if self.element_type is None:
                raise ValueError(f"array column '{self.name}' needs an element_type")
            if self.element_type in (ColumnType.ARRAY, ColumnType.JSON):
                raise ValueError(f"array column '{self.name}' cannot nest {self.element_type}")
        elif self.element_type is not None:
            raise ValueError(f"element_type is only valid for array columns ('{self.name}')")
        if (self.auto_increment or self.auto_random) and not self.type.is_integer:
            raise ValueError(f"auto-increment column '{self.name}' must have an integer type")
        if self.scale is not None and self.precision is None:
            raise ValueError(f"decimal column '{self.name}' has a scale but no precision")
        return self

    @property
    def physical_name(self) -> str:
        """Name of the column in the database."""
        return self.column_name or self.name

    @property
    def nullable(self) -> bool:
        return not (self.not_null or self.primary)


class EntitySpec(BaseModel):
    """Specification for an entity (one table)."""

    name: str = Field(..., description="Logical model name")
    table_name: str | None = Field(default=None, description="Explicit physical table name")
    columns: tuple[ColumnSpec, ...] = Field(..., min_length=1)
    reader: str = Field(default="main", description="Service name used for reads")
    writer: str = Field(default="main", description="Service name used for writes")
    description: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_columns(self) -> EntitySpec:
        primaries = [col.name for col in self.columns if col.primary]
        if len(primaries) != 1:
            raise ValueError(
                f"entity '{self.name}' must have exactly one primary column, found {len(primaries)}"
            )
        seen: set[str] = set()
        for col in self.columns:
            for key in {col.name, col.physical_name}:
                if key in seen:
                    raise ValueError(f"entity '{self.name}' declares column '{key}' twice")
            seen.add(col.name)
            seen.add(col.physical_name)
        return self


@dataclass(frozen=True)
class Entity:
    """A registered entity: a descriptor bound to its physical table name."""

    spec: EntitySpec
    table_name: str
    _by_name: dict[str, ColumnSpec] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for col in self.spec.columns:
            self._by_name[col.name] = col
            self._by_name.setdefault(col.physical_name, col)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def columns(self) -> tuple[ColumnSpec, ...]:
        return self.spec.columns

    @cached_property
    def primary_key(self) -> ColumnSpec:
        return next(col for col in self.spec.columns if col.primary)

    @property
    def reader(self) -> str:
        return self.spec.reader

    @property
    def writer(self) -> str:
        return self.spec.writer

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.spec.columns]

    @property
    def indices(self) -> list[ColumnSpec]:
        """Columns that carry a secondary index."""
        return [col for col in self.spec.columns if col.index != IndexKind.NONE]

    def owns(self, qualifier: str) -> bool:
        """Return True if a `qualifier.field` key refers to this entity."""
        return qualifier in (self.spec.name, self.table_name)

    def find_column(self, key: str) -> ColumnSpec | None:
        """Look up a column by logical or physical name, optionally qualified."""
        if "." in key:
            qualifier, key = key.split(".", 1)
            if not self.owns(qualifier):
                return None
        return self._by_name.get(key)

    def column(self, key: str) -> ColumnSpec:
        """Look up a column, raising FieldNotFoundError if it does not exist."""
        col = self.find_column(key)
        if col is None:
            raise FieldNotFoundError(key, self.spec.name, self.column_names)
        return col

    def has_column(self, key: str) -> bool:
        return self.find_column(key) is not None
