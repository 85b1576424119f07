"""Declarative models.

Subclassing `Model` declares an entity and registers it in the shared schema
registry. Columns are derived from the pydantic fields:

    class User(Model):
        id: int = Field(json_schema_extra={"auto_increment": True})
        name: str = Field(max_length=64)
        status: str = Field(default="Active", json_schema_extra={"index": "btree"})
        tags: list[str] = []
        deleted_at: datetime | None = None

A field named `id` is the primary key unless another field sets
`json_schema_extra={"primary": True}`. Column options (`column_name`,
`length`, `precision`, `scale`, `unique`, `index`, `auto_increment`,
`default`, `reference`, ...) are read from `json_schema_extra`.
"""

from __future__ import annotations

import types
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, ClassVar, Union, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel, ValidationError
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined

from relkit.core.decode import (
    decode_array,
    decode_decimal,
    decode_json,
    decode_optional,
    decode_uuid,
)
from relkit.exceptions import DecodeError
from relkit.schema.models import ColumnSpec, ColumnType, Entity, EntitySpec
from relkit.schema.registry import get_registry
from relkit.sql.dialect import Dialect

_SCALAR_TYPES: dict[Any, ColumnType] = {
    bool: ColumnType.BOOL,
    int: ColumnType.I64,
    float: ColumnType.F64,
    str: ColumnType.STRING,
    Decimal: ColumnType.DECIMAL,
    UUID: ColumnType.UUID,
    datetime: ColumnType.DATETIME,
    date: ColumnType.DATE,
    time: ColumnType.TIME,
    bytes: ColumnType.BYTES,
}

_COLUMN_OPTIONS = frozenset(
    {
        "column_name",
        "type",
        "length",
        "precision",
        "scale",
        "element_type",
        "not_null",
        "unique",
        "primary",
        "auto_increment",
        "auto_random",
        "default",
        "reference",
        "index",
        "description",
    }
)


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    if get_origin(annotation) in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0], True
    return annotation, False


def _column_type(annotation: Any, field_name: str) -> tuple[ColumnType, ColumnType | None]:
    if annotation in _SCALAR_TYPES:
        return _SCALAR_TYPES[annotation], None
    origin = get_origin(annotation)
    if annotation is list or origin in (list, tuple, set, frozenset):
        args = get_args(annotation)
        element = args[0] if args else str
        if element not in _SCALAR_TYPES:
            raise TypeError(f"Unsupported array element type for field '{field_name}': {element}")
        return ColumnType.ARRAY, _SCALAR_TYPES[element]
    if annotation is dict or origin is dict or annotation is Any:
        return ColumnType.JSON, None
    raise TypeError(f"Unsupported type for field '{field_name}': {annotation}")


def _column_from_field(name: str, info: FieldInfo) -> ColumnSpec:
    annotation, optional = _unwrap_optional(info.annotation)
    col_type, element_type = _column_type(annotation, name)
    options: dict[str, Any] = {
        "name": name,
        "type": col_type,
        "element_type": element_type,
        "not_null": not optional,
        "primary": name == "id",
        "description": info.description,
    }
    for constraint in info.metadata:
        max_length = getattr(constraint, "max_length", None)
        if max_length is not None and col_type == ColumnType.STRING:
            options["length"] = max_length
    if info.default is not PydanticUndefined and isinstance(
        info.default, (bool, int, float, str, Decimal)
    ):
        options["default"] = info.default

    extra = info.json_schema_extra if isinstance(info.json_schema_extra, Mapping) else {}
    unknown = set(extra) - _COLUMN_OPTIONS
    if unknown:
        raise TypeError(f"Unknown column options for field '{name}': {sorted(unknown)}")
    options.update(extra)
    return ColumnSpec(**options)


def entity_spec_from_model(model: type[Model]) -> EntitySpec:
    """Derive an entity spec from a model's fields."""
    columns = [_column_from_field(name, info) for name, info in model.model_fields.items()]
    explicit = [col for col in columns if col.primary and col.name != "id"]
    if explicit:
        columns = [
            col.model_copy(update={"primary": False}) if col.name == "id" else col
            for col in columns
        ]
    return EntitySpec(
        name=model.__name__,
        table_name=model.__table_name__,
        columns=tuple(columns),
        reader=model.__reader__,
        writer=model.__writer__,
        description=model.__doc__.strip() if model.__doc__ else None,
    )


def _null_value(col: ColumnSpec, row: Mapping[str, Any], key: str, dialect: Dialect) -> Any:
    if not col.not_null:
        return None
    if col.type == ColumnType.DECIMAL:
        return decode_decimal(row, key)
    if col.type == ColumnType.UUID:
        return decode_uuid(row, key)
    if col.type == ColumnType.ARRAY:
        return decode_array(row, key, dialect)
    return None


class Model(BaseModel):
    """Base class of declarative entities."""

    __abstract__: ClassVar[bool] = True
    __table_name__: ClassVar[str | None] = None
    __reader__: ClassVar[str] = "main"
    __writer__: ClassVar[str] = "main"
    __entity_spec__: ClassVar[EntitySpec | dict[str, Any] | None] = None
    __entity_name__: ClassVar[str | None] = None

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        if cls.__dict__.get("__abstract__", False):
            return
        spec = cls.__dict__.get("__entity_spec__") or entity_spec_from_model(cls)
        entity = get_registry().register(spec)
        cls.__entity_name__ = entity.name

    # === Entity hooks ===

    @classmethod
    def entity(cls) -> Entity:
        if cls.__entity_name__ is None:
            raise TypeError(f"{cls.__name__} is abstract and has no entity")
        return get_registry().get(cls.__entity_name__)

    @classmethod
    def table_name(cls) -> str:
        return cls.entity().table_name

    @classmethod
    def columns(cls) -> tuple[ColumnSpec, ...]:
        return cls.entity().columns

    @classmethod
    def primary_key(cls) -> ColumnSpec:
        return cls.entity().primary_key

    @classmethod
    def from_row(cls, row: Mapping[str, Any], dialect: Dialect | None = None) -> Model:
        """Build an instance from a result row.

        Columns are looked up by logical name first, then by physical name.
        JSON and array columns stored as text are parsed. A NULL in a NOT NULL
        decimal, uuid or array column is recovered as zero, the nil uuid or an
        empty list, with a warning.

        Raises:
            DecodeError: If a value does not fit its field
        """
        dialect = dialect or Dialect.SQLITE
        values: dict[str, Any] = {}
        for col in cls.columns():
            key = col.name if col.name in row else col.physical_name
            if key not in row:
                continue
            value = decode_optional(row, key)
            if value is None:
                values[col.name] = _null_value(col, row, key, dialect)
            elif col.type == ColumnType.ARRAY:
                values[col.name] = decode_array(row, key, dialect)
            elif col.type == ColumnType.JSON:
                values[col.name] = decode_json(row, key)
            else:
                values[col.name] = value
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or cls.__name__
            raise DecodeError(field, error["msg"]) from e

    def to_columns(self) -> list[Any]:
        """Field values in column order."""
        return [getattr(self, col.name) for col in self.columns()]

    def to_row(self) -> dict[str, Any]:
        """Insertable mapping; an unset generated primary key is left out."""
        row = {}
        for col in self.columns():
            value = getattr(self, col.name)
            if value is None and col.primary and (col.auto_increment or col.auto_random):
                continue
            row[col.name] = value
        return row
