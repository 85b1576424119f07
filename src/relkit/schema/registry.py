"""Process-wide schema registry.

Entities are registered once during start-up and the registry is frozen
before first use. After `freeze()` the registry only serves reads, so lookups
never take a lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from relkit.exceptions import EntityNotFoundError, SchemaConflictError
from relkit.schema.models import Entity, EntitySpec

logger = logging.getLogger(__name__)


def to_table_name(entity_name: str, namespace: str | None = None) -> str:
    """Convert an entity name to a table name (e.g., TaskRun -> app_task_run)."""
    # Convert PascalCase to snake_case
    result = []
    for i, char in enumerate(entity_name):
        if char.isupper() and i > 0 and entity_name[i - 1] != "_":
            result.append("_")
        result.append(char.lower())
    table_name = "".join(result).replace(" ", "_").replace("-", "_")
    while "__" in table_name:
        table_name = table_name.replace("__", "_")
    if namespace:
        return f"{namespace}_{table_name}"
    return table_name


class SchemaRegistry:
    """Holds entity metadata keyed by logical model name."""

    def __init__(self, namespace: str | None = None) -> None:
        self._namespace = namespace
        self._entities: dict[str, Entity] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def namespace(self) -> str | None:
        return self._namespace

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def set_namespace(self, namespace: str | None) -> None:
        """Set the table-name prefix applied to entities without an explicit table name.

        Entities already registered are renamed, so the namespace can be
        applied any time before the registry is frozen.

        Raises:
            SchemaConflictError: If the registry is frozen
        """
        with self._lock:
            if namespace == self._namespace:
                return
            if self._frozen:
                raise SchemaConflictError("*", "the namespace cannot change once frozen")
            self._namespace = namespace
            self._entities = {
                name: entity
                if entity.spec.table_name
                else Entity(spec=entity.spec, table_name=to_table_name(name, namespace))
                for name, entity in self._entities.items()
            }

    def register(self, descriptor: EntitySpec | dict[str, Any]) -> Entity:
        """Register an entity descriptor.

        Registering an equal descriptor twice is a no-op and returns the
        existing entity.

        Raises:
            SchemaConflictError: If a different descriptor is already registered
                under the same name, or the registry is frozen
        """
        spec = descriptor if isinstance(descriptor, EntitySpec) else EntitySpec(**descriptor)
        with self._lock:
            existing = self._entities.get(spec.name)
            if existing is not None:
                if existing.spec == spec:
                    return existing
                raise SchemaConflictError(
                    spec.name, "an incompatible descriptor is already registered"
                )
            if self._frozen:
                raise SchemaConflictError(spec.name, "the schema registry is frozen")

            table_name = spec.table_name or to_table_name(spec.name, self._namespace)
            for other in self._entities.values():
                if other.table_name == table_name:
                    raise SchemaConflictError(
                        spec.name, f"table '{table_name}' is already used by '{other.name}'"
                    )
            entity = Entity(spec=spec, table_name=table_name)
            self._entities[spec.name] = entity
            logger.debug(f"Registered entity '{spec.name}' as table '{table_name}'")
            return entity

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True

    def get(self, name: str) -> Entity:
        """Get a registered entity by model name or table name."""
        entity = self._entities.get(name)
        if entity is not None:
            return entity
        for entity in self._entities.values():
            if entity.table_name == name:
                return entity
        raise EntityNotFoundError(name, sorted(self._entities))

    def find(self, name: str) -> Entity | None:
        try:
            return self.get(name)
        except EntityNotFoundError:
            return None

    def entities(self) -> list[Entity]:
        """Registered entities in registration order."""
        return list(self._entities.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def __len__(self) -> int:
        return len(self._entities)

    def clear(self) -> None:
        """Drop every entity and unfreeze. Intended for tests."""
        with self._lock:
            self._entities.clear()
            self._frozen = False


_shared_registry = SchemaRegistry()


def get_registry() -> SchemaRegistry:
    """Return the process-wide schema registry."""
    return _shared_registry


def resolve_entity(target: Any) -> Entity:
    """Resolve an Entity, a model class or a registered name to an Entity."""
    if isinstance(target, Entity):
        return target
    name = getattr(target, "__entity_name__", None)
    if isinstance(name, str):
        return _shared_registry.get(name)
    if isinstance(target, str):
        return _shared_registry.get(target)
    raise TypeError(f"Cannot resolve an entity from {target!r}")
