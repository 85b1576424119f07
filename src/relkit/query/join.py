"""Join specifications."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from relkit.exceptions import BuildError
from relkit.schema.models import Entity
from relkit.schema.registry import resolve_entity


class JoinKind(StrEnum):
    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"
    FULL = "full"
    CROSS = "cross"

    @property
    def sql(self) -> str:
        return f"{self.value.upper()} JOIN"


_JOIN_OPERATORS = frozenset({"=", "<>", "<", "<=", ">", ">="})


@dataclass(frozen=True)
class JoinCondition:
    """A comparison between a column of each side of a join."""

    left: str
    op: str
    right: str


@dataclass(frozen=True)
class Join:
    """Joins `entity` to the query's entity (or to an earlier join)."""

    kind: JoinKind
    entity: Entity
    conditions: tuple[JoinCondition, ...] = ()

    def on(self, left: str, right: str, op: str = "=") -> Join:
        """Add a join condition, e.g. `.on("task.project_id", "project.id")`."""
        if self.kind == JoinKind.CROSS:
            raise BuildError("A CROSS JOIN takes no conditions")
        if op not in _JOIN_OPERATORS:
            raise BuildError(
                f"Unsupported join operator '{op}'", {"supported": sorted(_JOIN_OPERATORS)}
            )
        return replace(self, conditions=self.conditions + (JoinCondition(left, op, right),))

    def validate(self) -> None:
        if self.kind != JoinKind.CROSS and not self.conditions:
            raise BuildError(
                f"{self.kind.sql} on '{self.entity.table_name}' has no ON condition",
                {"table": self.entity.table_name},
            )


def join(entity: Any, kind: JoinKind | str = JoinKind.INNER) -> Join:
    return Join(JoinKind(kind), resolve_entity(entity))


def inner_join(entity: Any) -> Join:
    return join(entity, JoinKind.INNER)


def left_join(entity: Any) -> Join:
    return join(entity, JoinKind.LEFT)


def right_join(entity: Any) -> Join:
    return join(entity, JoinKind.RIGHT)


def full_join(entity: Any) -> Join:
    return join(entity, JoinKind.FULL)


def cross_join(entity: Any) -> Join:
    return join(entity, JoinKind.CROSS)
