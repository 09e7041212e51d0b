from __future__ import annotations

from dataclasses import dataclass
from typing import Any


VIOLATION_OPERATIONS: tuple[str, ...] = ("add", "move")
VIOLATION_RELATIONS: tuple[str, ...] = ("before", "after", "position")


@dataclass(frozen=True)
class PlacementViolation:
    """An ordering conflict between the unit being placed and one already on the grid.

    `relation` says where the placed unit would land relative to the conflicting one:
    `before` a unit that must precede it, `after` a unit that must follow it, or in
    the same cell (`position`).
    """

    operation: str
    relation: str
    order: int
    conflicting_order: int
    quarter: str | None = None
    week: int | None = None
    code: str | None = None
    conflicting_code: str | None = None

    @property
    def message_key(self) -> str:
        if self.relation == "position":
            return f"projections.{self.operation}PacePositionConflict"
        return f"projections.cannot{self.operation.capitalize()}PaceSequentialOrder"

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "relation": self.relation,
            "order": self.order,
            "conflictingOrder": self.conflicting_order,
            "quarter": self.quarter,
            "week": self.week,
            "code": self.code,
            "conflictingCode": self.conflicting_code,
            "messageKey": self.message_key,
        }
