from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from models.catalog import is_valid_week, quarter_index


PACE_STATUSES: tuple[str, ...] = ("PENDING", "COMPLETED", "FAILED", "UNFINISHED")
PROJECTION_STATUSES: tuple[str, ...] = ("OPEN", "CLOSED")


@dataclass(frozen=True)
class GradeHistoryEntry:
    grade: int
    date: datetime
    note: str | None = None


@dataclass(frozen=True)
class PlacedUnit:
    id: str
    catalog_entry_id: str
    # Normalized to "Q1".."Q4" at the boundary when recognised; anything else is
    # kept as received so the grid can drop it.
    quarter: str
    week: int
    grade: int | None = None
    status: str = "PENDING"
    original_quarter: str | None = None
    original_week: int | None = None
    grade_history: tuple[GradeHistoryEntry, ...] = ()

    @property
    def position(self) -> tuple[int, int] | None:
        """Chronological position `(quarter index, week)`, or None when not placeable."""

        try:
            q = quarter_index(self.quarter)
        except ValueError:
            return None
        if not is_valid_week(self.week):
            return None
        return (q, self.week)

    @property
    def is_unfinished_reference(self) -> bool:
        # The unfinished copy left behind in the quarter the unit came from.
        return self.status == "UNFINISHED" and self.original_quarter == self.quarter

    @property
    def is_graded(self) -> bool:
        return self.grade is not None


@dataclass(frozen=True)
class Student:
    id: str
    full_name: str = ""
    current_level: str | None = None
    is_leveled: bool = False


@dataclass(frozen=True)
class Projection:
    id: str
    student_id: str
    student: Student
    school_year: str = ""
    status: str = "OPEN"
    closed_quarters: frozenset[str] = field(default_factory=frozenset)
    units: tuple[PlacedUnit, ...] = ()

    @property
    def is_closed(self) -> bool:
        return self.status == "CLOSED"

    def unit(self, unit_id: str) -> PlacedUnit | None:
        for u in self.units:
            if u.id == unit_id:
                return u
        return None

    def with_units(self, units) -> "Projection":
        return replace(self, units=tuple(units))

    def replace_unit(self, updated: PlacedUnit) -> "Projection":
        return self.with_units(updated if u.id == updated.id else u for u in self.units)

    def without_unit(self, unit_id: str) -> "Projection":
        return self.with_units(u for u in self.units if u.id != unit_id)
