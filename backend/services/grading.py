from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable

from core.config import settings
from core.errors import ValidationRejection
from models.catalog import Catalog
from models.projection import GradeHistoryEntry, PlacedUnit


def _passing_grade(passing_grade: int | None) -> int:
    return settings.passing_grade if passing_grade is None else passing_grade


def parse_grade(value: Any) -> int:
    """Accept an integer grade in [0, 100] (numeric strings too); raise INVALID_GRADE otherwise."""

    if isinstance(value, bool):
        raise ValidationRejection("INVALID_GRADE", "Grade must be a whole number between 0 and 100.", {"grade": value})
    grade: int | None = None
    if isinstance(value, int):
        grade = value
    elif isinstance(value, float) and value.is_integer():
        grade = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        grade = int(value.strip())
    if grade is None or not 0 <= grade <= 100:
        raise ValidationRejection("INVALID_GRADE", "Grade must be a whole number between 0 and 100.", {"grade": value})
    return grade


@dataclass(frozen=True)
class GradeCommit:
    grade: int
    note: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"grade": self.grade}
        if self.note:
            payload["note"] = self.note
        return payload


class GradeEntry:
    """Two-phase grade capture: the grade first, then an optional comment."""

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        self.grade: int | None = None

    @property
    def awaiting_comment(self) -> bool:
        return self.grade is not None

    def capture_grade(self, value: Any) -> int:
        self.grade = parse_grade(value)
        return self.grade

    def commit(self, note: str | None = None) -> GradeCommit:
        if self.grade is None:
            raise ValidationRejection("INVALID_GRADE", "Enter a grade before saving.", {"unitId": self.unit_id})
        note = (note or "").strip() or None
        return GradeCommit(grade=self.grade, note=note)

    def skip_comment(self) -> GradeCommit:
        return self.commit(None)


def status_for_grade(grade: int, *, passing_grade: int | None = None) -> str:
    return "COMPLETED" if grade >= _passing_grade(passing_grade) else "FAILED"


def apply_grade(
    unit: PlacedUnit,
    commit: GradeCommit,
    *,
    at: datetime | None = None,
    passing_grade: int | None = None,
) -> PlacedUnit:
    entry = GradeHistoryEntry(grade=commit.grade, date=at or datetime.now(timezone.utc), note=commit.note)
    return replace(
        unit,
        grade=commit.grade,
        status=status_for_grade(commit.grade, passing_grade=passing_grade),
        grade_history=unit.grade_history + (entry,),
    )


def mark_ungraded(unit: PlacedUnit) -> PlacedUnit:
    # History stays; only the current grade is cleared.
    return replace(unit, grade=None, status="PENDING")


def failed_attempts(unit: PlacedUnit, *, passing_grade: int | None = None) -> int:
    threshold = _passing_grade(passing_grade)
    return sum(1 for h in unit.grade_history if h.grade < threshold)


@dataclass(frozen=True)
class FailureSummary:
    by_unit: dict[str, int]
    by_subject: dict[str, int]
    by_quarter: dict[str, int]

    @property
    def total(self) -> int:
        return sum(self.by_unit.values())


def summarize_failures(
    units: Iterable[PlacedUnit],
    catalog: Catalog,
    *,
    passing_grade: int | None = None,
) -> FailureSummary:
    by_unit: dict[str, int] = {}
    by_subject: Counter[str] = Counter()
    by_quarter: Counter[str] = Counter()

    for u in units:
        n = failed_attempts(u, passing_grade=passing_grade)
        if n == 0:
            continue
        by_unit[u.id] = n
        subject = catalog.subject_of(u.catalog_entry_id)
        if subject is not None:
            by_subject[subject.name] += n
        by_quarter[u.quarter] += n

    return FailureSummary(by_unit=by_unit, by_subject=dict(by_subject), by_quarter=dict(by_quarter))
