from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models.catalog import normalize_quarter
from models.projection import GradeHistoryEntry, PlacedUnit, Projection, Student


PaceStatus = Literal["PENDING", "COMPLETED", "FAILED", "UNFINISHED"]


def _quarter_or_raw(v: Any) -> Any:
    # Unrecognised quarters are kept as received; the grid drops them instead of
    # failing the whole snapshot.
    if v is None:
        return v
    normalized = normalize_quarter(v)
    return normalized if normalized is not None else str(v)


class GradeHistoryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    grade: int = Field(ge=0, le=100)
    date: datetime
    note: str | None = None


class PlacedUnitIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    catalog_entry_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("catalogEntryId", "paceCatalogId", "catalog_entry_id"),
    )
    quarter: str
    week: int
    grade: int | None = Field(default=None, ge=0, le=100)
    status: PaceStatus = "PENDING"
    original_quarter: str | None = None
    original_week: int | None = None
    grade_history: list[GradeHistoryIn] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _status_from_flags(cls, data: Any) -> Any:
        # Older store builds send isCompleted/isFailed/isUnfinished instead of status.
        if not isinstance(data, dict) or data.get("status"):
            return data
        data = dict(data)
        if data.get("isUnfinished"):
            data["status"] = "UNFINISHED"
        elif data.get("isFailed"):
            data["status"] = "FAILED"
        elif data.get("isCompleted"):
            data["status"] = "COMPLETED"
        return data

    @field_validator("quarter", "original_quarter", mode="before")
    @classmethod
    def _normalize_quarter(cls, v: Any) -> Any:
        return _quarter_or_raw(v)

    def to_domain(self) -> PlacedUnit:
        return PlacedUnit(
            id=self.id,
            catalog_entry_id=self.catalog_entry_id,
            quarter=self.quarter,
            week=self.week,
            grade=self.grade,
            status=self.status,
            original_quarter=self.original_quarter,
            original_week=self.original_week,
            grade_history=tuple(
                GradeHistoryEntry(grade=h.grade, date=h.date, note=h.note) for h in self.grade_history
            ),
        )


class StudentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    full_name: str = ""
    current_level: str | None = None
    is_leveled: bool = False


class ProjectionSnapshotIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    status: Literal["OPEN", "CLOSED"] = "OPEN"
    student: StudentIn
    school_year: str = ""
    closed_quarters: list[str] = Field(default_factory=list)
    units: list[PlacedUnitIn] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Any:
        return str(v or "OPEN").strip().upper()

    @field_validator("closed_quarters", mode="before")
    @classmethod
    def _normalize_closed_quarters(cls, v: Any) -> Any:
        if v is None:
            return []
        out: list[str] = []
        for q in v:
            normalized = normalize_quarter(q)
            if normalized is None:
                raise ValueError(f"unrecognised quarter {q!r}")
            out.append(normalized)
        return out

    def to_domain(self) -> Projection:
        return Projection(
            id=self.id,
            student_id=self.student.id,
            student=Student(
                id=self.student.id,
                full_name=self.student.full_name,
                current_level=self.student.current_level,
                is_leveled=self.student.is_leveled,
            ),
            school_year=self.school_year,
            status=self.status,
            closed_quarters=frozenset(self.closed_quarters),
            units=tuple(u.to_domain() for u in self.units),
        )
