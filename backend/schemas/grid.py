from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from models.catalog import Catalog
from models.projection import PlacedUnit, Projection
from services.grading import FailureSummary
from services.grid_transformer import ProjectionGrid, count_scheduled_units


class GradeHistoryOut(BaseModel):
    grade: int
    date: datetime
    note: str | None = None


class PlacedUnitOut(BaseModel):
    id: str
    catalog_entry_id: str
    code: str | None = None
    subject_name: str | None = None
    order_index: int | None = None
    quarter: str
    week: int
    grade: int | None = None
    status: str
    original_quarter: str | None = None
    original_week: int | None = None
    is_unfinished_reference: bool = False
    grade_history: list[GradeHistoryOut] = []

    @classmethod
    def from_unit(cls, unit: PlacedUnit, catalog: Catalog) -> "PlacedUnitOut":
        entry = catalog.entry(unit.catalog_entry_id)
        subject = catalog.subject_of(unit.catalog_entry_id)
        return cls(
            id=unit.id,
            catalog_entry_id=unit.catalog_entry_id,
            code=entry.code if entry else None,
            subject_name=subject.name if subject else None,
            order_index=entry.order_index if entry else None,
            quarter=unit.quarter,
            week=unit.week,
            grade=unit.grade,
            status=unit.status,
            original_quarter=unit.original_quarter,
            original_week=unit.original_week,
            is_unfinished_reference=unit.is_unfinished_reference,
            grade_history=[GradeHistoryOut(grade=h.grade, date=h.date, note=h.note) for h in unit.grade_history],
        )


class GridRowOut(BaseModel):
    row_key: str
    # One list per week (index = week - 1); empty when nothing is placed.
    weeks: list[list[PlacedUnitOut]]


class QuarterOut(BaseModel):
    quarter: str
    closed: bool = False
    scheduled_count: int = 0
    rows: list[GridRowOut]


class ProjectionGridOut(BaseModel):
    projection_id: str
    student_id: str
    student_name: str = ""
    school_year: str = ""
    status: str
    rows: list[str]
    quarters: list[QuarterOut]
    subject_to_category: dict[str, str]
    subject_to_category_display_order: dict[str, int]
    category_counts: dict[str, dict[str, int]]
    in_flight: list[str] = []

    @classmethod
    def build(
        cls,
        projection: Projection,
        grid: ProjectionGrid,
        catalog: Catalog,
        *,
        in_flight: set[str] | None = None,
    ) -> "ProjectionGridOut":
        quarters: list[QuarterOut] = []
        for q, rows in grid.quarters.items():
            quarters.append(
                QuarterOut(
                    quarter=q,
                    closed=q in projection.closed_quarters,
                    scheduled_count=count_scheduled_units(projection.units, quarter=q),
                    rows=[
                        GridRowOut(
                            row_key=key,
                            weeks=[[PlacedUnitOut.from_unit(u, catalog) for u in cell] for cell in rows[key]],
                        )
                        for key in grid.rows
                    ],
                )
            )
        return cls(
            projection_id=projection.id,
            student_id=projection.student_id,
            student_name=projection.student.full_name,
            school_year=projection.school_year,
            status=projection.status,
            rows=list(grid.rows),
            quarters=quarters,
            subject_to_category=grid.subject_to_category,
            subject_to_category_display_order=grid.subject_to_category_display_order,
            category_counts=grid.category_counts,
            in_flight=sorted(in_flight or ()),
        )


class FailureSummaryOut(BaseModel):
    total: int
    by_unit: dict[str, int]
    by_subject: dict[str, int]
    by_quarter: dict[str, int]

    @classmethod
    def from_summary(cls, summary: FailureSummary) -> "FailureSummaryOut":
        return cls(
            total=summary.total,
            by_unit=summary.by_unit,
            by_subject=summary.by_subject,
            by_quarter=summary.by_quarter,
        )
