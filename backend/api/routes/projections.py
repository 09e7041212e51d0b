from __future__ import annotations

from fastapi import APIRouter, Depends

from api.deps import get_sessions
from schemas.grid import FailureSummaryOut, ProjectionGridOut
from schemas.pace import PaceAddRequest, PaceGradeRequest, PaceMoveRequest
from services.grading import GradeEntry
from services.reconciliation import ProjectionSession, SessionRegistry


router = APIRouter()


def _grid_out(session: ProjectionSession) -> ProjectionGridOut:
    view, catalog = session.current()
    return ProjectionGridOut.build(view, session.grid(), catalog, in_flight=session.in_flight)


@router.get("/{student_id}/{projection_id}", response_model=ProjectionGridOut)
def get_projection(
    student_id: str,
    projection_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    session = sessions.get(student_id, projection_id, reload=True)
    return _grid_out(session)


@router.post("/{student_id}/{projection_id}/paces", response_model=ProjectionGridOut)
def add_pace(
    student_id: str,
    projection_id: str,
    payload: PaceAddRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    session = sessions.get(student_id, projection_id)
    session.add(
        catalog_entry_id=payload.catalog_entry_id,
        quarter=payload.quarter,
        week=payload.week,
        confirm_overload=payload.confirm_overload,
        remember_overload=payload.remember_overload,
    )
    return _grid_out(session)


@router.patch("/{student_id}/{projection_id}/paces/{unit_id}/move", response_model=ProjectionGridOut)
def move_pace(
    student_id: str,
    projection_id: str,
    unit_id: str,
    payload: PaceMoveRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    session = sessions.get(student_id, projection_id)
    session.move(unit_id, quarter=payload.quarter, week=payload.week)
    return _grid_out(session)


@router.delete("/{student_id}/{projection_id}/paces/{unit_id}", response_model=ProjectionGridOut)
def delete_pace(
    student_id: str,
    projection_id: str,
    unit_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    session = sessions.get(student_id, projection_id)
    session.delete(unit_id)
    return _grid_out(session)


@router.put("/{student_id}/{projection_id}/paces/{unit_id}/grade", response_model=ProjectionGridOut)
def grade_pace(
    student_id: str,
    projection_id: str,
    unit_id: str,
    payload: PaceGradeRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    entry = GradeEntry(unit_id)
    entry.capture_grade(payload.grade)
    commit = entry.skip_comment() if payload.skip_comment else entry.commit(payload.note)

    session = sessions.get(student_id, projection_id)
    session.grade(unit_id, commit)
    return _grid_out(session)


@router.patch("/{student_id}/{projection_id}/paces/{unit_id}/ungrade", response_model=ProjectionGridOut)
def ungrade_pace(
    student_id: str,
    projection_id: str,
    unit_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> ProjectionGridOut:
    session = sessions.get(student_id, projection_id)
    session.mark_ungraded(unit_id)
    return _grid_out(session)


@router.get("/{student_id}/{projection_id}/failures", response_model=FailureSummaryOut)
def get_failures(
    student_id: str,
    projection_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> FailureSummaryOut:
    session = sessions.get(student_id, projection_id)
    return FailureSummaryOut.from_summary(session.failures())
