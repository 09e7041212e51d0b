from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from api.deps import get_drafts, get_sessions, get_store
from core.store import StoreRejectedError
from schemas.draft import DraftCodesOut, DraftCreate, DraftOut, DraftSlotUpdate, GenerateProjectionOut
from services.reconciliation import SessionRegistry
from services.selection_validator import DraftRegistry, ProjectionDraft
from services.store_client import ProjectionStore
from services.violation_translation import translate_store_rejection


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=DraftOut)
def create_draft(
    payload: DraftCreate,
    drafts: DraftRegistry = Depends(get_drafts),
    sessions: SessionRegistry = Depends(get_sessions),
) -> DraftOut:
    draft = ProjectionDraft(
        sessions.catalog(),
        student_id=payload.student_id,
        school_id=payload.school_id,
        school_year=payload.school_year,
        selection_mode=payload.selection_mode,
    )
    draft_id = drafts.create(draft)
    return DraftOut.build(draft_id, draft)


@router.get("/{draft_id}", response_model=DraftOut)
def get_draft(draft_id: str, drafts: DraftRegistry = Depends(get_drafts)) -> DraftOut:
    return DraftOut.build(draft_id, drafts.get(draft_id))


@router.delete("/{draft_id}", status_code=204)
def cancel_draft(draft_id: str, drafts: DraftRegistry = Depends(get_drafts)) -> Response:
    draft = drafts.get(draft_id)
    drafts.discard(draft_id)
    logger.info("Discarded draft %s for student %s", draft_id, draft.student_id)
    return Response(status_code=204)


@router.post("/{draft_id}/slots", response_model=DraftOut)
def add_slot(draft_id: str, drafts: DraftRegistry = Depends(get_drafts)) -> DraftOut:
    draft = drafts.get(draft_id)
    draft.add_slot()
    return DraftOut.build(draft_id, draft)


@router.put("/{draft_id}/slots/{index}", response_model=DraftOut)
def update_slot(
    draft_id: str,
    index: int,
    payload: DraftSlotUpdate,
    drafts: DraftRegistry = Depends(get_drafts),
) -> DraftOut:
    draft = drafts.get(draft_id)
    draft.update_slot(
        index,
        subject_id=payload.subject_id,
        extend_to_next_level=payload.extend_to_next_level,
        start_code=payload.start_code,
        end_code=payload.end_code,
        skip_codes=payload.skip_codes,
        not_pair_with_slots=payload.not_pair_with_slots,
    )
    return DraftOut.build(draft_id, draft)


@router.delete("/{draft_id}/slots/{index}", response_model=DraftOut)
def remove_slot(draft_id: str, index: int, drafts: DraftRegistry = Depends(get_drafts)) -> DraftOut:
    draft = drafts.get(draft_id)
    draft.remove_slot(index)
    return DraftOut.build(draft_id, draft)


@router.get("/{draft_id}/slots/{index}/codes", response_model=DraftCodesOut)
def slot_codes(draft_id: str, index: int, drafts: DraftRegistry = Depends(get_drafts)) -> DraftCodesOut:
    draft = drafts.get(draft_id)
    codes = draft.available_codes(index)
    slot = draft.slots[index]
    return DraftCodesOut(
        index=index,
        subject_id=slot.subject_id,
        extend_to_next_level=slot.extend_to_next_level,
        codes=codes,
    )


@router.post("/{draft_id}/submit", response_model=GenerateProjectionOut)
def submit_draft(
    draft_id: str,
    drafts: DraftRegistry = Depends(get_drafts),
    store: ProjectionStore = Depends(get_store),
) -> GenerateProjectionOut:
    draft = drafts.get(draft_id)
    payload = draft.to_generate_payload()
    try:
        result = store.generate_projection(payload)
    except StoreRejectedError as exc:
        raise translate_store_rejection(exc) from exc

    drafts.discard(draft_id)
    projection_id = result.get("id")
    logger.info("Generated projection %s for student %s", projection_id, payload["studentId"])
    return GenerateProjectionOut(projection_id=str(projection_id) if projection_id else None, result=result)
