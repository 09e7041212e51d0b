from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.config import settings
from services.selection_validator import ProjectionDraft


class DraftCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    student_id: str = ""
    school_id: str = ""
    school_year: str = ""
    selection_mode: Literal["single", "contiguous"] | None = None


class DraftSlotUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    subject_id: str | None = Field(default=None, min_length=1)
    extend_to_next_level: bool | None = None
    start_code: int | None = None
    end_code: int | None = None
    skip_codes: list[int] | None = None
    # Indexes of the other slots this subject must not be paired with.
    not_pair_with_slots: list[int] | None = None


class DraftSlotOut(BaseModel):
    index: int
    category_id: str
    subject_id: str | None = None
    subject_name: str | None = None
    start_code: int
    end_code: int
    skip_codes: list[int]
    not_pair_with: list[str]
    extend_to_next_level: bool
    next_levels_count: int


class DraftOut(BaseModel):
    id: str
    student_id: str
    school_id: str
    school_year: str
    selection_mode: str
    max_slots: int
    slots: list[DraftSlotOut]
    expected_units_per_quarter: int
    overload_warning: bool

    @classmethod
    def build(cls, draft_id: str, draft: ProjectionDraft) -> "DraftOut":
        slots: list[DraftSlotOut] = []
        for i, s in enumerate(draft.slots):
            subject = draft.catalog.subject(s.subject_id) if s.subject_id else None
            slots.append(
                DraftSlotOut(
                    index=i,
                    category_id=s.category_id,
                    subject_id=s.subject_id,
                    subject_name=subject.name if subject else None,
                    start_code=s.start_code,
                    end_code=s.end_code,
                    skip_codes=sorted(s.skip_codes),
                    not_pair_with=sorted(s.not_pair_with),
                    extend_to_next_level=s.extend_to_next_level,
                    next_levels_count=draft.next_levels_count(i),
                )
            )
        expected = draft.expected_units_per_quarter()
        return cls(
            id=draft_id,
            student_id=draft.student_id,
            school_id=draft.school_id,
            school_year=draft.school_year,
            selection_mode=draft.selection_mode,
            max_slots=draft.max_slots,
            slots=slots,
            expected_units_per_quarter=expected,
            overload_warning=expected > settings.quarter_unit_cap,
        )


class DraftCodesOut(BaseModel):
    index: int
    subject_id: str | None = None
    extend_to_next_level: bool
    codes: list[int]


class GenerateProjectionOut(BaseModel):
    projection_id: str | None = None
    result: dict
