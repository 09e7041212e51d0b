from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PaceAddRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    catalog_entry_id: str = Field(min_length=1)
    quarter: int | str
    week: int
    confirm_overload: bool = False
    remember_overload: bool = False


class PaceMoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    quarter: int | str
    week: int


class PaceGradeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    # Checked by the grade entry flow so that a bad value reports INVALID_GRADE.
    grade: int | float | str
    note: str | None = None
    skip_comment: bool = False
