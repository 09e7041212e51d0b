from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.catalog import Catalog, CatalogEntry, Category, Subject


class CategoryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    display_order: int | None = None


class SubjectIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category_id: str = Field(min_length=1)
    level_number: int | None = None


class CatalogEntryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    code: str
    subject_id: str = Field(min_length=1)
    order_index: int
    difficulty: int | None = Field(default=None, ge=1, le=5)
    name: str | None = None

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, v):
        # Some catalog exports send codes as numbers; 1002 and "1002" are the same pace.
        if isinstance(v, int) and not isinstance(v, bool):
            return f"{v:04d}"
        return str(v).strip()


class CatalogSnapshotIn(BaseModel):
    categories: list[CategoryIn] = Field(default_factory=list)
    subjects: list[SubjectIn] = Field(default_factory=list)
    entries: list[CatalogEntryIn] = Field(default_factory=list)

    def to_domain(self, *, exemption_category_name: str) -> Catalog:
        return Catalog.build(
            categories=[Category(id=c.id, name=c.name, display_order=c.display_order) for c in self.categories],
            subjects=[
                Subject(id=s.id, name=s.name, category_id=s.category_id, level_number=s.level_number)
                for s in self.subjects
            ],
            entries=[
                CatalogEntry(
                    id=e.id,
                    code=e.code,
                    subject_id=e.subject_id,
                    order_index=e.order_index,
                    difficulty=e.difficulty,
                    name=e.name,
                )
                for e in self.entries
            ],
            exemption_category_name=exemption_category_name,
        )
