from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable


QUARTERS: tuple[str, ...] = ("Q1", "Q2", "Q3", "Q4")
WEEKS_PER_QUARTER = 9

# Display order used when the store does not send one for a category.
DEFAULT_CATEGORY_ORDER: tuple[str, ...] = (
    "Math",
    "English",
    "Science",
    "Word Building",
    "Social Studies",
    "Electives",
)
UNKNOWN_CATEGORY_ORDER = 999


def normalize_quarter(value: Any) -> str | None:
    """Normalize `1..4`, `"1".."4"` or `"Q1".."Q4"` (any case) to `"Q1".."Q4"`.

    Returns None for anything else.
    """

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return f"Q{value}" if 1 <= value <= len(QUARTERS) else None
    text = str(value).strip().upper()
    if text.startswith("Q"):
        text = text[1:]
    if not text.isdigit():
        return None
    return normalize_quarter(int(text))


def quarter_index(quarter: str) -> int:
    return QUARTERS.index(quarter)


def is_valid_week(week: Any) -> bool:
    return isinstance(week, int) and not isinstance(week, bool) and 1 <= week <= WEEKS_PER_QUARTER


def default_category_order(name: str) -> int:
    try:
        return DEFAULT_CATEGORY_ORDER.index(name)
    except ValueError:
        return UNKNOWN_CATEGORY_ORDER


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    display_order: int | None = None

    @property
    def sort_order(self) -> int:
        if self.display_order is not None:
            return self.display_order
        return default_category_order(self.name)


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    category_id: str
    level_number: int | None = None


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    code: str
    subject_id: str
    order_index: int
    difficulty: int | None = None
    name: str | None = None

    @property
    def numeric_code(self) -> int | None:
        try:
            n = int(self.code)
        except (TypeError, ValueError):
            return None
        return n if n >= 1 else None


def _subject_sort_key(subject: Subject) -> tuple[int, int, str]:
    # Leveled subjects first (by level), then subjects without a level, then by name.
    if subject.level_number is None:
        return (1, 0, subject.name.lower())
    return (0, subject.level_number, subject.name.lower())


@dataclass(frozen=True)
class Catalog:
    """Read-only lookup over the reference data fetched from the store."""

    categories: dict[str, Category] = field(default_factory=dict)
    subjects: dict[str, Subject] = field(default_factory=dict)
    entries: dict[str, CatalogEntry] = field(default_factory=dict)
    exemption_category_name: str = "Electives"

    @classmethod
    def build(
        cls,
        *,
        categories: Iterable[Category],
        subjects: Iterable[Subject],
        entries: Iterable[CatalogEntry],
        exemption_category_name: str = "Electives",
    ) -> "Catalog":
        return cls(
            categories={c.id: c for c in categories},
            subjects={s.id: s for s in subjects},
            entries={e.id: e for e in entries},
            exemption_category_name=exemption_category_name,
        )

    def entry(self, entry_id: str) -> CatalogEntry | None:
        return self.entries.get(entry_id)

    def subject(self, subject_id: str) -> Subject | None:
        return self.subjects.get(subject_id)

    def category(self, category_id: str) -> Category | None:
        return self.categories.get(category_id)

    def subject_of(self, entry_id: str) -> Subject | None:
        entry = self.entries.get(entry_id)
        if entry is None:
            return None
        return self.subjects.get(entry.subject_id)

    def category_of_subject(self, subject_id: str) -> Category | None:
        subject = self.subjects.get(subject_id)
        if subject is None:
            return None
        return self.categories.get(subject.category_id)

    def is_exemption_category(self, category: Category | None) -> bool:
        return category is not None and category.name == self.exemption_category_name

    def subjects_in_category(self, category_id: str) -> list[Subject]:
        rows = [s for s in self.subjects.values() if s.category_id == category_id]
        return sorted(rows, key=_subject_sort_key)

    def entries_for_subject(self, subject_id: str) -> list[CatalogEntry]:
        rows = [e for e in self.entries.values() if e.subject_id == subject_id]
        return sorted(rows, key=lambda e: (e.order_index, e.code))
