from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from core.config import settings
from core.errors import ValidationRejection
from models.catalog import Catalog, Category, Subject
from services.overload_guard import draft_units_per_quarter


logger = logging.getLogger(__name__)


SELECTION_MODES: tuple[str, ...] = ("single", "contiguous")


@dataclass(frozen=True)
class SubjectDraftConfig:
    category_id: str = ""
    subject_id: str | None = None
    start_code: int = 0
    end_code: int = 0
    skip_codes: frozenset[int] = field(default_factory=frozenset)
    not_pair_with: frozenset[str] = field(default_factory=frozenset)
    extend_to_next_level: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.subject_id) and self.start_code > 0 and self.end_code > 0


def check_contiguity(catalog: Catalog, selected_subject_ids: list[str], candidate: Subject) -> None:
    """Reject `candidate` unless it keeps the selected subjects of its category an unbroken run.

    A candidate is accepted directly before the first selected subject, directly after
    the last one, or inside the span they already cover.
    """

    ordered = catalog.subjects_in_category(candidate.category_id)
    index_of = {s.id: i for i, s in enumerate(ordered)}
    selected = [sid for sid in selected_subject_ids if sid in index_of]
    if not selected:
        return

    pos = index_of.get(candidate.id)
    lo = min(index_of[sid] for sid in selected)
    hi = max(index_of[sid] for sid in selected)
    if pos is not None and lo - 1 <= pos <= hi + 1:
        return

    names = [ordered[i].name for i in sorted(index_of[sid] for sid in selected)]
    raise ValidationRejection(
        "SUBJECTS_NOT_CONTIGUOUS",
        f"Only contiguous subjects can be selected. Already selected: {', '.join(names)}",
        {"subjectId": candidate.id, "selected": names},
    )


def _codes(subjects: list[Subject], catalog: Catalog) -> list[int]:
    out: set[int] = set()
    for s in subjects:
        for e in catalog.entries_for_subject(s.id):
            n = e.numeric_code
            if n is not None:
                out.add(n)
    return sorted(out)


class AvailableCodesCache:
    """Available codes per `(subject_id, extend)`.

    Entries are dropped whenever the number of draft slots or the set of fetched
    subjects differs from the one the cache was filled under.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, bool], list[int]] = {}
        self._signature: tuple[int, frozenset[str]] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def sync(self, slot_count: int, fetched_subject_ids: frozenset[str]) -> None:
        signature = (slot_count, fetched_subject_ids)
        if signature != self._signature:
            if self._entries:
                logger.debug("Available codes cache invalidated (%d entries)", len(self._entries))
            self._entries.clear()
            self._signature = signature

    def get(self, key: tuple[str, bool], compute: Callable[[], list[int]]) -> list[int]:
        if key not in self._entries:
            self._entries[key] = compute()
        return list(self._entries[key])


class ProjectionDraft:
    """Subject slots for generating a new projection.

    Every operation either applies completely or raises `ValidationRejection` and
    leaves the draft untouched.
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        student_id: str = "",
        school_id: str = "",
        school_year: str = "",
        selection_mode: str | None = None,
        max_slots: int | None = None,
        max_extend_levels: int | None = None,
    ):
        mode = selection_mode or settings.draft_selection_mode
        if mode not in SELECTION_MODES:
            raise ValidationRejection("INVALID_SELECTION_MODE", f"Unknown selection mode {mode!r}.", {"mode": mode})
        self.catalog = catalog
        self.student_id = student_id
        self.school_id = school_id
        self.school_year = school_year
        self.selection_mode = mode
        self.max_slots = settings.max_draft_subjects if max_slots is None else max_slots
        self.max_extend_levels = settings.max_extend_levels if max_extend_levels is None else max_extend_levels
        self.slots: list[SubjectDraftConfig] = [SubjectDraftConfig()]
        self.fetched_subject_ids: set[str] = set()
        self.codes_cache = AvailableCodesCache()

    # Slots

    def _slot(self, index: int) -> SubjectDraftConfig:
        if not 0 <= index < len(self.slots):
            raise ValidationRejection("SLOT_NOT_FOUND", f"No subject slot {index}.", {"index": index})
        return self.slots[index]

    def add_slot(self) -> int:
        if len(self.slots) >= self.max_slots:
            raise ValidationRejection(
                "TOO_MANY_SUBJECTS",
                f"A projection can be drafted with at most {self.max_slots} subjects.",
                {"max": self.max_slots},
            )
        self.slots.append(SubjectDraftConfig())
        return len(self.slots) - 1

    def remove_slot(self, index: int) -> None:
        removed = self._slot(index)
        if index == 0:
            raise ValidationRejection("SLOT_REQUIRED", "The first subject slot cannot be removed.", {"index": index})
        remaining = [s for i, s in enumerate(self.slots) if i != index]
        if removed.subject_id:
            remaining = [
                replace(s, not_pair_with=s.not_pair_with - {removed.subject_id}) for s in remaining
            ]
        self.slots = remaining

    # Subject selection

    def _other_subject_ids(self, index: int) -> list[str]:
        return [s.subject_id for i, s in enumerate(self.slots) if i != index and s.subject_id]

    def check_subject(self, index: int, subject_id: str) -> tuple[Subject, Category]:
        self._slot(index)
        subject = self.catalog.subject(subject_id)
        if subject is None:
            raise ValidationRejection("SUBJECT_NOT_FOUND", "Subject not found.", {"subjectId": subject_id})
        category = self.catalog.category(subject.category_id)
        if category is None:
            raise ValidationRejection("CATEGORY_NOT_FOUND", "Category not found.", {"categoryId": subject.category_id})

        others = self._other_subject_ids(index)
        if subject_id in others:
            raise ValidationRejection(
                "SUBJECT_ALREADY_SELECTED",
                f"{subject.name} is already selected in another slot.",
                {"subjectId": subject_id},
            )
        if self.catalog.is_exemption_category(category):
            return subject, category

        same_category: list[str] = []
        for sid in others:
            other = self.catalog.subject(sid)
            if other is not None and other.category_id == category.id:
                same_category.append(sid)
        if self.selection_mode == "single":
            if same_category:
                raise ValidationRejection(
                    "CATEGORY_ALREADY_SELECTED",
                    f"{category.name} already has a subject selected.",
                    {"categoryId": category.id, "selected": [self.catalog.subjects[s].name for s in same_category]},
                )
        else:
            check_contiguity(self.catalog, same_category, subject)
        return subject, category

    def select_subject(self, index: int, subject_id: str) -> SubjectDraftConfig:
        subject, category = self.check_subject(index, subject_id)
        slot = SubjectDraftConfig(category_id=category.id, subject_id=subject.id)
        old = self.slots[index]
        self.slots[index] = replace(slot, not_pair_with=old.not_pair_with)
        self.fetched_subject_ids.update(s.id for s in self._fetched_levels(subject))
        return self.slots[index]

    # Levels and codes

    def _fetched_levels(self, subject: Subject) -> list[Subject]:
        # The subject itself plus up to `max_extend_levels` levels above it in the same category.
        n = subject.level_number
        if n is None:
            return [subject]
        return [
            s
            for s in self.catalog.subjects_in_category(subject.category_id)
            if s.level_number is not None and n <= s.level_number <= n + self.max_extend_levels
        ]

    def next_levels_count(self, index: int) -> int:
        slot = self._slot(index)
        subject = self.catalog.subject(slot.subject_id) if slot.subject_id else None
        if subject is None or subject.level_number is None:
            return 0
        if self.catalog.is_exemption_category(self.catalog.category(subject.category_id)):
            return 0
        fetched = self._fetched_levels(subject)
        max_level = max(s.level_number for s in fetched if s.level_number is not None)
        return max(0, min(max_level - subject.level_number, self.max_extend_levels))

    def available_codes(self, index: int) -> list[int]:
        slot = self._slot(index)
        if not slot.subject_id:
            return []
        subject = self.catalog.subject(slot.subject_id)
        if subject is None:
            return []

        self.codes_cache.sync(len(self.slots), frozenset(self.fetched_subject_ids))

        def compute() -> list[int]:
            if subject.level_number is None:
                return _codes([subject], self.catalog)
            levels = {subject.level_number}
            if slot.extend_to_next_level:
                levels.update(subject.level_number + i for i in range(1, self.next_levels_count(index) + 1))
            return _codes([s for s in self._fetched_levels(subject) if s.level_number in levels], self.catalog)

        return self.codes_cache.get((subject.id, slot.extend_to_next_level), compute)

    def set_extend(self, index: int, extend: bool) -> SubjectDraftConfig:
        slot = self._slot(index)
        if extend and self.next_levels_count(index) == 0:
            raise ValidationRejection(
                "EXTEND_NOT_AVAILABLE",
                "This subject has no next levels to extend into.",
                {"index": index},
            )
        self.slots[index] = replace(slot, extend_to_next_level=extend)
        return self.slots[index]

    def set_start_code(self, index: int, code: int) -> SubjectDraftConfig:
        slot = self._slot(index)
        end = slot.end_code if slot.end_code >= code else code
        self.slots[index] = replace(slot, start_code=code, end_code=end)
        return self.slots[index]

    def set_end_code(self, index: int, code: int) -> SubjectDraftConfig:
        slot = self._slot(index)
        self.slots[index] = replace(slot, end_code=code)
        return self.slots[index]

    def toggle_skip_code(self, index: int, code: int, checked: bool) -> SubjectDraftConfig:
        slot = self._slot(index)
        skip = slot.skip_codes | {code} if checked else slot.skip_codes - {code}
        self.slots[index] = replace(slot, skip_codes=frozenset(skip))
        return self.slots[index]

    def toggle_not_pair_with(self, index: int, other_index: int, checked: bool) -> None:
        slot = self._slot(index)
        other = self._slot(other_index)
        if index == other_index or not slot.subject_id or not other.subject_id:
            raise ValidationRejection(
                "INVALID_PAIRING",
                "Pick a subject in both slots before excluding them from pairing.",
                {"index": index, "otherIndex": other_index},
            )
        if checked:
            self.slots[index] = replace(slot, not_pair_with=slot.not_pair_with | {other.subject_id})
            self.slots[other_index] = replace(other, not_pair_with=other.not_pair_with | {slot.subject_id})
        else:
            self.slots[index] = replace(slot, not_pair_with=slot.not_pair_with - {other.subject_id})
            self.slots[other_index] = replace(other, not_pair_with=other.not_pair_with - {slot.subject_id})

    def update_slot(
        self,
        index: int,
        *,
        subject_id: str | None = None,
        extend_to_next_level: bool | None = None,
        start_code: int | None = None,
        end_code: int | None = None,
        skip_codes: Iterable[int] | None = None,
        not_pair_with_slots: Iterable[int] | None = None,
    ) -> SubjectDraftConfig:
        """Apply several slot changes at once; on any rejection the draft is left as it was."""

        saved_slots = list(self.slots)
        saved_fetched = set(self.fetched_subject_ids)
        try:
            if subject_id is not None and subject_id != self._slot(index).subject_id:
                self.select_subject(index, subject_id)
            if extend_to_next_level is not None:
                self.set_extend(index, extend_to_next_level)
            if start_code is not None:
                self.set_start_code(index, start_code)
            if end_code is not None:
                self.set_end_code(index, end_code)
            if skip_codes is not None:
                wanted = set(skip_codes)
                for code in sorted(wanted ^ self._slot(index).skip_codes):
                    self.toggle_skip_code(index, code, code in wanted)
            if not_pair_with_slots is not None:
                wanted_slots = set(not_pair_with_slots)
                for other in sorted(wanted_slots):
                    self._slot(other)
                for other in range(len(self.slots)):
                    if other == index:
                        continue
                    other_subject = self.slots[other].subject_id
                    paired = bool(other_subject) and other_subject in self._slot(index).not_pair_with
                    if (other in wanted_slots) != paired:
                        self.toggle_not_pair_with(index, other, other in wanted_slots)
        except ValidationRejection:
            self.slots = saved_slots
            self.fetched_subject_ids = saved_fetched
            raise
        return self.slots[index]

    # Submission

    def expected_units_per_quarter(self) -> int:
        return draft_units_per_quarter(
            (s.start_code, s.end_code, s.skip_codes) for s in self.slots if s.is_configured
        )

    def validate(self) -> None:
        problems: list[dict[str, Any]] = []
        if not self.student_id.strip():
            problems.append({"field": "studentId", "message": "Student is required."})
        if not self.school_id.strip():
            problems.append({"field": "schoolId", "message": "School is required."})
        if not self.school_year.strip():
            problems.append({"field": "schoolYear", "message": "School year is required."})
        if not any(s.is_configured for s in self.slots):
            problems.append({"field": "subjects", "message": "Configure at least one subject."})

        for i, s in enumerate(self.slots):
            if not s.subject_id:
                problems.append({"slot": i, "message": "Pick a subject."})
            elif s.start_code < 1 or s.end_code < 1:
                problems.append({"slot": i, "message": "Start and end codes must be positive whole numbers."})
            elif s.start_code >= s.end_code:
                problems.append({"slot": i, "message": "The start code must come before the end code."})

        if problems:
            raise ValidationRejection("DRAFT_INCOMPLETE", "The draft is not ready to generate.", {"problems": problems})

    def to_generate_payload(self) -> dict[str, Any]:
        self.validate()
        return {
            "studentId": self.student_id.strip(),
            "schoolId": self.school_id.strip(),
            "schoolYear": self.school_year.strip(),
            "subjects": [
                {
                    "categoryId": s.category_id.strip(),
                    "subjectId": (s.subject_id or "").strip() or None,
                    "startPace": s.start_code,
                    "endPace": s.end_code,
                    "skipPaces": sorted(s.skip_codes),
                    "notPairWith": sorted(s.not_pair_with),
                    "difficulty": None,
                }
                for s in self.slots
            ],
        }


class DraftRegistry:
    """Drafts live only until they are submitted or discarded."""

    def __init__(self) -> None:
        self._drafts: dict[str, ProjectionDraft] = {}
        self._lock = threading.Lock()

    def create(self, draft: ProjectionDraft) -> str:
        draft_id = uuid.uuid4().hex
        with self._lock:
            self._drafts[draft_id] = draft
        return draft_id

    def get(self, draft_id: str) -> ProjectionDraft:
        draft = self._drafts.get(draft_id)
        if draft is None:
            raise ValidationRejection("DRAFT_NOT_FOUND", "Draft not found.", {"draftId": draft_id})
        return draft

    def discard(self, draft_id: str) -> None:
        with self._lock:
            self._drafts.pop(draft_id, None)

    def clear(self) -> None:
        with self._lock:
            self._drafts.clear()
