import sys
import os
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

# Add backend/ to path so tests can import backend modules directly
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from models.catalog import Catalog, CatalogEntry, Category, Subject  # noqa: E402
from models.projection import GradeHistoryEntry, PlacedUnit, Projection, Student  # noqa: E402


# ── Catalog ───────────────────────────────────────────────────────────────────

def _entries(subject_id, first_code, count, first_order=1, width=4):
    return [
        CatalogEntry(
            id=f"{subject_id}-{first_code + i:0{width}d}",
            code=f"{first_code + i:0{width}d}",
            subject_id=subject_id,
            order_index=first_order + i,
        )
        for i in range(count)
    ]


def build_catalog():
    categories = [
        Category(id="cat-math", name="Math", display_order=0),
        Category(id="cat-eng", name="English", display_order=1),
        Category(id="cat-sci", name="Science"),
        Category(id="cat-elec", name="Electives", display_order=5),
    ]
    subjects = [
        Subject(id="math1", name="Math 1", category_id="cat-math", level_number=1),
        Subject(id="math2", name="Math 2", category_id="cat-math", level_number=2),
        Subject(id="math3", name="Math 3", category_id="cat-math", level_number=3),
        Subject(id="eng1", name="English 1", category_id="cat-eng", level_number=1),
        Subject(id="sci1", name="Science 1", category_id="cat-sci", level_number=1),
        Subject(id="art", name="Art", category_id="cat-elec", level_number=None),
        Subject(id="music", name="Music", category_id="cat-elec", level_number=None),
    ]
    entries = (
        _entries("math1", 1001, 12)
        + _entries("math2", 1013, 12, first_order=13)
        + _entries("math3", 1025, 12, first_order=25)
        + _entries("eng1", 1001, 12)
        + _entries("sci1", 1001, 12)
        + _entries("art", 1, 4)
        + _entries("music", 1, 4)
    )
    return Catalog.build(categories=categories, subjects=subjects, entries=entries)


def unit(unit_id, entry_id, quarter, week, **kw):
    return PlacedUnit(id=unit_id, catalog_entry_id=entry_id, quarter=quarter, week=week, **kw)


def projection(units=(), *, is_leveled=False, status="OPEN", closed_quarters=()):
    return Projection(
        id="proj-1",
        student_id="stu-1",
        student=Student(id="stu-1", full_name="Ana Torres", is_leveled=is_leveled),
        school_year="2026-2027",
        status=status,
        closed_quarters=frozenset(closed_quarters),
        units=tuple(units),
    )


@pytest.fixture
def catalog():
    return build_catalog()


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 9, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now = self.now + timedelta(**kw)


@pytest.fixture
def clock():
    return FakeClock()


# ── In-memory store of record ─────────────────────────────────────────────────

class FakeStore:
    """Applies mutations to an in-memory projection, the way the real store would."""

    def __init__(self, catalog, proj):
        self.catalog = catalog
        self.projections = {(proj.student_id, proj.id): proj}
        self.calls = []
        self.fail_next_write = None
        self.fail_fetch = None
        self.fetch_count = 0
        self.generated = []
        self._next_id = 1000

    def _get(self, sid, pid):
        return self.projections[(sid, pid)]

    def _put(self, sid, pid, proj):
        self.projections[(sid, pid)] = proj

    def _maybe_fail(self):
        if self.fail_next_write is not None:
            exc, self.fail_next_write = self.fail_next_write, None
            raise exc

    def fetch_projection(self, student_id, projection_id):
        self.fetch_count += 1
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return self._get(student_id, projection_id)

    def fetch_catalog(self):
        return self.catalog

    def add_unit(self, student_id, projection_id, *, catalog_entry_id, quarter, week):
        self.calls.append(("add", catalog_entry_id, quarter, week))
        self._maybe_fail()
        self._next_id += 1
        proj = self._get(student_id, projection_id)
        new = unit(f"u{self._next_id}", catalog_entry_id, quarter, week)
        self._put(student_id, projection_id, proj.with_units(proj.units + (new,)))
        return {"id": new.id}

    def move_unit(self, student_id, projection_id, unit_id, *, quarter, week):
        self.calls.append(("move", unit_id, quarter, week))
        self._maybe_fail()
        proj = self._get(student_id, projection_id)
        moved = replace(proj.unit(unit_id), quarter=quarter, week=week)
        self._put(student_id, projection_id, proj.replace_unit(moved))

    def delete_unit(self, student_id, projection_id, unit_id):
        self.calls.append(("delete", unit_id))
        self._maybe_fail()
        proj = self._get(student_id, projection_id)
        self._put(student_id, projection_id, proj.without_unit(unit_id))

    def grade_unit(self, student_id, projection_id, unit_id, commit):
        grade, note = commit.grade, commit.note
        self.calls.append(("grade", unit_id, grade, note))
        self._maybe_fail()
        proj = self._get(student_id, projection_id)
        u = proj.unit(unit_id)
        history = u.grade_history + (
            GradeHistoryEntry(grade=grade, date=datetime(2026, 9, 2, tzinfo=timezone.utc), note=note),
        )
        graded = replace(u, grade=grade, status="COMPLETED" if grade >= 80 else "FAILED", grade_history=history)
        self._put(student_id, projection_id, proj.replace_unit(graded))

    def mark_ungraded(self, student_id, projection_id, unit_id):
        self.calls.append(("ungrade", unit_id))
        self._maybe_fail()
        proj = self._get(student_id, projection_id)
        self._put(student_id, projection_id, proj.replace_unit(replace(proj.unit(unit_id), grade=None, status="PENDING")))

    def generate_projection(self, payload):
        self.calls.append(("generate", payload["studentId"]))
        self._maybe_fail()
        self.generated.append(payload)
        return {"id": "proj-new"}


@pytest.fixture
def math_projection():
    # Math 1 lineage: orders 3, 5 and 8 spread over Q1.
    return projection(
        [
            unit("u3", "math1-1003", "Q1", 3),
            unit("u5", "math1-1005", "Q1", 5),
            unit("u8", "math1-1008", "Q1", 8),
        ]
    )


@pytest.fixture
def store(catalog, math_projection):
    return FakeStore(catalog, math_projection)
