from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from models.catalog import QUARTERS, WEEKS_PER_QUARTER, Catalog, Category, Subject, is_valid_week
from models.projection import PlacedUnit


logger = logging.getLogger(__name__)


GridCell = tuple[PlacedUnit, ...]
GridRow = tuple[GridCell, ...]


@dataclass(frozen=True)
class ProjectionGrid:
    # quarter -> row key -> 9 cells (index = week - 1)
    quarters: dict[str, dict[str, GridRow]]
    # Row keys in display order; every row is present in every quarter.
    rows: tuple[str, ...]
    subject_to_category: dict[str, str] = field(default_factory=dict)
    subject_to_category_display_order: dict[str, int] = field(default_factory=dict)
    # quarter -> category name -> number of distinct rows holding units in that quarter
    category_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    # row key -> subject ids feeding it
    row_subjects: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def cell(self, quarter: str, row_key: str, week: int) -> GridCell:
        row = self.quarters.get(quarter, {}).get(row_key)
        if row is None or not is_valid_week(week):
            return ()
        return row[week - 1]


def row_key_for(subject: Subject, category: Category, catalog: Catalog) -> str:
    """Ordinary categories share one row per category; exemption subjects get a row each."""

    if catalog.is_exemption_category(category):
        return subject.name
    return category.name


def _resolve(unit: PlacedUnit, catalog: Catalog) -> tuple[Subject, Category] | None:
    subject = catalog.subject_of(unit.catalog_entry_id)
    if subject is None:
        return None
    category = catalog.category(subject.category_id)
    if category is None:
        return None
    return subject, category


def transform(units: Iterable[PlacedUnit], catalog: Catalog) -> ProjectionGrid:
    buckets: dict[tuple[str, str], list[list[PlacedUnit]]] = {}
    subject_to_category: dict[str, str] = {}
    subject_to_order: dict[str, int] = {}
    row_sort: dict[str, tuple[int, int, str]] = {}
    row_subjects: dict[str, list[str]] = defaultdict(list)
    rows_by_quarter_category: dict[str, dict[str, set[str]]] = {q: defaultdict(set) for q in QUARTERS}

    for unit in units:
        resolved = _resolve(unit, catalog)
        if resolved is None:
            logger.debug("Skipping unit %s: unknown catalog entry %s", unit.id, unit.catalog_entry_id)
            continue
        if unit.quarter not in QUARTERS or not is_valid_week(unit.week):
            logger.debug("Skipping unit %s: outside grid (%r, week %r)", unit.id, unit.quarter, unit.week)
            continue

        subject, category = resolved
        key = row_key_for(subject, category, catalog)
        subject_to_category[subject.name] = category.name
        subject_to_order[subject.name] = category.sort_order
        if catalog.is_exemption_category(category):
            row_sort[key] = (1, 0, key.lower())
        else:
            row_sort[key] = (0, category.sort_order, key.lower())
        if subject.id not in row_subjects[key]:
            row_subjects[key].append(subject.id)
        rows_by_quarter_category[unit.quarter][category.name].add(key)

        cells = buckets.setdefault((unit.quarter, key), [[] for _ in range(WEEKS_PER_QUARTER)])
        cells[unit.week - 1].append(unit)

    rows = tuple(sorted(row_sort, key=lambda k: row_sort[k]))
    empty_row: GridRow = tuple(() for _ in range(WEEKS_PER_QUARTER))

    quarters: dict[str, dict[str, GridRow]] = {}
    for q in QUARTERS:
        quarter_rows: dict[str, GridRow] = {}
        for key in rows:
            cells = buckets.get((q, key))
            quarter_rows[key] = tuple(tuple(c) for c in cells) if cells is not None else empty_row
        quarters[q] = quarter_rows

    category_counts = {
        q: {name: len(keys) for name, keys in by_category.items()}
        for q, by_category in rows_by_quarter_category.items()
    }

    return ProjectionGrid(
        quarters=quarters,
        rows=rows,
        subject_to_category=subject_to_category,
        subject_to_category_display_order=subject_to_order,
        category_counts=category_counts,
        row_subjects={k: tuple(v) for k, v in row_subjects.items()},
    )


def flatten(grid: ProjectionGrid) -> list[PlacedUnit]:
    out: list[PlacedUnit] = []
    for quarter_rows in grid.quarters.values():
        for row in quarter_rows.values():
            for cell in row:
                out.extend(cell)
    return out


def count_scheduled_units(units: Iterable[PlacedUnit], *, quarter: str | None = None) -> int:
    """Count placed units, leaving out unfinished references (they are counted where they moved to)."""

    n = 0
    for u in units:
        if u.is_unfinished_reference:
            continue
        if u.quarter not in QUARTERS or not is_valid_week(u.week):
            continue
        if quarter is not None and u.quarter != quarter:
            continue
        n += 1
    return n
