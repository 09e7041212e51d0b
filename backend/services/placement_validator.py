from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from core.errors import PlacementRejection, ValidationRejection
from models.catalog import QUARTERS, WEEKS_PER_QUARTER, Catalog, CatalogEntry, is_valid_week, normalize_quarter, quarter_index
from models.projection import PlacedUnit, Projection
from models.violation import PlacementViolation
from services.violation_translation import describe_violation


Position = tuple[int, int]


@dataclass(frozen=True)
class LineageUnit:
    unit: PlacedUnit
    entry: CatalogEntry
    position: Position


def _ordinal(pos: Position) -> int:
    # Absolute week number across the year, used to find the conflict nearest the target.
    q, w = pos
    return q * WEEKS_PER_QUARTER + w


def lineage_units(
    units: Iterable[PlacedUnit],
    catalog: Catalog,
    subject_id: str,
    *,
    exclude_unit_id: str | None = None,
) -> list[LineageUnit]:
    """Placed units of one subject lineage that take part in ordering checks.

    Unfinished references and units outside the grid are left out.
    """

    out: list[LineageUnit] = []
    for u in units:
        if u.id == exclude_unit_id or u.is_unfinished_reference:
            continue
        entry = catalog.entry(u.catalog_entry_id)
        if entry is None or entry.subject_id != subject_id:
            continue
        pos = u.position
        if pos is None:
            continue
        out.append(LineageUnit(unit=u, entry=entry, position=pos))
    return out


def _nearest(candidates: list[tuple[LineageUnit, str]], target: Position) -> tuple[LineageUnit, str] | None:
    if not candidates:
        return None
    t = _ordinal(target)
    return min(candidates, key=lambda c: (abs(_ordinal(c[0].position) - t), c[0].entry.order_index))


def _violation(operation: str, relation: str, placed: CatalogEntry, conflict: LineageUnit) -> PlacementViolation:
    return PlacementViolation(
        operation=operation,
        relation=relation,
        order=placed.order_index,
        conflicting_order=conflict.entry.order_index,
        quarter=QUARTERS[conflict.position[0]],
        week=conflict.position[1],
        code=placed.code,
        conflicting_code=conflict.entry.code,
    )


def find_add_violation(
    units: Iterable[PlacedUnit],
    catalog: Catalog,
    *,
    entry: CatalogEntry,
    target: Position,
) -> PlacementViolation | None:
    new_order = entry.order_index
    candidates: list[tuple[LineageUnit, str]] = []
    for lu in lineage_units(units, catalog, entry.subject_id):
        order = lu.entry.order_index
        if lu.position == target and order != new_order:
            candidates.append((lu, "position"))
        elif order > new_order and lu.position < target:
            candidates.append((lu, "after"))
        elif order < new_order and lu.position > target:
            candidates.append((lu, "before"))

    found = _nearest(candidates, target)
    if found is None:
        return None
    lu, relation = found
    return _violation("add", relation, entry, lu)


def find_move_violation(
    units: Iterable[PlacedUnit],
    catalog: Catalog,
    *,
    unit: PlacedUnit,
    entry: CatalogEntry,
    target: Position,
) -> PlacementViolation | None:
    moved_order = entry.order_index
    candidates: list[tuple[LineageUnit, str]] = []
    for lu in lineage_units(units, catalog, entry.subject_id, exclude_unit_id=unit.id):
        order = lu.entry.order_index
        if lu.position < target:
            if order > moved_order:
                candidates.append((lu, "after"))
        elif order < moved_order:
            candidates.append((lu, "position" if lu.position == target else "before"))

    found = _nearest(candidates, target)
    if found is None:
        return None
    lu, relation = found
    return _violation("move", relation, entry, lu)


def ensure_open(projection: Projection, *quarters: str | None) -> None:
    if projection.is_closed:
        raise ValidationRejection("PROJECTION_CLOSED", "This projection is closed and can no longer be changed.")
    for q in quarters:
        if q is not None and q in projection.closed_quarters:
            raise ValidationRejection("QUARTER_CLOSED", f"{q} is closed.", {"quarter": q})


def require_unit(projection: Projection, unit_id: str) -> PlacedUnit:
    unit = projection.unit(unit_id)
    if unit is None:
        raise ValidationRejection("PACE_NOT_FOUND", "PACE not found.", {"unitId": unit_id})
    return unit


def require_entry(catalog: Catalog, catalog_entry_id: str) -> CatalogEntry:
    entry = catalog.entry(catalog_entry_id)
    if entry is None:
        raise ValidationRejection(
            "CATALOG_ENTRY_NOT_FOUND",
            "Catalog entry not found.",
            {"catalogEntryId": catalog_entry_id},
        )
    return entry


def resolve_target(quarter: Any, week: Any) -> tuple[str, int]:
    q = normalize_quarter(quarter)
    if q is None:
        raise ValidationRejection("INVALID_QUARTER", "Quarter must be one of Q1..Q4.", {"quarter": quarter})
    if not is_valid_week(week):
        raise ValidationRejection("INVALID_WEEK", "Week must be between 1 and 9.", {"week": week})
    return q, week


def validate_add(
    projection: Projection,
    catalog: Catalog,
    *,
    catalog_entry_id: str,
    quarter: Any,
    week: Any,
) -> tuple[CatalogEntry, str, int]:
    """Check an add; returns the catalog entry and the normalized target."""

    q, w = resolve_target(quarter, week)
    ensure_open(projection, q)
    entry = require_entry(catalog, catalog_entry_id)

    violation = find_add_violation(projection.units, catalog, entry=entry, target=(quarter_index(q), w))
    if violation is not None:
        raise PlacementRejection(violation, describe_violation(violation))
    return entry, q, w


def validate_move(
    projection: Projection,
    catalog: Catalog,
    *,
    unit_id: str,
    quarter: Any,
    week: Any,
) -> tuple[PlacedUnit, str, int]:
    q, w = resolve_target(quarter, week)
    unit = require_unit(projection, unit_id)
    ensure_open(projection, unit.quarter, q)
    entry = require_entry(catalog, unit.catalog_entry_id)

    violation = find_move_violation(projection.units, catalog, unit=unit, entry=entry, target=(quarter_index(q), w))
    if violation is not None:
        raise PlacementRejection(violation, describe_violation(violation))
    return unit, q, w


def validate_delete(projection: Projection, *, unit_id: str) -> PlacedUnit:
    unit = require_unit(projection, unit_id)
    ensure_open(projection, unit.quarter)
    if unit.is_graded:
        raise ValidationRejection(
            "PACE_GRADED",
            "A graded PACE cannot be deleted. Mark it ungraded first.",
            {"unitId": unit_id, "grade": unit.grade},
        )
    return unit


def validate_mark_ungraded(projection: Projection, *, unit_id: str) -> PlacedUnit:
    unit = require_unit(projection, unit_id)
    ensure_open(projection, unit.quarter)
    return unit
