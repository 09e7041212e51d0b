from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from core.config import settings
from core.errors import OverloadConfirmationRequired, ValidationRejection
from models.catalog import QUARTERS, Catalog, CatalogEntry
from models.projection import PlacedUnit, Projection
from services.grid_transformer import count_scheduled_units


logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def find_duplicate(units: Iterable[PlacedUnit], catalog: Catalog, entry: CatalogEntry) -> PlacedUnit | None:
    """Return a unit of the same lineage already holding `entry`'s code, if any.

    Unfinished references do not count: the unit they point at is checked instead.
    """

    for u in units:
        if u.is_unfinished_reference:
            continue
        existing = catalog.entry(u.catalog_entry_id)
        if existing is None:
            continue
        if existing.subject_id == entry.subject_id and existing.code == entry.code:
            return u
    return None


def ensure_not_duplicate(projection: Projection, catalog: Catalog, entry: CatalogEntry) -> None:
    dup = find_duplicate(projection.units, catalog, entry)
    if dup is not None:
        raise ValidationRejection(
            "DUPLICATE_PACE",
            f"PACE {entry.code} is already in this projection ({dup.quarter}, week {dup.week}).",
            {"code": entry.code, "unitId": dup.id, "quarter": dup.quarter, "week": dup.week},
        )


class OverloadGuard:
    """Soft per-quarter cap for leveled-down students.

    Going over the cap needs an explicit confirmation. Confirming with `remember`
    silences the prompt until `remember_until`.
    """

    def __init__(
        self,
        *,
        cap: int | None = None,
        remember_minutes: int | None = None,
        clock: Clock | None = None,
    ):
        self.cap = settings.quarter_unit_cap if cap is None else cap
        self.remember_minutes = settings.overload_remember_minutes if remember_minutes is None else remember_minutes
        self._clock = clock or _utcnow
        self.remember_until: datetime | None = None

    def expected_units(self, projection: Projection, quarter: str) -> int:
        return count_scheduled_units(projection.units, quarter=quarter) + 1

    def is_remembered(self) -> bool:
        return self.remember_until is not None and self._clock() < self.remember_until

    def needs_confirmation(self, projection: Projection, quarter: str) -> bool:
        if not projection.student.is_leveled:
            return False
        if self.expected_units(projection, quarter) <= self.cap:
            return False
        return not self.is_remembered()

    def confirm(self, *, remember: bool = False) -> None:
        if remember:
            self.remember_until = self._clock() + timedelta(minutes=self.remember_minutes)
            logger.info("Overload confirmation remembered until %s", self.remember_until.isoformat())

    def check_add(self, projection: Projection, quarter: str, *, confirmed: bool = False) -> bool:
        """Raise `OverloadConfirmationRequired` unless the add may go ahead.

        Returns True when the add goes over the cap on the caller's confirmation; the
        caller records it with `confirm` once the add has been committed.
        """

        if not self.needs_confirmation(projection, quarter):
            return False
        if not confirmed:
            raise OverloadConfirmationRequired(
                quarter=quarter,
                expected=self.expected_units(projection, quarter),
                cap=self.cap,
            )
        return True


def draft_units_per_quarter(code_ranges: Iterable[tuple[int, int, Iterable[int]]]) -> int:
    """Expected units per quarter for a draft: `(start, end, skipped)` per slot, spread over the year."""

    total = 0
    for start, end, skipped in code_ranges:
        if end < start:
            continue
        skip = {c for c in skipped if start <= c <= end}
        total += (end - start + 1) - len(skip)
    return math.ceil(total / len(QUARTERS))
