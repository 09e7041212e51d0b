from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from core.errors import OperationInFlightError
from core.store import StoreRejectedError, StoreResponseError, StoreUnavailableError
from models.catalog import Catalog
from models.projection import PlacedUnit, Projection
from services.grading import FailureSummary, GradeCommit, apply_grade, mark_ungraded, summarize_failures
from services.grid_transformer import ProjectionGrid, row_key_for, transform
from services.overload_guard import OverloadGuard, ensure_not_duplicate
from services.placement_validator import (
    ensure_open,
    require_entry,
    require_unit,
    resolve_target,
    validate_add,
    validate_delete,
    validate_mark_ungraded,
    validate_move,
)
from services.store_client import ProjectionStore
from services.violation_translation import translate_store_rejection


logger = logging.getLogger(__name__)


class ProjectionSession:
    """One student's projection as seen by the engine.

    `canonical` is the last snapshot confirmed by the store; `view` is what callers
    see, which runs ahead of `canonical` while a mutation is in flight. Every
    mutation applies locally, commits to the store, then re-fetches. A failed
    commit re-fetches to roll back, falling back to the last-known-good snapshot
    when the store cannot be reached.
    """

    def __init__(
        self,
        store: ProjectionStore,
        student_id: str,
        projection_id: str,
        *,
        catalog: Catalog | None = None,
        overload_guard: OverloadGuard | None = None,
        clock: Callable[[], datetime] | None = None,
        passing_grade: int | None = None,
    ):
        self.store = store
        self.student_id = student_id
        self.projection_id = projection_id
        self.catalog = catalog
        self.overload_guard = overload_guard or OverloadGuard(clock=clock)
        self.passing_grade = passing_grade
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.canonical: Projection | None = None
        self.view: Projection | None = None
        self.in_flight: set[str] = set()
        self._lock = threading.Lock()

    # Loading

    def load(self) -> Projection:
        if self.catalog is None:
            self.catalog = self.store.fetch_catalog()
        projection = self.store.fetch_projection(self.student_id, self.projection_id)
        self.canonical = self.view = projection
        return projection

    def _require_loaded(self) -> tuple[Projection, Catalog]:
        projection = self.canonical if self.canonical is not None else self.load()
        catalog = self.catalog
        if catalog is None:
            catalog = self.catalog = self.store.fetch_catalog()
        return projection, catalog

    def current(self) -> tuple[Projection, Catalog]:
        """The projection callers should see, with the catalog it resolves against."""
        projection, catalog = self._require_loaded()
        return (self.view if self.view is not None else projection), catalog

    def grid(self) -> ProjectionGrid:
        view, catalog = self.current()
        return transform(view.units, catalog)

    def failures(self) -> FailureSummary:
        projection, catalog = self._require_loaded()
        return summarize_failures(projection.units, catalog, passing_grade=self.passing_grade)

    # In-flight keys

    def _acquire(self, key: str) -> None:
        with self._lock:
            if key in self.in_flight:
                raise OperationInFlightError(key)
            self.in_flight.add(key)

    def _release(self, key: str) -> None:
        with self._lock:
            self.in_flight.discard(key)

    def _row_key(self, catalog_entry_id: str) -> str:
        catalog = self.catalog
        subject = catalog.subject_of(catalog_entry_id) if catalog else None
        category = catalog.category(subject.category_id) if catalog and subject else None
        if subject is None or category is None:
            return catalog_entry_id
        return row_key_for(subject, category, catalog)

    # Apply / commit / reconcile / rollback

    def _reconcile(self, optimistic: Projection) -> Projection:
        try:
            projection = self.store.fetch_projection(self.student_id, self.projection_id)
        except (StoreUnavailableError, StoreRejectedError, StoreResponseError):
            # The write went through; keep the optimistic copy until the next load.
            logger.exception("Refetch after commit failed for projection %s", self.projection_id)
            projection = optimistic
        self.canonical = self.view = projection
        return projection

    def _rollback(self, last_known_good: Projection) -> Projection:
        try:
            projection = self.store.fetch_projection(self.student_id, self.projection_id)
        except (StoreUnavailableError, StoreRejectedError, StoreResponseError):
            logger.exception(
                "Rollback refetch failed for projection %s; restoring last known snapshot",
                self.projection_id,
            )
            projection = last_known_good
        self.canonical = self.view = projection
        return projection

    def _run(
        self,
        key: str,
        operation: str,
        last_known_good: Projection,
        optimistic: Projection,
        commit: Callable[[], Any],
    ) -> Projection:
        self._acquire(key)
        self.view = optimistic
        try:
            try:
                commit()
            except StoreRejectedError as exc:
                rejection = translate_store_rejection(exc, operation=operation)
                logger.warning("Store rejected %s on projection %s: %s", key, self.projection_id, rejection.message)
                self._rollback(last_known_good)
                raise rejection from exc
            except StoreUnavailableError:
                logger.warning("Store unavailable during %s on projection %s; rolling back", key, self.projection_id)
                self._rollback(last_known_good)
                raise
            except Exception:
                logger.exception("Commit of %s on projection %s failed; rolling back", key, self.projection_id)
                self._rollback(last_known_good)
                raise
            projection = self._reconcile(optimistic)
        finally:
            self._release(key)
        logger.info("Committed %s on projection %s", key, self.projection_id)
        return projection

    # Mutations

    def add(
        self,
        *,
        catalog_entry_id: str,
        quarter: Any,
        week: Any,
        confirm_overload: bool = False,
        remember_overload: bool = False,
    ) -> Projection:
        projection, catalog = self._require_loaded()
        q, _ = resolve_target(quarter, week)
        ensure_open(projection, q)
        # Duplicates are rejected wherever they would land, before any ordering check.
        ensure_not_duplicate(projection, catalog, require_entry(catalog, catalog_entry_id))
        entry, q, w = validate_add(projection, catalog, catalog_entry_id=catalog_entry_id, quarter=quarter, week=week)
        overloaded = self.overload_guard.check_add(projection, q, confirmed=confirm_overload)

        key = f"add-{q}-{self._row_key(entry.id)}-{w}"
        placeholder = PlacedUnit(id=f"pending-{uuid.uuid4().hex}", catalog_entry_id=entry.id, quarter=q, week=w)
        view = self._run(
            key,
            "add",
            projection,
            projection.with_units(projection.units + (placeholder,)),
            lambda: self.store.add_unit(
                self.student_id, self.projection_id, catalog_entry_id=entry.id, quarter=q, week=w
            ),
        )
        if overloaded:
            self.overload_guard.confirm(remember=remember_overload)
        return view

    def move(self, unit_id: str, *, quarter: Any, week: Any) -> Projection:
        projection, catalog = self._require_loaded()
        unit, q, w = validate_move(projection, catalog, unit_id=unit_id, quarter=quarter, week=week)
        if unit.quarter == q and unit.week == w:
            return self.current()[0]

        key = f"move-{q}-{self._row_key(unit.catalog_entry_id)}-{unit.week}-{w}"
        moved = replace(unit, quarter=q, week=w)
        return self._run(
            key,
            "move",
            projection,
            projection.replace_unit(moved),
            lambda: self.store.move_unit(self.student_id, self.projection_id, unit.id, quarter=q, week=w),
        )

    def delete(self, unit_id: str) -> Projection:
        projection, _ = self._require_loaded()
        unit = validate_delete(projection, unit_id=unit_id)
        return self._run(
            f"delete-{unit.id}",
            "delete",
            projection,
            projection.without_unit(unit.id),
            lambda: self.store.delete_unit(self.student_id, self.projection_id, unit.id),
        )

    def grade(self, unit_id: str, commit: GradeCommit) -> Projection:
        projection, _ = self._require_loaded()
        unit = require_unit(projection, unit_id)
        ensure_open(projection, unit.quarter)
        graded = apply_grade(unit, commit, at=self._clock(), passing_grade=self.passing_grade)
        return self._run(
            f"grade-{unit.id}",
            "grade",
            projection,
            projection.replace_unit(graded),
            lambda: self.store.grade_unit(self.student_id, self.projection_id, unit.id, commit),
        )

    def mark_ungraded(self, unit_id: str) -> Projection:
        projection, _ = self._require_loaded()
        unit = validate_mark_ungraded(projection, unit_id=unit_id)
        return self._run(
            f"ungrade-{unit.id}",
            "ungrade",
            projection,
            projection.replace_unit(mark_ungraded(unit)),
            lambda: self.store.mark_ungraded(self.student_id, self.projection_id, unit.id),
        )


class SessionRegistry:
    """Projection sessions by `(student_id, projection_id)`, sharing one catalog."""

    def __init__(self, store_factory: Callable[[], ProjectionStore], *, clock: Callable[[], datetime] | None = None):
        self._store_factory = store_factory
        self._clock = clock
        self._sessions: dict[tuple[str, str], ProjectionSession] = {}
        self._catalog: Catalog | None = None
        self._lock = threading.Lock()

    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = self._store_factory().fetch_catalog()
        return self._catalog

    def get(self, student_id: str, projection_id: str, *, reload: bool = False) -> ProjectionSession:
        key = (student_id, projection_id)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = ProjectionSession(
                    self._store_factory(),
                    student_id,
                    projection_id,
                    catalog=self.catalog(),
                    clock=self._clock,
                )
                self._sessions[key] = session
                reload = True
        if reload and not session.in_flight:
            session.load()
        return session

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._catalog = None
