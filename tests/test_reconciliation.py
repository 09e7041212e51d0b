from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import unit
from core.errors import (
    OperationInFlightError,
    OverloadConfirmationRequired,
    PlacementRejection,
    RemoteRejection,
    ValidationRejection,
)
from core.store import StoreRejectedError, StoreResponseError, StoreUnavailableError
from services.grading import GradeCommit
from services.overload_guard import OverloadGuard
from services.reconciliation import ProjectionSession, SessionRegistry


@pytest.fixture
def session(store, catalog, clock):
    s = ProjectionSession(
        store,
        "stu-1",
        "proj-1",
        catalog=catalog,
        overload_guard=OverloadGuard(cap=18, remember_minutes=10, clock=clock),
        clock=clock,
    )
    s.load()
    return s


def _ids(proj):
    return {u.id for u in proj.units}


def _store_projection(store):
    return store.projections[("stu-1", "proj-1")]


def _fill_q2_to_cap(session, store):
    proj = _store_projection(store)
    filler = tuple(unit(f"f{i}", f"eng1-{1001 + i}", "Q2", (i % 9) + 1) for i in range(12)) + tuple(
        unit(f"s{i}", f"sci1-{1001 + i}", "Q2", (i % 9) + 1) for i in range(6)
    )
    store.projections[("stu-1", "proj-1")] = replace(
        proj, student=replace(proj.student, is_leveled=True), units=proj.units + filler
    )
    session.load()


class TestCommit:
    def test_add_refetches_canonical_state(self, session, store):
        view = session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4)
        assert store.calls == [("add", "math1-1009", "Q2", 4)]
        assert "u1001" in _ids(view)
        assert not any(i.startswith("pending-") for i in _ids(view))
        assert session.canonical is session.view
        assert session.in_flight == set()

    def test_optimistic_view_while_committing(self, session, store):
        seen = {}
        original = store.add_unit

        def spy(*args, **kwargs):
            seen["in_flight"] = set(session.in_flight)
            seen["pending"] = [u for u in session.view.units if u.id.startswith("pending-")]
            seen["canonical_ids"] = _ids(session.canonical)
            return original(*args, **kwargs)

        store.add_unit = spy
        session.add(catalog_entry_id="math1-1009", quarter=2, week=4)
        assert seen["in_flight"] == {"add-Q2-Math-4"}
        assert [(u.catalog_entry_id, u.quarter, u.week) for u in seen["pending"]] == [("math1-1009", "Q2", 4)]
        assert seen["canonical_ids"] == {"u3", "u5", "u8"}

    def test_move_key_names_both_weeks(self, session, store):
        seen = {}
        original = store.move_unit

        def spy(*args, **kwargs):
            seen["in_flight"] = set(session.in_flight)
            return original(*args, **kwargs)

        store.move_unit = spy
        view = session.move("u5", quarter="Q1", week=7)
        assert seen["in_flight"] == {"move-Q1-Math-5-7"}
        assert view.unit("u5").week == 7

    def test_move_to_same_position_is_noop(self, session, store):
        session.move("u5", quarter="Q1", week=5)
        assert store.calls == []

    def test_refetch_failure_keeps_optimistic_copy(self, session, store):
        original = store.add_unit

        def add_then_go_down(*args, **kwargs):
            result = original(*args, **kwargs)
            store.fail_fetch = StoreUnavailableError("down")
            return result

        store.add_unit = add_then_go_down
        view = session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4)
        assert any(i.startswith("pending-") for i in _ids(view))
        assert session.canonical is view
        assert session.in_flight == set()


class TestRollback:
    def test_remote_rejection_restores_store_state(self, session, store):
        store.fail_next_write = StoreRejectedError(
            409, "rejected", {"error": "Cannot move pace 1005 before pace 1003 (Q1, week 6)"}
        )
        with pytest.raises(RemoteRejection) as exc:
            session.move("u5", quarter="Q1", week=6)
        assert exc.value.violation.relation == "before"
        assert session.view.unit("u5").week == 5
        assert session.view == _store_projection(store)
        assert session.in_flight == set()

    def test_unreachable_store_falls_back_to_last_known_good(self, session, store):
        before = session.canonical
        store.fail_next_write = StoreUnavailableError("down")
        store.fail_fetch = StoreUnavailableError("still down")
        with pytest.raises(StoreUnavailableError):
            session.delete("u5")
        assert session.view is before
        assert session.in_flight == set()

    def test_rejected_grade_rolls_back(self, session, store):
        store.fail_next_write = StoreRejectedError(403, "rejected", {"error": "Projection is locked"})
        with pytest.raises(RemoteRejection) as exc:
            session.grade("u3", GradeCommit(grade=90))
        assert exc.value.message == "Projection is locked"
        assert session.view.unit("u3").grade is None

    def test_unexpected_store_response_rolls_back(self, session, store):
        store.fail_next_write = StoreResponseError("Unexpected store response to POST /paces")
        with pytest.raises(StoreResponseError):
            session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4)
        assert session.view == _store_projection(store)
        assert not any(u.id.startswith("pending-") for u in session.view.units)
        assert session.in_flight == set()

    def test_unexpected_error_rolls_back(self, session, store):
        store.fail_next_write = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            session.move("u5", quarter="Q1", week=7)
        assert session.view.unit("u5").week == 5
        assert session.view is session.canonical
        assert session.in_flight == set()


class TestLocalRejection:
    def test_illegal_move_never_reaches_store(self, session, store):
        with pytest.raises(PlacementRejection):
            session.move("u5", quarter="Q1", week=2)
        assert store.calls == []
        assert session.view is session.canonical

    def test_duplicate_rejected_wherever_it_lands(self, session, store):
        for quarter, week in (("Q1", 1), ("Q1", 4), ("Q4", 9)):
            with pytest.raises(ValidationRejection) as exc:
                session.add(catalog_entry_id="math1-1005", quarter=quarter, week=week)
            assert exc.value.code == "DUPLICATE_PACE"
        assert store.calls == []

    def test_same_key_in_flight(self, session, store):
        original = store.delete_unit

        def reenter(*args, **kwargs):
            with pytest.raises(OperationInFlightError) as exc:
                session.delete("u8")
            assert exc.value.loading_key == "delete-u8"
            return original(*args, **kwargs)

        store.delete_unit = reenter
        session.delete("u8")
        assert "u8" not in _ids(session.view)

    def test_closed_projection(self, session, store):
        store.projections[("stu-1", "proj-1")] = replace(_store_projection(store), status="CLOSED")
        session.load()
        with pytest.raises(ValidationRejection) as exc:
            session.grade("u3", GradeCommit(grade=90))
        assert exc.value.code == "PROJECTION_CLOSED"
        assert store.calls == []


class TestOverloadThroughSession:
    def test_prompt_then_confirm(self, session, store):
        _fill_q2_to_cap(session, store)
        with pytest.raises(OverloadConfirmationRequired):
            session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4)
        assert store.calls == []
        session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4, confirm_overload=True)
        assert store.calls == [("add", "math1-1009", "Q2", 4)]
        assert session.overload_guard.remember_until is None

    def test_remembered_only_once_the_add_is_committed(self, session, store, clock):
        _fill_q2_to_cap(session, store)
        store.fail_next_write = StoreRejectedError(409, "rejected", {"error": "Projection is locked"})
        with pytest.raises(RemoteRejection):
            session.add(
                catalog_entry_id="math1-1009", quarter="Q2", week=4, confirm_overload=True, remember_overload=True
            )
        assert session.overload_guard.remember_until is None

        session.add(catalog_entry_id="math1-1009", quarter="Q2", week=4, confirm_overload=True, remember_overload=True)
        assert session.overload_guard.remember_until == clock() + timedelta(minutes=10)


class TestGradingFlow:
    def test_grade_fail_then_pass(self, session, store):
        session.grade("u3", GradeCommit(grade=65, note="Rushed"))
        assert session.failures().by_unit == {"u3": 1}
        view = session.grade("u3", GradeCommit(grade=88))
        assert view.unit("u3").status == "COMPLETED"
        assert [h.grade for h in view.unit("u3").grade_history] == [65, 88]
        assert store.calls[0] == ("grade", "u3", 65, "Rushed")

    def test_graded_unit_deleted_only_after_ungrading(self, session, store):
        session.grade("u3", GradeCommit(grade=92))
        with pytest.raises(ValidationRejection) as exc:
            session.delete("u3")
        assert exc.value.code == "PACE_GRADED"
        session.mark_ungraded("u3")
        view = session.delete("u3")
        assert "u3" not in _ids(view)
        assert [c[0] for c in store.calls] == ["grade", "ungrade", "delete"]


class TestRegistry:
    def test_sessions_share_catalog_and_reload(self, store):
        registry = SessionRegistry(lambda: store)
        first = registry.get("stu-1", "proj-1")
        assert store.fetch_count == 1
        assert registry.get("stu-1", "proj-1") is first
        assert store.fetch_count == 1
        registry.get("stu-1", "proj-1", reload=True)
        assert store.fetch_count == 2
        assert first.catalog is registry.catalog()
