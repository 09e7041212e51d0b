import httpx
import pytest

import core.store
from core.config import settings
from core.store import StoreRejectedError, StoreResponseError, StoreUnavailableError, build_http_client
from services.grading import GradeCommit
from services.store_client import HttpProjectionStore


SNAPSHOT = {
    "id": "proj-1",
    "status": "open",
    "schoolYear": "2026-2027",
    "closedQuarters": ["1"],
    "student": {"id": "stu-1", "fullName": "Ana Torres", "isLeveled": True},
    "units": [
        {"id": "u1", "paceCatalogId": "math1-1001", "quarter": 2, "week": 3, "isCompleted": True, "grade": 90},
        {"id": "u2", "catalogEntryId": "math1-1002", "quarter": "q2", "week": 4, "status": "PENDING"},
    ],
}

CATALOG = {
    "categories": [{"id": "cat-math", "name": "Math", "displayOrder": 0}],
    "subjects": [{"id": "math1", "name": "Math 1", "categoryId": "cat-math", "levelNumber": 1}],
    "entries": [{"id": "math1-1001", "code": 1001, "subjectId": "math1", "orderIndex": 1}],
}


def _store(handler):
    client = httpx.Client(base_url="http://store.test", transport=httpx.MockTransport(handler))
    return HttpProjectionStore(client)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(core.store, "_RETRY_DELAYS_SECONDS", [0, 0, 0])


class TestReads:
    def test_projection_snapshot(self):
        store = _store(lambda req: httpx.Response(200, json=SNAPSHOT))
        proj = store.fetch_projection("stu-1", "proj-1")
        assert proj.status == "OPEN"
        assert proj.closed_quarters == frozenset({"Q1"})
        assert proj.student.is_leveled is True
        u1, u2 = proj.units
        assert (u1.quarter, u1.week, u1.status) == ("Q2", 3, "COMPLETED")
        assert (u2.catalog_entry_id, u2.quarter) == ("math1-1002", "Q2")

    def test_catalog_numeric_codes_become_text(self):
        store = _store(lambda req: httpx.Response(200, json=CATALOG))
        catalog = store.fetch_catalog()
        assert catalog.entry("math1-1001").code == "1001"
        assert catalog.subject("math1").level_number == 1

    def test_malformed_snapshot(self):
        store = _store(lambda req: httpx.Response(200, json={"units": "nope"}))
        with pytest.raises(StoreResponseError):
            store.fetch_projection("stu-1", "proj-1")

    def test_transient_failures_are_retried(self):
        attempts = []

        def handler(req):
            attempts.append(req.url.path)
            raise httpx.ConnectError("connection refused", request=req)

        with pytest.raises(StoreUnavailableError):
            _store(handler).fetch_projection("stu-1", "proj-1")
        assert len(attempts) == 4

    def test_server_error_then_success(self):
        responses = [httpx.Response(503), httpx.Response(200, json=SNAPSHOT)]
        store = _store(lambda req: responses.pop(0))
        assert store.fetch_projection("stu-1", "proj-1").id == "proj-1"
        assert responses == []

    def test_client_error_is_not_retried(self):
        attempts = []

        def handler(req):
            attempts.append(req)
            return httpx.Response(404, json={"error": "Projection not found"})

        with pytest.raises(StoreRejectedError) as exc:
            _store(handler).fetch_projection("stu-1", "proj-1")
        assert exc.value.status_code == 404
        assert len(attempts) == 1


class TestWrites:
    def test_add_request(self):
        seen = {}

        def handler(req):
            seen["method"] = req.method
            seen["path"] = req.url.path
            seen["body"] = req.read()
            return httpx.Response(201, json={"id": "u9"})

        assert _store(handler).add_unit("stu-1", "proj-1", catalog_entry_id="math1-1004", quarter="Q1", week=4) == {
            "id": "u9"
        }
        assert seen["method"] == "POST"
        assert seen["path"] == "/students/stu-1/projections/proj-1/paces"
        assert httpx.Response(200, content=seen["body"]).json() == {
            "paceCatalogId": "math1-1004",
            "quarter": "Q1",
            "week": 4,
        }

    def test_rejection_keeps_payload(self):
        body = {"error": "Cannot move pace 1005 before pace 1003 (Q2, week 4)"}
        store = _store(lambda req: httpx.Response(409, json=body))
        with pytest.raises(StoreRejectedError) as exc:
            store.move_unit("stu-1", "proj-1", "u5", quarter="Q2", week=4)
        assert exc.value.status_code == 409
        assert exc.value.payload == body

    def test_plain_text_rejection(self):
        store = _store(lambda req: httpx.Response(400, text="bad week"))
        with pytest.raises(StoreRejectedError) as exc:
            store.delete_unit("stu-1", "proj-1", "u5")
        assert exc.value.payload == "bad week"

    def test_write_is_attempted_once(self):
        attempts = []

        def handler(req):
            attempts.append(req)
            raise httpx.ConnectError("connection refused", request=req)

        with pytest.raises(StoreUnavailableError):
            _store(handler).delete_unit("stu-1", "proj-1", "u5")
        assert len(attempts) == 1

    def test_redirect_on_write_is_an_unexpected_response(self):
        attempts = []

        def handler(req):
            attempts.append(req)
            return httpx.Response(302, headers={"Location": "/login"})

        with pytest.raises(StoreResponseError):
            _store(handler).add_unit("stu-1", "proj-1", catalog_entry_id="math1-1001", quarter="Q1", week=2)
        assert len(attempts) == 1

    def test_grade_and_ungrade_paths(self):
        seen = []

        def handler(req):
            seen.append((req.method, req.url.path, req.read()))
            return httpx.Response(204)

        store = _store(handler)
        store.grade_unit("stu-1", "proj-1", "u5", GradeCommit(grade=85))
        store.grade_unit("stu-1", "proj-1", "u6", GradeCommit(grade=70, note="Retake"))
        store.mark_ungraded("stu-1", "proj-1", "u5")
        assert seen[0][:2] == ("PUT", "/students/stu-1/projections/proj-1/paces/u5")
        assert httpx.Response(200, content=seen[0][2]).json() == {"grade": 85}
        assert httpx.Response(200, content=seen[1][2]).json() == {"grade": 70, "note": "Retake"}
        assert seen[2][:2] == ("PATCH", "/students/stu-1/projections/proj-1/paces/u5/incomplete")

    def test_generate_needs_object_response(self):
        store = _store(lambda req: httpx.Response(200, json=["proj-new"]))
        with pytest.raises(StoreResponseError):
            store.generate_projection({"studentId": "stu-1"})


class TestClient:
    def test_bearer_token(self, monkeypatch):
        monkeypatch.setattr(settings, "store_api_token", "secret")
        seen = {}

        def handler(req):
            seen["auth"] = req.headers.get("Authorization")
            return httpx.Response(200, json=SNAPSHOT)

        store = HttpProjectionStore(build_http_client(transport=httpx.MockTransport(handler)))
        store.fetch_projection("stu-1", "proj-1")
        assert seen["auth"] == "Bearer secret"
