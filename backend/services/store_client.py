from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from core.config import settings
from core.store import (
    StoreRejectedError,
    StoreResponseError,
    StoreUnavailableError,
    build_http_client,
    is_transient_store_error,
    with_read_retries,
)
from models.catalog import Catalog
from models.projection import Projection
from schemas.catalog import CatalogSnapshotIn
from schemas.projection import ProjectionSnapshotIn
from services.grading import GradeCommit


logger = logging.getLogger(__name__)


class ProjectionStore(Protocol):
    """The store of record. Every mutation is re-validated there."""

    def fetch_projection(self, student_id: str, projection_id: str) -> Projection: ...

    def fetch_catalog(self) -> Catalog: ...

    def add_unit(self, student_id: str, projection_id: str, *, catalog_entry_id: str, quarter: str, week: int) -> Any: ...

    def move_unit(self, student_id: str, projection_id: str, unit_id: str, *, quarter: str, week: int) -> Any: ...

    def delete_unit(self, student_id: str, projection_id: str, unit_id: str) -> Any: ...

    def grade_unit(self, student_id: str, projection_id: str, unit_id: str, commit: GradeCommit) -> Any: ...

    def mark_ungraded(self, student_id: str, projection_id: str, unit_id: str) -> Any: ...

    def generate_projection(self, payload: dict[str, Any]) -> dict[str, Any]: ...


def _decode(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class HttpProjectionStore:
    def __init__(self, client: httpx.Client | None = None):
        self._client = client or build_http_client()

    def _send(self, method: str, path: str, *, json: Any = None) -> Any:
        resp = self._client.request(method, path, json=json)
        if 400 <= resp.status_code < 500:
            payload = _decode(resp)
            message = f"Store rejected {method} {path}: {resp.status_code}"
            logger.warning("%s", message)
            raise StoreRejectedError(resp.status_code, message, payload)
        resp.raise_for_status()
        return _decode(resp)

    def _read(self, path: str) -> Any:
        return with_read_retries(lambda: self._send("GET", path))

    def _write(self, method: str, path: str, *, json: Any = None) -> Any:
        # Writes are never retried: a timed-out request may still have been applied.
        try:
            return self._send(method, path, json=json)
        except StoreRejectedError:
            raise
        except Exception as exc:
            if is_transient_store_error(exc):
                logger.warning("Store unavailable during %s %s: %s", method, path, exc)
                raise StoreUnavailableError("Store of record temporarily unavailable") from exc
            if isinstance(exc, httpx.HTTPStatusError):
                logger.error("Unexpected store response to %s %s: %s", method, path, exc.response.status_code)
                raise StoreResponseError(f"Unexpected store response to {method} {path}") from exc
            raise

    @staticmethod
    def _paces_path(student_id: str, projection_id: str) -> str:
        return f"/students/{student_id}/projections/{projection_id}/paces"

    def fetch_projection(self, student_id: str, projection_id: str) -> Projection:
        data = self._read(f"/students/{student_id}/projections/{projection_id}")
        try:
            return ProjectionSnapshotIn.model_validate(data).to_domain()
        except ValidationError as exc:
            raise StoreResponseError(f"Unreadable projection snapshot for {projection_id}") from exc

    def fetch_catalog(self) -> Catalog:
        data = self._read("/catalog")
        try:
            snapshot = CatalogSnapshotIn.model_validate(data)
        except ValidationError as exc:
            raise StoreResponseError("Unreadable catalog snapshot") from exc
        return snapshot.to_domain(exemption_category_name=settings.exemption_category_name)

    def add_unit(self, student_id: str, projection_id: str, *, catalog_entry_id: str, quarter: str, week: int) -> Any:
        return self._write(
            "POST",
            self._paces_path(student_id, projection_id),
            json={"paceCatalogId": catalog_entry_id, "quarter": quarter, "week": week},
        )

    def move_unit(self, student_id: str, projection_id: str, unit_id: str, *, quarter: str, week: int) -> Any:
        return self._write(
            "PATCH",
            f"{self._paces_path(student_id, projection_id)}/{unit_id}/move",
            json={"quarter": quarter, "week": week},
        )

    def delete_unit(self, student_id: str, projection_id: str, unit_id: str) -> Any:
        return self._write("DELETE", f"{self._paces_path(student_id, projection_id)}/{unit_id}")

    def grade_unit(self, student_id: str, projection_id: str, unit_id: str, commit: GradeCommit) -> Any:
        return self._write(
            "PUT", f"{self._paces_path(student_id, projection_id)}/{unit_id}", json=commit.to_payload()
        )

    def mark_ungraded(self, student_id: str, projection_id: str, unit_id: str) -> Any:
        return self._write("PATCH", f"{self._paces_path(student_id, projection_id)}/{unit_id}/incomplete")

    def generate_projection(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._write("POST", "/projections/generate", json=payload)
        if not isinstance(data, dict):
            raise StoreResponseError("Unreadable response to projection generation")
        return data
