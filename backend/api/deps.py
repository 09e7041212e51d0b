from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from services.reconciliation import SessionRegistry
from services.selection_validator import DraftRegistry
from services.store_client import HttpProjectionStore, ProjectionStore


@lru_cache
def _http_store() -> HttpProjectionStore:
    return HttpProjectionStore()


def get_store() -> ProjectionStore:
    """Store of record used by every route; tests override this dependency."""

    return _http_store()


_sessions: SessionRegistry | None = None
_store_for_sessions: ProjectionStore | None = None
_drafts = DraftRegistry()


def get_sessions(store: ProjectionStore = Depends(get_store)) -> SessionRegistry:
    # One registry per store instance, so an overridden store gets fresh sessions.
    global _sessions, _store_for_sessions
    if _sessions is None or _store_for_sessions is not store:
        _sessions = SessionRegistry(lambda: store)
        _store_for_sessions = store
    return _sessions


def get_drafts() -> DraftRegistry:
    return _drafts
