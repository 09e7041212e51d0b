from __future__ import annotations

import time
from typing import Any, Callable, Iterable, TypeVar

import httpx

from core.config import settings


T = TypeVar("T")


class StoreUnavailableError(RuntimeError):
    """Raised when the store of record is temporarily unreachable (transient connectivity failure)."""


class StoreRejectedError(RuntimeError):
    """Raised when the store of record answers a request with a client error.

    `payload` is the decoded JSON body when there was one, else None.
    """

    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload


_RETRY_DELAYS_SECONDS: list[float] = [0.2, 0.5, 1.0]


def _iter_exception_messages(exc: BaseException) -> Iterable[str]:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        msg = str(cur)
        if msg:
            yield msg
        cur = getattr(cur, "__cause__", None) or getattr(cur, "__context__", None)


def is_transient_store_error(exc: BaseException) -> bool:
    """Detect transient store failures (DNS/timeouts/refused/5xx).

    Client errors (4xx) are the store's verdict on the request and are never transient.
    """

    if isinstance(exc, StoreUnavailableError):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500

    joined = "\n".join(m.lower() for m in _iter_exception_messages(exc))

    # DNS resolution failures
    if "getaddrinfo failed" in joined:
        return True
    if "name or service not known" in joined:
        return True

    # Connection refused / reset / closed
    if "connection refused" in joined:
        return True
    if "connection reset" in joined:
        return True

    # Timeouts
    if "timeout" in joined:
        return True
    if "timed out" in joined:
        return True

    return False


def build_http_client(*, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    headers = {"Content-Type": "application/json"}
    if settings.store_api_token:
        headers["Authorization"] = f"Bearer {settings.store_api_token}"

    # The timeout keeps store outages from hanging a mutation; reconciliation
    # treats a timeout like any other transient failure.
    return httpx.Client(
        base_url=settings.store_base_url,
        headers=headers,
        timeout=settings.store_timeout_seconds,
        transport=transport,
    )


def with_read_retries(fn: Callable[[], T], *, sleep: Callable[[float], None] = time.sleep) -> T:
    """Run an idempotent store read, retrying transient failures with short back-off.

    Mutations must not go through here: a timed-out write may still have been applied.
    """

    last_exc: BaseException | None = None
    for attempt in range(len(_RETRY_DELAYS_SECONDS) + 1):
        try:
            return fn()
        except StoreRejectedError:
            raise
        except Exception as exc:
            last_exc = exc
            if not is_transient_store_error(exc) or attempt >= len(_RETRY_DELAYS_SECONDS):
                break
            sleep(_RETRY_DELAYS_SECONDS[attempt])

    if last_exc is not None and not is_transient_store_error(last_exc):
        raise last_exc
    raise StoreUnavailableError("Store of record temporarily unavailable") from last_exc


class StoreResponseError(RuntimeError):
    """Raised when the store of record answers with a body the engine cannot read."""
