"""Single boundary between store rejections and engine violations.

The store of record reports ordering conflicts either as a structured payload

    {"error": {"code": "PLACEMENT_VIOLATION", "operation": "move", "relation": "before",
               "order": 5, "conflictingOrder": 3, "quarter": "Q2", "week": 4}}

or, on older builds, as free text ("Cannot move pace 1005 before pace 1003 (Q2, week 4)").
Nothing outside this module looks at the shape of that text.
"""

from __future__ import annotations

import re
from typing import Any

from core.errors import RemoteRejection
from core.store import StoreRejectedError
from models.catalog import normalize_quarter
from models.violation import VIOLATION_OPERATIONS, VIOLATION_RELATIONS, PlacementViolation


_RELATION_WORDS = {
    "before": "before",
    "antes": "before",
    "after": "after",
    "despues": "after",
    "después": "after",
}

_OPERATION_WORDS = {
    "add": "add",
    "adding": "add",
    "agregar": "add",
    "move": "move",
    "moving": "move",
    "mover": "move",
}

_SEQUENCE_RE = re.compile(
    r"(?P<op>add(?:ing)?|agregar|mov(?:e|ing)|mover)\b\D*?(?P<order>\d+)\D*?"
    r"\b(?P<rel>before|after|antes|despu[eé]s)\b\D*?(?P<other>\d+)",
    re.IGNORECASE,
)
_POSITION_RE = re.compile(
    r"(?P<op>add(?:ing)?|agregar|mov(?:e|ing)|mover)\b\D*?(?P<order>\d+)\D*?"
    r"\b(?:occupied|ocupad[oa])\b\D*?(?P<other>\d+)",
    re.IGNORECASE,
)
_LOCATOR_RE = re.compile(r"\bQ(?P<q>[1-4])\b\D{0,12}?(?P<week>\d)\b", re.IGNORECASE)


def describe_violation(v: PlacementViolation) -> str:
    """English fallback text; `v.message_key` is what the presentation layer localizes."""

    verb = "add" if v.operation == "add" else "move"
    this = v.code or str(v.order)
    other = v.conflicting_code or str(v.conflicting_order)
    where = ""
    if v.quarter and v.week:
        where = f" ({v.quarter}, week {v.week})"

    if v.relation == "position":
        return f"Cannot {verb} PACE {this}: the slot{where} already holds PACE {other}, which has a different order."
    if v.relation == "after":
        return f"Cannot {verb} PACE {this}: it would come after PACE {other}{where}, which must follow it."
    return f"Cannot {verb} PACE {this}: it would come before PACE {other}{where}, which must precede it."


def violation_from_payload(payload: Any) -> PlacementViolation | None:
    if not isinstance(payload, dict):
        return None
    body = payload.get("error", payload)
    if not isinstance(body, dict) or body.get("code") != "PLACEMENT_VIOLATION":
        return None

    operation = str(body.get("operation", "")).lower()
    relation = str(body.get("relation", "")).lower()
    if operation not in VIOLATION_OPERATIONS or relation not in VIOLATION_RELATIONS:
        return None
    try:
        order = int(body["order"])
        conflicting_order = int(body["conflictingOrder"])
    except (KeyError, TypeError, ValueError):
        return None

    week = body.get("week")
    return PlacementViolation(
        operation=operation,
        relation=relation,
        order=order,
        conflicting_order=conflicting_order,
        quarter=normalize_quarter(body.get("quarter")),
        week=int(week) if isinstance(week, int) else None,
        code=body.get("paceCode"),
        conflicting_code=body.get("conflictingPaceCode"),
    )


def violation_from_text(text: str, *, operation: str | None = None) -> PlacementViolation | None:
    if not text:
        return None

    relation: str | None = None
    m = _SEQUENCE_RE.search(text)
    if m is not None:
        relation = _RELATION_WORDS[m.group("rel").lower()]
    else:
        m = _POSITION_RE.search(text)
        if m is not None:
            relation = "position"
    if m is None or relation is None:
        return None

    op = _OPERATION_WORDS.get(m.group("op").lower(), operation or "add")
    quarter = None
    week = None
    loc = _LOCATOR_RE.search(text, m.end())
    if loc is not None:
        quarter = f"Q{loc.group('q')}"
        week = int(loc.group("week"))

    return PlacementViolation(
        operation=op,
        relation=relation,
        order=int(m.group("order")),
        conflicting_order=int(m.group("other")),
        quarter=quarter,
        week=week,
        code=m.group("order"),
        conflicting_code=m.group("other"),
    )


def _error_text(payload: Any) -> str | None:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, str):
            return err
        if isinstance(err, list) or isinstance(payload.get("issues"), list):
            return "Validation error"
        msg = payload.get("message")
        if isinstance(msg, str):
            return msg
    if isinstance(payload, str):
        return payload
    return None


def translate_store_rejection(exc: StoreRejectedError, *, operation: str | None = None) -> RemoteRejection:
    violation = violation_from_payload(exc.payload)
    if violation is not None:
        return RemoteRejection(describe_violation(violation), violation=violation, status_code=exc.status_code)

    text = _error_text(exc.payload) or exc.message
    violation = violation_from_text(text, operation=operation)
    if violation is not None:
        return RemoteRejection(describe_violation(violation), violation=violation, status_code=exc.status_code)

    return RemoteRejection(text or f"Store request failed: {exc.status_code}", status_code=exc.status_code)
