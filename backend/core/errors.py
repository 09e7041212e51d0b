from __future__ import annotations

from typing import Any

from models.violation import PlacementViolation


class EngineError(Exception):
    """Base class for failures raised by the projection engine."""


class ValidationRejection(EngineError):
    """A local, pre-network rejection. Nothing was applied and nothing needs rolling back."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class PlacementRejection(ValidationRejection):
    def __init__(self, violation: PlacementViolation, message: str):
        super().__init__("PLACEMENT_VIOLATION", message, violation.to_dict())
        self.violation = violation


class OperationInFlightError(ValidationRejection):
    def __init__(self, loading_key: str):
        super().__init__(
            "OPERATION_IN_FLIGHT",
            "Another change to this PACE is still being saved.",
            {"loadingKey": loading_key},
        )
        self.loading_key = loading_key


class OverloadConfirmationRequired(EngineError):
    """The add would push a quarter over the soft cap; the caller must confirm first."""

    def __init__(self, *, quarter: str, expected: int, cap: int):
        super().__init__(f"{quarter} would hold {expected} PACEs (recommended maximum {cap}).")
        self.quarter = quarter
        self.expected = expected
        self.cap = cap

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": "OVERLOAD_CONFIRMATION_REQUIRED",
            "message": str(self),
            "details": {"quarter": self.quarter, "expected": self.expected, "cap": self.cap},
        }


class RemoteRejection(EngineError):
    """The store of record refused an operation the engine had accepted locally."""

    def __init__(self, message: str, *, violation: PlacementViolation | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.violation = violation
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        if self.violation is not None:
            return {"code": "PLACEMENT_VIOLATION", "message": self.message, "details": self.violation.to_dict()}
        return {"code": "REMOTE_REJECTED", "message": self.message, "details": {}}
