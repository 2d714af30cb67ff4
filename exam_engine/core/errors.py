# exam_engine/core/errors.py
"""
Error taxonomy shared by the exam and submission services.

Every error carries a stable ``kind`` and the HTTP status the API layer
renders it with.
"""
from __future__ import annotations

from typing import Any, Optional


class ExamEngineError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(ExamEngineError):
    kind = "validation"
    status_code = 400


class ScheduleConflictError(ValidationError):
    kind = "schedule_conflict"

    def __init__(self, message: str, conflicts: list[dict[str, Any]]):
        super().__init__(message)
        self.conflicts = conflicts

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["conflicts"] = self.conflicts
        return body


class StateConflictError(ExamEngineError):
    kind = "state_conflict"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        current: Optional[str] = None,
        attempted: Optional[str] = None,
    ):
        super().__init__(message)
        self.current = current
        self.attempted = attempted

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.current is not None:
            body["current"] = self.current
        if self.attempted is not None:
            body["attempted"] = self.attempted
        return body


class AuthorizationError(ExamEngineError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(ExamEngineError):
    kind = "not_found"
    status_code = 404


class PersistenceError(ExamEngineError):
    kind = "persistence"
    status_code = 500
