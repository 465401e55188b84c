"""
Domain error taxonomy shared by services and the HTTP layer.
"""
from typing import Any, Optional


class ExamCoreError(Exception):
    """Base class for all typed failures raised by the services."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ExamCoreError):
    """Malformed question content, answer payload or composition."""

    code = "validation_error"
    status_code = 422


class NotFound(ExamCoreError):
    code = "not_found"
    status_code = 404

    def __init__(self, kind: str, ident: Any):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class InvalidState(ExamCoreError):
    """Operation attempted against an exam or session in the wrong lifecycle state."""

    code = "invalid_state"
    status_code = 409


class ExamNotActive(InvalidState):
    code = "exam_not_active"


class AlreadySubmitted(InvalidState):
    code = "already_submitted"


class SessionSubmitted(InvalidState):
    code = "session_submitted"


class Conflict(ExamCoreError):
    code = "conflict"
    status_code = 409


class Forbidden(ExamCoreError):
    """Caller is known to the resource but lacks the role for the operation."""

    code = "forbidden"
    status_code = 403
