"""
Typed errors raised by the session engine.
Each carries the HTTP status it maps to; the application registers one handler
that renders them as {"success": false, "error": {...}}.
"""

from typing import Any, Optional


class SessionEngineError(Exception):
    status_code = 400
    error_type = "error"

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class NotFoundError(SessionEngineError):
    """Session, exam or question absent."""
    status_code = 404
    error_type = "not_found"


class ForbiddenError(SessionEngineError):
    """Session does not belong to the caller."""
    status_code = 403
    error_type = "forbidden"


class ValidationError(SessionEngineError):
    """Input that is well-formed but does not fit the session (unknown question, wrong option)."""
    status_code = 400
    error_type = "validation_error"


class InvalidStateError(SessionEngineError):
    """Mutating a terminal session, or navigating outside [0, total)."""
    status_code = 409
    error_type = "invalid_state"


class SessionExpiredError(InvalidStateError):
    """
    A test session ran out of time while being accessed. The session has
    already been auto-submitted; ``data`` holds the finalized result.
    """
    error_type = "expired"

    def __init__(self, session_id: str, result: Any):
        super().__init__(
            "Test session has expired and was automatically submitted",
            data=result,
        )
        self.session_id = session_id
        self.result = result


class DuplicateOpenSessionError(Exception):
    """Raised by the store when the open-session uniqueness constraint rejects an insert."""
