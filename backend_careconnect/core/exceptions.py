"""
Application-level exceptions.

Every domain error carries an HTTP status and a stable error code so the API
layer can render {success: false, error: {code, message}} without inspecting
message text. Raised inside session_scope(), which rolls the transaction back.
"""

from __future__ import annotations

from typing import Any


class CareConnectError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "SERVER_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


class ValidationError(CareConnectError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidTransitionError(CareConnectError):
    """Attempted job status change that is not in the transition table."""

    status_code = 400
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_state: str | None, to_state: str, job_id: str | None = None) -> None:
        suffix = f" for job {job_id}" if job_id else ""
        super().__init__(
            f"Invalid job status transition: {from_state} → {to_state}{suffix}",
            details={"from_state": from_state, "to_state": to_state, "job_id": job_id},
        )
        self.from_state = from_state
        self.to_state = to_state
        self.job_id = job_id

    @property
    def status(self) -> int:
        return self.status_code


class AuthorizationError(CareConnectError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(CareConnectError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(CareConnectError):
    status_code = 409
    code = "CONFLICT"


class InsufficientFundsError(CareConnectError):
    status_code = 422
    code = "INSUFFICIENT_BALANCE"
