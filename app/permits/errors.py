"""
Domain errors raised by the service layer.

Each carries the HTTP status the API surfaces it with; the app factory
registers one handler for the whole hierarchy.
"""

from __future__ import annotations


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        return {"error": self.message, "errors": self.errors}


class ValidationError(WorkflowError):
    """Malformed payload: missing field, bad enum value, undecodable content."""

    status_code = 400

    @classmethod
    def from_list(cls, errors: list[str]) -> "ValidationError":
        return cls(errors[0] if len(errors) == 1 else "Invalid payload.", errors)


class AuthorizationError(WorkflowError):
    status_code = 403


class NotFoundError(WorkflowError):
    status_code = 404


class ConflictError(WorkflowError):
    status_code = 409


class PayloadTooLarge(WorkflowError):
    status_code = 413


class PreconditionFailed(WorkflowError):
    """A workflow rule refused the transition (incomplete checklist, missing reason)."""

    status_code = 422
