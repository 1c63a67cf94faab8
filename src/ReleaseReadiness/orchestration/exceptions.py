"""Custom exceptions for release readiness orchestration."""

from __future__ import annotations

from typing import Iterable


class ReleaseOrchestrationError(Exception):
    """Base exception for release orchestration failures."""

    client_error: bool = False


class ValidationError(ReleaseOrchestrationError):
    """Raised when scheduling or gate input is malformed."""

    client_error = True

    def __init__(self, message: str, errors: Iterable[str] = ()) -> None:
        self.errors = tuple(errors) or (message,)
        super().__init__(message)


class NotFoundError(ReleaseOrchestrationError):
    """Raised when a release run cannot be located by its public identifier."""

    client_error = True

    def __init__(self, public_id: str) -> None:
        self.public_id = public_id
        super().__init__(f"Release run '{public_id}' was not found")


class TemplateSourceError(ReleaseOrchestrationError):
    """Raised when the checklist template source cannot be read."""


class StorageError(ReleaseOrchestrationError):
    """Raised by storage collaborators when a persistence operation fails."""


class EvaluationSchemaWarning(UserWarning):
    """Category for non-fatal success-criteria schema problems.

    Never raised; the message is recorded as a note on the gate result.
    """


__all__ = [
    "EvaluationSchemaWarning",
    "NotFoundError",
    "ReleaseOrchestrationError",
    "StorageError",
    "TemplateSourceError",
    "ValidationError",
]
