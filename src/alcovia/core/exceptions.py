"""
Domain exceptions for the intervention engine.

Caller-visible failures (validation, not found, conflict) need no retry.
StorageError is transient: the operation had no effect and may be retried.
"""

from __future__ import annotations


class InterventionError(Exception):
    """Base class for every error raised by the intervention core."""

    category = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(InterventionError):
    """Unknown student or ticket identity."""

    category = "not_found"


class ConflictError(InterventionError):
    """Operation attempted against a student or ticket in the wrong state."""

    category = "conflict"


class StorageError(InterventionError):
    """The store was unavailable or a write failed; nothing was persisted.

    Attributes:
        original_error: The underlying SQLAlchemy or driver error.
    """

    category = "storage"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message
