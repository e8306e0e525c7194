"""
Error types raised by the rating engine.

Every error carries the HTTP status code a route layer should answer with,
so callers can translate failures without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class RatingError(Exception):
    """Base class for all rallyelo errors."""

    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(RatingError):
    """Bad input or a precondition that the caller can fix."""

    status_code = 400


class NotFoundError(ValidationError):
    """A referenced session, match or team does not exist."""

    status_code = 404


class ConflictError(RatingError):
    """Another recalculation holds the session lock, or the state moved on."""

    status_code = 409


class RatingIntegrityError(RatingError):
    """Derived data disagrees with what a replay says it should be."""


class StorageError(RatingError):
    """The underlying store failed while reading or writing."""
