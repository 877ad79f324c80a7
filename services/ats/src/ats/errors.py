from __future__ import annotations


class AtsError(Exception):
    """Base error carrying a client-facing message and the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AtsError):
    status_code = 400


class ProfileRequired(AtsError):
    status_code = 400


class Unauthorized(AtsError):
    status_code = 401


class Forbidden(AtsError):
    status_code = 403


class NotFound(AtsError):
    status_code = 404


class Conflict(AtsError):
    status_code = 409


class InternalError(AtsError):
    status_code = 500


class CacheError(Exception):
    """Transport failure talking to the cache. Never surfaced to API callers."""


class DuplicateRecordError(Exception):
    """A unique constraint rejected a write."""
