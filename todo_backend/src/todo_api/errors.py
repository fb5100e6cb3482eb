from __future__ import annotations

from typing import Any, Optional


# PUBLIC_INTERFACE
class TodoError(Exception):
    """
    Base class for errors raised by the todo service.

    Each subclass carries the HTTP status code the API layer responds with, so
    routers can let these propagate and rely on the exception handlers in
    main.py to render them.
    """

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(TodoError):
    """Malformed input: bad recurrence kind, missing field, recurrence without date."""

    status_code = 422


class InvalidRecurrenceKind(ValidationError):
    """Raised when a recurrence kind is neither 'daily' nor 'weekly'."""

    def __init__(self, kind: Any) -> None:
        super().__init__(f"Unsupported recurrence kind: {kind!r}", detail={"recurrence": kind})
        self.recurrence = kind


class NotFoundError(TodoError):
    """Target record does not exist or is not owned by the caller."""

    status_code = 404


class ConflictError(TodoError):
    status_code = 409


class AuthError(TodoError):
    status_code = 401


class TransactionError(TodoError):
    """A multi-record write failed and was rolled back."""

    status_code = 500


class StoreUnavailable(TodoError):
    status_code = 503
