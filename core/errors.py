"""
core/errors.py -- Domain error taxonomy.

Stores and auth helpers raise these; api/main.py maps each class to an HTTP
status and the shared ErrorResponse envelope. Nothing here knows about HTTP.

  ValidationError      bad input shape (username, email, missing fields)
  ConflictError        duplicate username or email
  AuthenticationError  bad credentials, or a guarded operation without identity
  NotFoundError        target record (user, saved book) does not exist

AuthenticationError messages are deliberately generic. Callers must not
reveal which check failed (unknown email vs wrong password, missing vs
expired token).
"""

from __future__ import annotations


class BookCatalogError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "error"
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


class ValidationError(BookCatalogError):
    code = "validation_error"
    default_message = "Invalid input."


class ConflictError(BookCatalogError):
    code = "conflict"
    default_message = "A user with that username or email already exists."


class AuthenticationError(BookCatalogError):
    code = "not_authenticated"
    default_message = "Not authenticated."


class NotFoundError(BookCatalogError):
    code = "not_found"
    default_message = "Not found."
