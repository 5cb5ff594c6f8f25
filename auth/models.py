"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and routes
do the work.

Layer rule: no imports from api/ or client/. core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.models import Book


@dataclass
class User:
    """A registered account and its saved books.

    hashed_password is the bcrypt hash; the plaintext never reaches this
    object. saved_books is ordered by save time. book_count is derived.
    """

    username: str
    email: str
    id: str | None = None
    hashed_password: str | None = None
    saved_books: list[Book] = field(default_factory=list)
    created_at: str | None = None

    @property
    def book_count(self) -> int:
        return len(self.saved_books)


@dataclass(frozen=True)
class Identity:
    """The claims carried by a verified access token."""

    id: str
    username: str
    email: str


@dataclass(frozen=True)
class AuthContext:
    """Per-request authentication result. identity is None for anonymous requests."""

    identity: Identity | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


ANONYMOUS = AuthContext()
