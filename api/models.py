"""
API request and response models for the book catalog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from auth.passwords import PASSWORD_MAX_BYTES
from core.models import EMAIL_PATTERN, Book

# Character cap for the schema; the byte cap bcrypt needs is checked below.
_PASSWORD_MAX = PASSWORD_MAX_BYTES


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    """Reject passwords whose UTF-8 form is longer than bcrypt accepts."""
    if value is not None and len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (addUser)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/me. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class BookInput(BaseModel):
    """Request body for POST /api/v1/me/books -- a search result being saved."""

    model_config = ConfigDict(str_strip_whitespace=True)

    book_id: str = Field(min_length=1, max_length=255)
    title: str = Field(min_length=1)
    authors: list[str] = Field(default_factory=list)
    description: str = ""
    image: Optional[str] = None
    link: Optional[str] = None

    def to_domain(self) -> Book:
        return Book(
            book_id=self.book_id,
            title=self.title,
            authors=list(self.authors),
            description=self.description,
            image=self.image,
            link=self.link,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class BookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    book_id: str
    title: str
    authors: list[str]
    description: str
    image: Optional[str] = None
    link: Optional[str] = None

    @classmethod
    def from_domain(cls, book: Book) -> "BookResponse":
        return cls(
            book_id=book.book_id,
            title=book.title,
            authors=list(book.authors),
            description=book.description,
            image=book.image,
            link=book.link,
        )


class UserResponse(BaseModel):
    """Public view of a user. The password hash never leaves the store layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    saved_books: list[BookResponse]
    book_count: int

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        """Factory Method -- the mapping lives with the output model, not in the routes."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            saved_books=[BookResponse.from_domain(b) for b in user.saved_books],
            book_count=user.book_count,
        )


class AuthResponse(BaseModel):
    """Response for login and addUser: a bearer token plus the user it identifies."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
