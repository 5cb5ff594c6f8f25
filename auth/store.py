"""
auth/store.py -- SQLAlchemy Core persistence layer for users and saved books.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_book are the mappers. Route and dependency code never touches SQL
directly.

Uniqueness: username and email carry UNIQUE constraints, so two concurrent
registrations for the same name race inside the database, not in Python.
Exactly one INSERT wins; the loser's IntegrityError becomes ConflictError.

Saved books live in their own table keyed by (user_id, book_id) with a
position column that preserves save order; (user_id, position) is also
UNIQUE so concurrent saves never share a slot. They are owned by the user row
and deleted with it (ON DELETE CASCADE, foreign keys enabled per connection).

Password rule: the hash is computed here whenever a password is set (create
or update) and never otherwise. An update that does not pass a password
leaves the stored hash untouched.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import PASSWORD_MAX_BYTES, hash_password
from core.config import get_settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import EMAIL_PATTERN, Book

logger = logging.getLogger("bookcatalog.auth")

_EMAIL_RE = re.compile(EMAIL_PATTERN)

# Attempts for save_book when a concurrent save takes the same position.
_SAVE_ATTEMPTS = 3

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, opaque to clients
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_saved_books = Table(
    "saved_books",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("book_id", String(255), nullable=False),
    Column("position", Integer, nullable=False),
    Column("title", Text, nullable=False),
    Column("authors", Text, nullable=False),  # JSON array, order preserved
    Column("description", Text, nullable=False, server_default=""),
    Column("image", Text),
    Column("link", Text),
    UniqueConstraint("user_id", "book_id", name="uq_saved_books_user_book"),
    UniqueConstraint("user_id", "position", name="uq_saved_books_user_position"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on each new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate_username(username: str) -> str:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username must not be empty.", field="username")
    return username


def _validate_email(email: str) -> str:
    email = (email or "").strip()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Must use a valid email address.", field="email")
    return email


def _validate_password(password: str) -> str:
    if not password:
        raise ValidationError("Password must not be empty.", field="password")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.", field="password")
    return password


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their saved books.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user("ada", "ada@example.com", "secret")
        store.save_book(user.id, Book(book_id="B1", title="Notes"))
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def create_user(self, username: str, email: str, password: str) -> User:
        """Validate, hash, and insert a new user.

        Raises ValidationError for bad input shape and ConflictError when the
        username or email is already taken. Nothing is written on failure.
        """
        username = _validate_username(username)
        email = _validate_email(email)
        hashed = hash_password(_validate_password(password))
        user = User(
            id=uuid.uuid4().hex,
            username=username,
            email=email,
            hashed_password=hashed,
            created_at=_now_iso(),
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        created_at=user.created_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError() from exc
        logger.info("Created user id=%s", user.id)
        return user

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key, saved books included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._hydrate(conn, row)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            return self._hydrate(conn, row)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
            return self._hydrate(conn, row)

    def update_user(
        self,
        user_id: str,
        *,
        username: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> User:
        """Update profile fields on an existing user.

        Only the fields passed are written. The password hash is recomputed
        when, and only when, password is given.

        Raises NotFoundError for an unknown user_id, ConflictError when the
        new username or email belongs to someone else.
        """
        values: dict = {}
        if username is not None:
            values["username"] = _validate_username(username)
        if email is not None:
            values["email"] = _validate_email(email)
        if password is not None:
            values["hashed_password"] = hash_password(_validate_password(password))

        if values:
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            except IntegrityError as exc:
                raise ConflictError() from exc
            if result.rowcount == 0:
                raise NotFoundError("User not found.")
            if "hashed_password" in values:
                logger.info("Password changed for user id=%s", user_id)

        user = self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    # ------------------------------------------------------------------
    # Saved books
    # ------------------------------------------------------------------

    def save_book(self, user_id: str, book: Book) -> User:
        """Append a book to the user's list. Saving an already-saved book_id is a no-op.

        The position is computed inside the INSERT and (user_id, position) is
        UNIQUE, so two concurrent saves of different books cannot share a
        slot. The loser of a position race retries against the new maximum.
        """
        if not book.book_id:
            raise ValidationError("bookId must not be empty.", field="book_id")
        next_position = (
            select(func.coalesce(func.max(_saved_books.c.position), -1) + 1)
            .where(_saved_books.c.user_id == user_id)
            .scalar_subquery()
        )
        for _attempt in range(_SAVE_ATTEMPTS):
            try:
                with self.engine.begin() as conn:
                    self._require_user(conn, user_id)
                    if self._has_book(conn, user_id, book.book_id):
                        break
                    conn.execute(
                        _saved_books.insert().values(
                            user_id=user_id,
                            book_id=book.book_id,
                            position=next_position,
                            title=book.title,
                            authors=json.dumps(list(book.authors)),
                            description=book.description or "",
                            image=book.image,
                            link=book.link,
                        )
                    )
                break
            except IntegrityError:
                with self.engine.connect() as conn:
                    if self._has_book(conn, user_id, book.book_id):
                        # A concurrent save of the same book_id won the race.
                        logger.debug("Concurrent save of book %s for user id=%s", book.book_id, user_id)
                        break
                logger.debug("Position collision saving book %s for user id=%s, retrying", book.book_id, user_id)
        else:
            raise ConflictError("Could not save the book; please retry.")
        return self._fetch_user(user_id)

    def remove_book(self, user_id: str, book_id: str) -> User:
        """Remove one book from the user's list.

        Raises NotFoundError and changes nothing when book_id is not on the list.
        """
        with self.engine.begin() as conn:
            self._require_user(conn, user_id)
            result = conn.execute(
                _saved_books.delete().where((_saved_books.c.user_id == user_id) & (_saved_books.c.book_id == book_id))
            )
            if result.rowcount == 0:
                raise NotFoundError("Book is not in the saved list.")
        return self._fetch_user(user_id)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_user(self, conn: Connection, user_id: str) -> None:
        row = conn.execute(select(_users.c.id).where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError("User not found.")

    def _has_book(self, conn: Connection, user_id: str, book_id: str) -> bool:
        row = conn.execute(
            select(_saved_books.c.id).where(
                (_saved_books.c.user_id == user_id) & (_saved_books.c.book_id == book_id)
            )
        ).fetchone()
        return row is not None

    def _fetch_user(self, user_id: str) -> User:
        user = self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def _hydrate(self, conn: Connection, row) -> User | None:
        if row is None:
            return None
        book_rows = conn.execute(
            _saved_books.select().where(_saved_books.c.user_id == row.id).order_by(_saved_books.c.position)
        ).fetchall()
        return _row_to_user(row, [_row_to_book(r) for r in book_rows])


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, saved_books: list[Book]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        saved_books=saved_books,
        created_at=row.created_at,
    )


def _row_to_book(row) -> Book:
    return Book(
        book_id=row.book_id,
        title=row.title,
        authors=json.loads(row.authors),
        description=row.description or "",
        image=row.image,
        link=row.link,
    )
