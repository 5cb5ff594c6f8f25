"""
auth/passwords.py -- Password hashing and credential checks.

Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
from Settings.bcrypt_rounds so operators can raise it as hardware improves
without a code change. bcrypt.checkpw reads the cost from the stored hash,
so raising the setting never breaks existing accounts.

Timing: authenticate_user() always runs one bcrypt comparison, against
_DUMMY_HASH when the email is unknown, so response time does not reveal
whether an account exists.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("bookcatalog.auth")

_settings = get_settings()

# bcrypt reads at most 72 bytes of input; newer releases refuse anything longer.
PASSWORD_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers validate the UTF-8 length against PASSWORD_MAX_BYTES first;
    UserStore does this for every password it hashes.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or truncated stored hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("bookcatalog_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair. Returns the User on success, None on any failure.

    Unknown email and wrong password cost the same bcrypt work and return the
    same None, so the caller cannot tell them apart either.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        logger.info("Failed login for user id=%s", user.id)
        return None
    return user
