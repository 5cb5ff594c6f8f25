"""
auth/tokens.py -- JWT access token issue and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), username, email, and expiry. Verification returns
       None on any failure -- malformed input, bad signature, expiry, or
       missing claims all look the same to the caller.

  No revocation: a token stays valid until exp. Logout is the client
       discarding its copy. Adding server-side invalidation would need a
       revocation store and changes the verify contract.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses short
       or missing keys outside DEBUG mode.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.models import Identity
from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("sub", "username", "email", "exp")


def create_access_token(identity: Identity, ttl: timedelta | None = None) -> str:
    """Encode a signed JWT for the given identity.

    Args:
        identity: Claims to embed. id becomes the standard "sub" claim.
        ttl:      Token lifetime. Defaults to Settings.token_expire_seconds.
                  Tests pass a negative ttl to mint an already-expired token.
    """
    if ttl is None:
        ttl = timedelta(seconds=_settings.token_expire_seconds)
    expire = datetime.now(timezone.utc) + ttl
    payload = {
        "sub": identity.id,
        "username": identity.username,
        "email": identity.email,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Identity | None:
    """Verify a JWT and return its Identity, or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not _has_canonical_signature(token):
        return None
    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        return None
    return Identity(
        id=str(payload["sub"]),
        username=payload["username"],
        email=payload["email"],
    )


def _has_canonical_signature(token: str) -> bool:
    """True when the signature segment is the exact base64url encoding of its bytes.

    The last character of a 43-character HS256 signature carries two unused
    bits that the decoder drops, so several spellings verify as the same
    signature. Only the canonical one is accepted.
    """
    signature = token.rsplit(".", 1)[-1]
    try:
        raw = base64url_decode(signature.encode("ascii"))
    except ValueError:
        return False
    return base64url_encode(raw).decode("ascii") == signature
