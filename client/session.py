"""
client/session.py -- Client-side token holder.

The client cannot verify signatures (it does not hold SECRET_KEY), so it only
reads the unverified claims to learn who it is logged in as and whether the
token has expired. The server re-verifies on every request.

Logout is local: discard the token. The server keeps no session to end.
"""

from __future__ import annotations

import time

from jose import JWTError, jwt

from auth.models import Identity
from client.storage import LocalStorage

TOKEN_KEY = "id_token"


class TokenStore:
    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage

    def get_token(self) -> str | None:
        return self._storage.get(TOKEN_KEY)

    def login(self, token: str) -> None:
        self._storage.set(TOKEN_KEY, token)

    def logout(self) -> None:
        self._storage.remove(TOKEN_KEY)

    def logged_in(self) -> bool:
        """True when a token is held and its exp claim is still in the future."""
        claims = self._claims()
        if claims is None:
            return False
        exp = claims.get("exp")
        return isinstance(exp, (int, float)) and exp > time.time()

    def profile(self) -> Identity | None:
        claims = self._claims()
        if claims is None or "sub" not in claims:
            return None
        return Identity(
            id=str(claims["sub"]),
            username=claims.get("username", ""),
            email=claims.get("email", ""),
        )

    def _claims(self) -> dict | None:
        token = self.get_token()
        if not token:
            return None
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None
