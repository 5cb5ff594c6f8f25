"""
api/routes/v1/auth.py -- Account creation and login endpoints.

Routes:
  POST /api/v1/auth/users   -- addUser: register; returns {token, user}
  POST /api/v1/auth/login   -- login: email + password; returns {token, user}
  POST /api/v1/auth/logout  -- acknowledges logout; the client discards its token

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Cache-Control: no-store on every response that carries a token.
  Logout is stateless. Tokens are not revoked server-side and stay valid
  until they expire.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AuthResponse, LoginRequest, MessageResponse, UserCreate, UserResponse
from auth.models import Identity, User
from auth.passwords import authenticate_user
from auth.store import UserStore
from auth.tokens import create_access_token
from core.config import get_settings
from core.errors import AuthenticationError

logger = logging.getLogger("bookcatalog.api")

_settings = get_settings()

# Auth policy: every route in this module is public. These are the routes
# that produce an identity, so they cannot require one.
router = APIRouter()


def _token_response(user: User, status_code: int) -> JSONResponse:
    identity = Identity(id=user.id, username=user.username, email=user.email)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            token=create_access_token(identity),
            expires_in=_settings.token_expire_seconds,
            user=UserResponse.from_domain(user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/users", response_model=AuthResponse, status_code=201)
def add_user(request: Request, body: UserCreate) -> JSONResponse:
    """Register a new account and log it in.

    ConflictError (409) when the username or email is taken; the store's
    UNIQUE constraints decide, so concurrent duplicates cannot both succeed.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.create_user(body.username, body.email, body.password)
    return _token_response(user, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same generic error for an unknown email and a wrong password
    to avoid leaking which accounts exist.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise AuthenticationError("Invalid email or password.")
    return _token_response(user, status_code=200)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Acknowledge a logout. There is no server-side session to end."""
    return MessageResponse(message="Logged out. Discard the token client-side.")
