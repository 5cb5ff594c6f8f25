"""
auth/dependencies.py -- Request identity classification and the mutation guard.

Two layers, kept apart on purpose:

  Gate  -- resolve_auth_context() turns the Authorization header into an
           AuthContext. It never raises: a missing, non-Bearer, malformed,
           tampered, or expired token all classify the request as ANONYMOUS.
           api/main.py runs it once per request in an HTTP middleware and
           stores the result on request.state.auth.

  Guard -- require_identity() rejects ANONYMOUS with AuthenticationError.
           get_current_identity() is the FastAPI Depends() form; dependencies
           resolve before the route body runs, so a rejected request never
           reaches the store.

Ownership: guarded routes act on identity.id only. No route accepts a user
id from the client for an ownership-sensitive operation.

Layer rule: may import fastapi (this module is part of the DI system).
No imports from api/ or client/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import ANONYMOUS, AuthContext, Identity
from auth.tokens import decode_access_token
from core.errors import AuthenticationError

_BEARER = "bearer"


def resolve_auth_context(authorization: str | None) -> AuthContext:
    """Classify a request from its Authorization header value."""
    if not authorization:
        return ANONYMOUS
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != _BEARER or not token:
        return ANONYMOUS
    identity = decode_access_token(token)
    if identity is None:
        return ANONYMOUS
    return AuthContext(identity=identity)


def get_auth_context(request: Request) -> AuthContext:
    """Return the context attached by the auth middleware.

    Falls back to resolving the header directly so routes still work when
    mounted on an app without the middleware (e.g. a bare test app).
    """
    ctx = getattr(request.state, "auth", None)
    if ctx is None:
        ctx = resolve_auth_context(request.headers.get("Authorization"))
        request.state.auth = ctx
    return ctx


def require_identity(ctx: AuthContext) -> Identity:
    """Return the authenticated identity or raise AuthenticationError."""
    if ctx.identity is None:
        raise AuthenticationError()
    return ctx.identity


def get_current_identity(ctx: AuthContext = Depends(get_auth_context)) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.delete("/me/books/{book_id}")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return require_identity(ctx)
