"""
api/routes/v1/me.py -- The authenticated user's own record and saved books.

Routes:
  GET    /api/v1/me                  -- me: current user with saved books
  PATCH  /api/v1/me                  -- update username / email / password
  POST   /api/v1/me/books            -- saveBook: append a search result
  DELETE /api/v1/me/books/{book_id}  -- removeBook: drop one saved book

Every route depends on get_current_identity, which raises
AuthenticationError (401) for anonymous requests before the handler body
runs. Handlers target identity.id only; no user id is read from the request.

Handlers are plain functions: bcrypt and the SQLAlchemy calls block, so
FastAPI runs them in its threadpool instead of on the event loop.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import BookInput, UserPatch, UserResponse
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.store import UserStore
from core.errors import NotFoundError

logger = logging.getLogger("bookcatalog.api")

router = APIRouter()


@router.get("/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    """Return the current user.

    A valid token for a user that no longer exists gets 404, not 401: the
    token itself checked out.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(identity.id)
    if user is None:
        raise NotFoundError("User not found.")
    return UserResponse.from_domain(user)


@router.patch("/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: UserPatch,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Update profile fields. The password is re-hashed only when supplied.

    Tokens issued before a username or email change keep their old claims
    until they expire; clients should log in again to pick up the new ones.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.update_user(
        identity.id,
        username=body.username,
        email=body.email,
        password=body.password,
    )
    return UserResponse.from_domain(user)


@router.post("/me/books", response_model=UserResponse)
def save_book(
    request: Request,
    body: BookInput,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Save a book to the current user's list. Re-saving the same book_id is a no-op."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.save_book(identity.id, body.to_domain())
    return UserResponse.from_domain(user)


@router.delete("/me/books/{book_id}", response_model=UserResponse)
def remove_book(
    request: Request,
    book_id: str,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Remove a book from the current user's list.

    NotFoundError (404) when book_id is not on the list; the list is unchanged.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.remove_book(identity.id, book_id)
    logger.info("User id=%s removed book %s", identity.id, book_id)
    return UserResponse.from_domain(user)
