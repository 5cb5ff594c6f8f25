"""
tests/conftest.py -- Shared test fixtures for the book catalog.

This module provides:
  - make_store(): isolated named shared-memory SQLite UserStore
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: (TestClient, UserStore) for API integration tests
  - register: helper that creates an account through the API and returns
    (user_json, auth headers)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core import:
  DEBUG=true            get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4       bcrypt's minimum cost keeps the suite fast
  ALLOWED_HOSTS         TestClient sends Host: testserver
  LOGIN_RATE_LIMIT      high enough that the suite never trips it
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.store import UserStore


def make_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string in the DB name so stores don't share state.
                   A random one is generated when omitted.
    """
    db_suffix = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore):
    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        yield

    return test_lifespan


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) backed by the real app and an isolated store.

    One client per module for speed. Tests in a module share the store, so
    each test registers its own uniquely named users.
    """
    user_store = make_store()
    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()


@pytest.fixture
def register(api_client) -> Callable[..., tuple[dict, dict]]:
    """Return a helper that registers a fresh account via POST /auth/users."""
    client, _store = api_client

    def _register(username: str | None = None, password: str = "secret") -> tuple[dict, dict]:
        username = username or f"user_{uuid.uuid4().hex[:8]}"
        resp = client.post(
            "/api/v1/auth/users",
            json={"username": username, "email": f"{username}@example.com", "password": password},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return data["user"], {"Authorization": f"Bearer {data['token']}"}

    return _register
