"""Tests for the client package -- local storage, query cache, token session,
and the optimistic saved-books synchronizer.

The server is simulated with httpx.MockTransport. Coroutine tests run under
pytest-asyncio.

Covers:
- remove_book(): optimistic cache + local id removal, then server confirmation
- two removals in flight: the second filters the first's result, not a stale copy
- failure paths never raise; rollback restores into the latest snapshot in save order; parity mode keeps the removal
- 404 keeps the removal; logged-out callers change nothing
- save_book(): cache and id list updated only after the server accepts
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from auth.models import Identity
from auth.tokens import create_access_token
from client.api import ApiError, BookCatalogClient
from client.cache import QueryCache, me_key
from client.session import TokenStore
from client.storage import LocalStorage, SavedBookIds
from client.sync import SavedBooksSynchronizer

ADA = Identity(id="u-ada", username="ada", email="a@x.com")


def _book(book_id: str) -> dict:
    return {"book_id": book_id, "title": f"Title {book_id}", "authors": [], "description": ""}


def _me(*book_ids: str) -> dict:
    books = [_book(b) for b in book_ids]
    return {"id": ADA.id, "username": ADA.username, "email": ADA.email, "saved_books": books, "book_count": len(books)}


def _cached_ids(sync: SavedBooksSynchronizer) -> list[str]:
    me = sync.cache.read(me_key(ADA.id))
    return [b["book_id"] for b in me["saved_books"]]


def _make_sync(handler, rollback: bool = True, logged_in: bool = True) -> SavedBooksSynchronizer:
    storage = LocalStorage(None)
    tokens = TokenStore(storage)
    if logged_in:
        tokens.login(create_access_token(ADA))
    client = BookCatalogClient("http://testserver", tokens, transport=httpx.MockTransport(handler))
    sync = SavedBooksSynchronizer(client, QueryCache(), SavedBookIds(storage), rollback_on_failure=rollback)
    sync.cache.write(me_key(ADA.id), _me("B1", "B2", "B3"))
    sync.saved_ids.save(["B1", "B2", "B3"])
    return sync


def _removed_ok(request: httpx.Request) -> httpx.Response:
    assert request.method == "DELETE"
    assert request.headers["Authorization"].startswith("Bearer ")
    return httpx.Response(200, json=_me())


def _server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, json={"error": {"code": "internal_error", "message": "boom"}})


async def _until(condition) -> None:
    while not condition():
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class TestLocalStorage:
    def test_persists_to_disk(self, tmp_path):
        path = tmp_path / "nested" / "storage.json"
        SavedBookIds(LocalStorage(path)).add("B1")
        assert json.loads(path.read_text())["saved_books"] == ["B1"]
        assert SavedBookIds(LocalStorage(path)).get() == ["B1"]

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json")
        assert LocalStorage(path).get("saved_books") is None

    def test_saved_ids_add_remove(self):
        ids = SavedBookIds(LocalStorage(None))
        ids.add("B1")
        ids.add("B1")
        ids.add("B2")
        assert ids.get() == ["B1", "B2"]
        assert ids.remove("B1") is True
        assert ids.remove("B1") is False
        assert ids.get() == ["B2"]


class TestQueryCache:
    def test_read_returns_copy(self):
        cache = QueryCache()
        cache.write("k", {"items": [1]})
        cache.read("k")["items"].append(2)
        assert cache.read("k") == {"items": [1]}

    def test_update_reads_latest(self):
        cache = QueryCache()
        cache.write("k", [1, 2, 3])
        cache.update("k", lambda xs: [x for x in xs if x != 1])
        cache.update("k", lambda xs: [x for x in xs if x != 2])
        assert cache.read("k") == [3]

    def test_update_missing_key_is_noop(self):
        cache = QueryCache()
        calls = []
        assert cache.update("missing", calls.append) is None
        assert calls == []


class TestTokenStore:
    def test_logged_in_and_profile(self):
        tokens = TokenStore(LocalStorage(None))
        assert not tokens.logged_in()
        tokens.login(create_access_token(ADA))
        assert tokens.logged_in()
        assert tokens.profile() == ADA
        tokens.logout()
        assert tokens.get_token() is None

    def test_expired_token_is_logged_out(self):
        tokens = TokenStore(LocalStorage(None))
        tokens.login(create_access_token(ADA, ttl=timedelta(seconds=-5)))
        assert not tokens.logged_in()

    def test_garbage_token_is_logged_out(self):
        tokens = TokenStore(LocalStorage(None))
        tokens.login("garbage")
        assert not tokens.logged_in()
        assert tokens.profile() is None


# ---------------------------------------------------------------------------
# Optimistic removal
# ---------------------------------------------------------------------------


class TestRemoveBook:
    @pytest.mark.asyncio
    async def test_success_updates_cache_and_ids(self):
        sync = _make_sync(_removed_ok)
        assert await sync.remove_book("B1") is True
        assert _cached_ids(sync) == ["B2", "B3"]
        assert sync.cache.read(me_key(ADA.id))["book_count"] == 2
        assert sync.saved_ids.get() == ["B2", "B3"]

    @pytest.mark.asyncio
    async def test_cache_updated_before_server_answers(self):
        release = asyncio.Event()
        seen_by_server = []

        async def handler(request):
            seen_by_server.append(_cached_ids(sync))
            await release.wait()
            return httpx.Response(200, json=_me("B2", "B3"))

        sync = _make_sync(handler)
        task = asyncio.create_task(sync.remove_book("B1"))
        await _until(lambda: seen_by_server)
        release.set()

        assert await task is True
        assert seen_by_server == [["B2", "B3"]]

    @pytest.mark.asyncio
    async def test_second_removal_applies_to_first_ones_result(self):
        release = asyncio.Event()
        arrived = []

        async def handler(request):
            arrived.append(request.url.path)
            await release.wait()
            return httpx.Response(200, json=_me("B3"))

        sync = _make_sync(handler)
        first = asyncio.create_task(sync.remove_book("B1"))
        second = asyncio.create_task(sync.remove_book("B2"))
        await _until(lambda: len(arrived) == 2)
        assert _cached_ids(sync) == ["B3"]
        assert sync.saved_ids.get() == ["B3"]
        release.set()

        assert await asyncio.gather(first, second) == [True, True]
        assert _cached_ids(sync) == ["B3"]

    @pytest.mark.asyncio
    async def test_server_error_rolls_back(self):
        sync = _make_sync(_server_error, rollback=True)
        assert await sync.remove_book("B2") is False
        assert _cached_ids(sync) == ["B1", "B2", "B3"]
        assert sync.cache.read(me_key(ADA.id))["book_count"] == 3
        assert "B2" in sync.saved_ids.get()

    @pytest.mark.asyncio
    async def test_server_error_without_rollback_keeps_optimistic_state(self):
        sync = _make_sync(_server_error, rollback=False)
        assert await sync.remove_book("B2") is False
        assert _cached_ids(sync) == ["B1", "B3"]
        assert sync.saved_ids.get() == ["B1", "B3"]

    @pytest.mark.asyncio
    async def test_network_error_is_caught_and_rolled_back(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sync = _make_sync(handler)
        assert await sync.remove_book("B1") is False
        assert _cached_ids(sync) == ["B1", "B2", "B3"]

    @pytest.mark.asyncio
    async def test_rollback_restores_into_latest_snapshot(self):
        """A failed removal of B1 must not undo a concurrent successful removal of B2."""
        release = asyncio.Event()
        arrived = []

        async def handler(request):
            arrived.append(request.url.path)
            await release.wait()
            if request.url.path.endswith("/B1"):
                return httpx.Response(503, json={"error": {"code": "unavailable", "message": "try later"}})
            return httpx.Response(200, json=_me("B1", "B3"))

        sync = _make_sync(handler, rollback=True)
        failing = asyncio.create_task(sync.remove_book("B1"))
        succeeding = asyncio.create_task(sync.remove_book("B2"))
        await _until(lambda: len(arrived) == 2)
        release.set()

        assert await asyncio.gather(failing, succeeding) == [False, True]
        assert _cached_ids(sync) == ["B1", "B3"]
        assert sorted(sync.saved_ids.get()) == ["B1", "B3"]

    @pytest.mark.asyncio
    async def test_rollback_keeps_save_order_after_earlier_book_removed(self):
        """B2 fails while B1 succeeds: B2 goes back before B3, not at its stale index."""
        release = asyncio.Event()
        arrived = []

        async def handler(request):
            arrived.append(request.url.path)
            await release.wait()
            if request.url.path.endswith("/B2"):
                return httpx.Response(503, json={"error": {"code": "unavailable", "message": "try later"}})
            return httpx.Response(200, json=_me("B2", "B3"))

        sync = _make_sync(handler, rollback=True)
        failing = asyncio.create_task(sync.remove_book("B2"))
        succeeding = asyncio.create_task(sync.remove_book("B1"))
        await _until(lambda: len(arrived) == 2)
        release.set()

        assert await asyncio.gather(failing, succeeding) == [False, True]

        assert _cached_ids(sync) == ["B2", "B3"]

    @pytest.mark.asyncio
    async def test_rollback_falls_back_to_predecessor(self):
        """B3 fails after nothing follows it: it goes back after B2."""
        sync = _make_sync(_server_error, rollback=True)
        assert await sync.remove_book("B3") is False
        assert _cached_ids(sync) == ["B1", "B2", "B3"]

    @pytest.mark.asyncio
    async def test_not_found_keeps_removal(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"code": "not_found", "message": "Book is not in the saved list."}})

        sync = _make_sync(handler, rollback=True)
        assert await sync.remove_book("B1") is False
        assert _cached_ids(sync) == ["B2", "B3"]
        assert "B1" not in sync.saved_ids.get()

    @pytest.mark.asyncio
    async def test_logged_out_does_nothing(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_me())

        sync = _make_sync(handler, logged_in=False)
        assert await sync.remove_book("B1") is False
        assert calls == []
        assert _cached_ids(sync) == ["B1", "B2", "B3"]
        assert sync.saved_ids.get() == ["B1", "B2", "B3"]


# ---------------------------------------------------------------------------
# Save and load
# ---------------------------------------------------------------------------


class TestSaveAndLoad:
    @pytest.mark.asyncio
    async def test_save_book_writes_server_copy(self):
        def handler(request):
            assert json.loads(request.content)["book_id"] == "B4"
            return httpx.Response(200, json=_me("B1", "B2", "B3", "B4"))

        sync = _make_sync(handler)
        assert await sync.save_book(_book("B4")) is True
        assert _cached_ids(sync) == ["B1", "B2", "B3", "B4"]
        assert sync.saved_ids.get()[-1] == "B4"

    @pytest.mark.asyncio
    async def test_failed_save_changes_nothing(self):
        sync = _make_sync(_server_error)
        assert await sync.save_book(_book("B4")) is False
        assert _cached_ids(sync) == ["B1", "B2", "B3"]
        assert "B4" not in sync.saved_ids.get()

    @pytest.mark.asyncio
    async def test_load_me_fills_cache(self):
        sync = _make_sync(lambda request: httpx.Response(200, json=_me("B9")))
        sync.cache.clear()
        user = await sync.load_me()
        assert user["id"] == ADA.id
        assert _cached_ids(sync) == ["B9"]

    @pytest.mark.asyncio
    async def test_load_me_error_propagates(self):
        sync = _make_sync(
            lambda request: httpx.Response(401, json={"error": {"code": "not_authenticated", "message": "Not authenticated."}})
        )
        with pytest.raises(ApiError) as exc_info:
            await sync.load_me()
        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "not_authenticated"

    def test_logout_clears_token_and_cache(self):
        sync = _make_sync(_removed_ok)
        sync.logout()
        assert not sync.tokens.logged_in()
        assert sync.cache.read(me_key(ADA.id)) is None


@pytest.mark.asyncio
async def test_from_settings_wires_shared_storage(tmp_path):
    from client.config import ClientSettings

    settings = ClientSettings(storage_path=tmp_path / "ls.json", rollback_on_failure=False)
    sync = SavedBooksSynchronizer.from_settings(settings)
    sync.tokens.login(create_access_token(ADA))
    sync.saved_ids.add("B1")
    assert sync.rollback_on_failure is False
    assert set(json.loads((tmp_path / "ls.json").read_text())) == {"id_token", "saved_books"}
    await sync.client.aclose()
