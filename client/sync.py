"""
client/sync.py -- Keeps the client's view of saved books in step with the server.

Two client-side stores describe the same thing:
  - the QueryCache entry for "me" (drives the saved-books page)
  - SavedBookIds in local storage (drives "already saved" on search results)

Removal is optimistic. remove_book() changes both stores in one synchronous
step (_apply_removal, no await inside), then awaits the server. Because the
step reads the cache through QueryCache.update(), a second removal issued
while the first is still in flight filters the list the first one already
filtered, never an older snapshot.

On failure the error is logged and False is returned; nothing is raised to
the caller. With rollback_on_failure the removed book goes back into the
*current* cached list next to the books that surrounded it, and its id
returns to local storage. A 404 from the server means the book is already
gone there, so the optimistic state is kept either way.

Saving is not optimistic: the server's copy of the user is written to the
cache only after the call succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from client.api import ApiError, BookCatalogClient
from client.cache import QueryCache, me_key
from client.config import ClientSettings, get_client_settings
from client.session import TokenStore
from client.storage import LocalStorage, SavedBookIds

logger = logging.getLogger("bookcatalog.client")


@dataclass
class _Removal:
    """What an optimistic removal took out, so it can be put back."""

    book_id: str
    book: dict[str, Any] | None
    index: int | None
    had_id: bool
    # Ids that followed / preceded the book, nearest first.
    after: list[str] = field(default_factory=list)
    before: list[str] = field(default_factory=list)


class SavedBooksSynchronizer:
    def __init__(
        self,
        client: BookCatalogClient,
        cache: QueryCache,
        saved_ids: SavedBookIds,
        rollback_on_failure: bool = True,
    ) -> None:
        self.client = client
        self.cache = cache
        self.saved_ids = saved_ids
        self.rollback_on_failure = rollback_on_failure

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings | None = None,
        cache: QueryCache | None = None,
    ) -> "SavedBooksSynchronizer":
        settings = settings or get_client_settings()
        storage = LocalStorage(settings.storage_path)
        client = BookCatalogClient(settings.base_url, TokenStore(storage), timeout=settings.timeout)
        return cls(
            client,
            cache if cache is not None else QueryCache(),
            SavedBookIds(storage),
            rollback_on_failure=settings.rollback_on_failure,
        )

    @property
    def tokens(self) -> TokenStore:
        return self.client.tokens

    async def load_me(self) -> dict[str, Any]:
        """Fetch the current user and cache it. Errors propagate; there is nothing to keep consistent yet."""
        user = await self.client.me()
        self.cache.write(me_key(user["id"]), user)
        return user

    async def save_book(self, book: dict[str, Any]) -> bool:
        if not self.tokens.logged_in():
            return False
        try:
            user = await self.client.save_book(book)
        except (ApiError, httpx.HTTPError) as e:
            logger.error("Error saving book %s: %s", book.get("book_id"), e)
            return False
        self.cache.write(me_key(user["id"]), user)
        self.saved_ids.add(book["book_id"])
        return True

    async def remove_book(self, book_id: str) -> bool:
        """Optimistically remove book_id, then confirm with the server.

        Returns True when the server confirmed the removal. Returns False,
        touching nothing, when no live token is held.
        """
        profile = self.tokens.profile()
        if profile is None or not self.tokens.logged_in():
            return False
        key = me_key(profile.id)

        removal = self._apply_removal(key, book_id)
        try:
            await self.client.remove_book(book_id)
        except ApiError as e:
            logger.error("Error deleting book %s: %s", book_id, e)
            if e.status_code != 404 and self.rollback_on_failure:
                self._revert_removal(key, removal)
            return False
        except httpx.HTTPError as e:
            logger.error("Error deleting book %s: %s", book_id, e)
            if self.rollback_on_failure:
                self._revert_removal(key, removal)
            return False
        return True

    def logout(self) -> None:
        self.client.logout()
        self.cache.clear()

    # ------------------------------------------------------------------
    # Optimistic step and its inverse. Both effects happen together with
    # no await in between.
    # ------------------------------------------------------------------

    def _apply_removal(self, key: tuple[str, str], book_id: str) -> _Removal:
        removal = _Removal(book_id=book_id, book=None, index=None, had_id=False)

        def drop(me: dict[str, Any]) -> dict[str, Any]:
            books = me.get("saved_books", [])
            remaining = []
            for i, book in enumerate(books):
                if book.get("book_id") != book_id:
                    remaining.append(book)
                elif removal.book is None:
                    removal.book, removal.index = book, i
                    removal.before = [b.get("book_id") for b in reversed(books[:i])]
                    removal.after = [b.get("book_id") for b in books[i + 1 :]]
            return {**me, "saved_books": remaining, "book_count": len(remaining)}

        self.cache.update(key, drop)
        removal.had_id = self.saved_ids.remove(book_id)
        return removal

    def _revert_removal(self, key: tuple[str, str], removal: _Removal) -> None:
        if removal.book is not None:

            def restore(me: dict[str, Any]) -> dict[str, Any]:
                books = list(me.get("saved_books", []))
                if any(b.get("book_id") == removal.book_id for b in books):
                    return me
                books.insert(_restore_index(books, removal), removal.book)
                return {**me, "saved_books": books, "book_count": len(books)}

            self.cache.update(key, restore)
        if removal.had_id:
            self.saved_ids.add(removal.book_id)
        logger.info("Rolled back optimistic removal of book %s", removal.book_id)


def _restore_index(books: list[dict[str, Any]], removal: _Removal) -> int:
    """Where a rolled-back book goes in the current list.

    Before the nearest former follower still present, else after the nearest
    former predecessor still present. Other removals may have shifted the
    list since, so the old numeric index is only the last resort.
    """
    ids = [b.get("book_id") for b in books]
    for follower in removal.after:
        if follower in ids:
            return ids.index(follower)
    for predecessor in removal.before:
        if predecessor in ids:
            return ids.index(predecessor) + 1
    return min(removal.index or 0, len(books))
