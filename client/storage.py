"""
client/storage.py -- Small persisted key/value store for client state.

LocalStorage plays the part browser localStorage plays for a web client: a
flat JSON document on disk holding the access token and the ids of books
the user has saved. It is a convenience cache, never a source of truth.

SavedBookIds is the view the search UI reads to grey out "already saved"
results.

Usage:
    storage = LocalStorage(Path("~/.bookcatalog/local_storage.json").expanduser())
    ids = SavedBookIds(storage)
    ids.add("B1")
    "B1" in ids.get()   # True
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("bookcatalog.client")

SAVED_BOOKS_KEY = "saved_books"


class LocalStorage:
    """JSON-file backed key/value store. path=None keeps everything in memory."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._data: dict[str, Any] = self._load()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _load(self) -> dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable local storage at %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a crash mid-write never leaves half a document.
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data), encoding="utf-8")
        tmp.replace(self.path)


class SavedBookIds:
    """Ordered list of saved book ids, persisted under one LocalStorage key."""

    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage

    def get(self) -> list[str]:
        return list(self._storage.get(SAVED_BOOKS_KEY, []))

    def save(self, book_ids: list[str]) -> None:
        if book_ids:
            self._storage.set(SAVED_BOOKS_KEY, list(book_ids))
        else:
            self._storage.remove(SAVED_BOOKS_KEY)

    def add(self, book_id: str) -> None:
        ids = self.get()
        if book_id not in ids:
            ids.append(book_id)
            self.save(ids)

    def remove(self, book_id: str) -> bool:
        """Drop book_id. Returns True if it was present."""
        ids = self.get()
        if book_id not in ids:
            return False
        self.save([i for i in ids if i != book_id])
        return True
