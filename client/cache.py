"""
client/cache.py -- In-memory query cache shared by client operations.

QueryCache is an ordinary object handed to whatever needs it; there is no
module-level instance. Entries are keyed by (query name, owner id) so two
accounts used from the same process never see each other's data.

Read-modify-write contract:
  update(key, fn) reads the entry as it is *now*, applies fn, and writes the
  result back in one synchronous step. Callers must use update() rather than
  read() ... await ... write(): a read captured before an await is stale by
  the time it is written and would clobber other operations' writes.

The client runs on a single asyncio event loop. update() contains no await,
so no other coroutine can interleave with it and no lock is needed.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Hashable
from typing import Any

ME_QUERY = "me"


def me_key(user_id: str) -> tuple[str, str]:
    return (ME_QUERY, user_id)


class QueryCache:
    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}

    def read(self, key: Hashable) -> Any | None:
        """Return a deep copy of the entry, or None. Mutating it does not touch the cache."""
        value = self._entries.get(key)
        return copy.deepcopy(value) if value is not None else None

    def write(self, key: Hashable, value: Any) -> None:
        self._entries[key] = copy.deepcopy(value)

    def update(self, key: Hashable, fn: Callable[[Any], Any]) -> Any | None:
        """Apply fn to the latest entry and store the result.

        Returns the new value, or None without calling fn when nothing is
        cached under key.
        """
        current = self.read(key)
        if current is None:
            return None
        updated = fn(current)
        self.write(key, updated)
        return copy.deepcopy(updated)

    def evict(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
