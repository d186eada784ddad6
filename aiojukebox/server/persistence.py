"""Play history and per-participant bookmarks on top of a key-value store."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any

from mashumaro import DataClassDictMixin

from aiojukebox.models.bookmarks import BookmarkPayload

from .items import HistoryEntry
from .store import KeyValueStore, StoreError

HISTORY_KEY = "history"
BOOKMARKS_KEY_PREFIX = "bookmarks:"

logger = logging.getLogger(__name__)


@dataclass
class Bookmark(DataClassDictMixin):
    """A content id saved by a participant."""

    content_id: str
    name: str

    def to_payload(self) -> BookmarkPayload:
        """Convert to the wire representation."""
        return BookmarkPayload(content_id=self.content_id, name=self.name)


def _decode_list(key: str, raw: Any | None) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise StoreError(f"Expected a list at {key!r}, got {type(raw).__name__}")
    return raw


class HistoryStore:
    """Previously played content, deduplicated by content id."""

    def __init__(self, store: KeyValueStore, *, key: str = HISTORY_KEY) -> None:
        """Use ``store`` to persist the history under ``key``."""
        self._store = store
        self._key = key

    async def entries(self) -> list[HistoryEntry]:
        """Return all entries in order of their first play."""
        return self._parse(await self._store.get(self._key))

    async def record(self, entry: HistoryEntry) -> bool:
        """
        Append ``entry`` unless its content id was recorded before.

        The first display name seen for a content id is kept.

        Returns:
            True if the entry was added.
        """
        async with self._store.lock(self._key):
            entries = self._parse(await self._store.get(self._key))
            if any(existing.content_id == entry.content_id for existing in entries):
                return False
            entries.append(entry)
            await self._store.put(self._key, [e.to_dict() for e in entries])
        logger.debug("Recorded %s in play history", entry.content_id)
        return True

    async def choose(self, rng: random.Random) -> HistoryEntry | None:
        """Return a uniformly random entry, None if the history is empty."""
        entries = await self.entries()
        if not entries:
            return None
        return rng.choice(entries)

    def _parse(self, raw: Any | None) -> list[HistoryEntry]:
        try:
            return [HistoryEntry.from_dict(item) for item in _decode_list(self._key, raw)]
        except (LookupError, TypeError, ValueError) as err:
            raise StoreError(f"Invalid history entry: {err}") from err


class BookmarkStore:
    """Saved content ids, one list per participant name."""

    def __init__(self, store: KeyValueStore) -> None:
        """Use ``store`` to persist bookmark lists."""
        self._store = store

    @staticmethod
    def key_for(username: str) -> str:
        """Return the store key holding the bookmarks of ``username``."""
        return f"{BOOKMARKS_KEY_PREFIX}{username}"

    async def get(self, username: str) -> list[Bookmark]:
        """Return the bookmarks of ``username`` in the order they were saved."""
        key = self.key_for(username)
        return self._parse(key, await self._store.get(key))

    async def save(self, username: str, content_id: str, name: str) -> list[Bookmark]:
        """Add a bookmark unless ``content_id`` is already saved."""
        key = self.key_for(username)
        async with self._store.lock(key):
            bookmarks = self._parse(key, await self._store.get(key))
            if any(bookmark.content_id == content_id for bookmark in bookmarks):
                return bookmarks
            bookmarks.append(Bookmark(content_id=content_id, name=name))
            await self._put(key, bookmarks)
        return bookmarks

    async def delete(self, username: str, content_id: str) -> list[Bookmark]:
        """Remove the bookmark of ``content_id``, if present."""
        key = self.key_for(username)
        async with self._store.lock(key):
            bookmarks = self._parse(key, await self._store.get(key))
            remaining = [b for b in bookmarks if b.content_id != content_id]
            if len(remaining) != len(bookmarks):
                await self._put(key, remaining)
        return remaining

    async def rename(self, username: str, content_id: str, name: str) -> list[Bookmark]:
        """Change the name of the bookmark of ``content_id``, if present."""
        key = self.key_for(username)
        async with self._store.lock(key):
            bookmarks = self._parse(key, await self._store.get(key))
            for bookmark in bookmarks:
                if bookmark.content_id == content_id:
                    bookmark.name = name
                    await self._put(key, bookmarks)
                    break
        return bookmarks

    async def _put(self, key: str, bookmarks: list[Bookmark]) -> None:
        await self._store.put(key, [bookmark.to_dict() for bookmark in bookmarks])

    @staticmethod
    def _parse(key: str, raw: Any | None) -> list[Bookmark]:
        try:
            return [Bookmark.from_dict(item) for item in _decode_list(key, raw)]
        except (LookupError, TypeError, ValueError) as err:
            raise StoreError(f"Invalid bookmark in {key!r}: {err}") from err
