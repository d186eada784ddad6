"""Tests for the stores, play history and bookmarks."""

import asyncio
from pathlib import Path

import pytest

from aiojukebox.server import (
    BookmarkStore,
    HistoryEntry,
    HistoryStore,
    JsonFileStore,
    MemoryStore,
    StoreError,
)


async def test_memory_store_hands_out_copies() -> None:
    store = MemoryStore()
    await store.put("key", [{"a": 1}])

    value = await store.get("key")
    value.append({"b": 2})

    assert await store.get("key") == [{"a": 1}]
    assert await store.get("missing") is None


async def test_memory_store_rejects_unserializable_values() -> None:
    with pytest.raises(StoreError):
        await MemoryStore().put("key", object())


async def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    await JsonFileStore(tmp_path).put("bookmarks:Alice Smith", [{"content_id": "v1"}])

    reopened = JsonFileStore(tmp_path)

    assert await reopened.get("bookmarks:Alice Smith") == [{"content_id": "v1"}]
    assert reopened.path_for("bookmarks:Alice Smith").parent == tmp_path
    assert [p.name for p in tmp_path.iterdir()] == ["bookmarks%3AAlice%20Smith.json"]


async def test_json_file_store_reports_corrupt_files(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    store.path_for("history").write_text("{not json")

    with pytest.raises(StoreError):
        await store.get("history")


async def test_history_deduplicates_by_content_id() -> None:
    history = HistoryStore(MemoryStore())

    assert await history.record(HistoryEntry("v1", "First name"))
    assert await history.record(HistoryEntry("v2"))
    assert not await history.record(HistoryEntry("v1", "Second name"))

    assert await history.entries() == [HistoryEntry("v1", "First name"), HistoryEntry("v2")]


async def test_history_rejects_unexpected_layout() -> None:
    store = MemoryStore()
    await store.put("history", {"v1": "oops"})

    with pytest.raises(StoreError):
        await HistoryStore(store).entries()


async def test_bookmarks_are_kept_per_user() -> None:
    bookmarks = BookmarkStore(MemoryStore())

    await bookmarks.save("Alice", "v1", "Song one")
    saved = await bookmarks.save("Alice", "v2", "Song two")
    await bookmarks.save("Bob", "v3", "Other song")

    assert [(b.content_id, b.name) for b in saved] == [("v1", "Song one"), ("v2", "Song two")]
    assert [b.content_id for b in await bookmarks.get("Bob")] == ["v3"]
    assert await bookmarks.get("Carol") == []


async def test_saving_a_bookmark_twice_keeps_the_first() -> None:
    bookmarks = BookmarkStore(MemoryStore())
    await bookmarks.save("Alice", "v1", "Original")

    result = await bookmarks.save("Alice", "v1", "Duplicate")

    assert [b.name for b in result] == ["Original"]


async def test_rename_and_delete_bookmarks() -> None:
    bookmarks = BookmarkStore(MemoryStore())
    await bookmarks.save("Alice", "v1", "Song one")
    await bookmarks.save("Alice", "v2", "Song two")

    renamed = await bookmarks.rename("Alice", "v2", "Favourite")
    assert [b.name for b in renamed] == ["Song one", "Favourite"]

    remaining = await bookmarks.delete("Alice", "v1")
    assert [b.content_id for b in remaining] == ["v2"]
    assert [b.name for b in await bookmarks.get("Alice")] == ["Favourite"]

    unchanged = await bookmarks.rename("Alice", "missing", "Nope")
    assert [b.content_id for b in unchanged] == ["v2"]


async def test_concurrent_writers_do_not_lose_updates(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    history = HistoryStore(store)
    bookmarks = BookmarkStore(store)

    await asyncio.gather(
        *(history.record(HistoryEntry(f"c{i}")) for i in range(30)),
        *(bookmarks.save("Alice", f"c{i}", f"Song {i}") for i in range(30)),
    )

    reopened = JsonFileStore(tmp_path)
    assert sorted(e.content_id for e in await HistoryStore(reopened).entries()) == sorted(
        f"c{i}" for i in range(30)
    )
    assert len(await BookmarkStore(reopened).get("Alice")) == 30
    assert store.locked_keys == []


async def test_key_locks_are_released_after_failures() -> None:
    store = MemoryStore()

    with pytest.raises(StoreError):
        async with store.lock("history"):
            await store.put("history", object())

    async with store.lock("bookmarks:Alice"):
        assert store.locked_keys == ["bookmarks:Alice"]
    assert store.locked_keys == []
