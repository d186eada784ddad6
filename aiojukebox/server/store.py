"""Key-value stores backing play history and bookmarks.

Values are plain JSON-compatible structures. Each store hands out one
``asyncio.Lock`` per key; callers performing a read-modify-write sequence hold
the key's lock for the whole sequence, so writers to the same key never
interleave while writers to different keys proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from urllib.parse import quote

import orjson

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Reading from or writing to a store failed."""


class KeyValueStore(ABC):
    """Base class for stores with per-key atomic read-modify-write."""

    _locks: dict[str, asyncio.Lock]
    _lock_users: dict[str, int]

    def __init__(self) -> None:
        """Initialize the per-key locks."""
        self._locks = {}
        self._lock_users = {}

    @property
    def locked_keys(self) -> list[str]:
        """Keys whose lock is currently held or awaited."""
        return list(self._locks)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Hold the lock of ``key`` for a read-modify-write sequence."""
        key_lock = self._locks.get(key)
        if key_lock is None:
            key_lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with key_lock:
                yield
        finally:
            # The lock is dropped once nobody holds or awaits it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored at ``key``, None if absent."""

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Replace the value stored at ``key``."""


class MemoryStore(KeyValueStore):
    """Store keeping values in memory, lost on restart."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        super().__init__()
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Any | None:
        """Return a copy of the value stored at ``key``."""
        raw = self._data.get(key)
        if raw is None:
            return None
        return orjson.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        """Store a copy of ``value`` at ``key``."""
        try:
            self._data[key] = orjson.dumps(value)
        except TypeError as err:
            raise StoreError(f"Value for {key!r} is not serializable: {err}") from err


class JsonFileStore(KeyValueStore):
    """Store writing one JSON file per key into a directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        """Initialize the store, creating ``directory`` if needed."""
        super().__init__()
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        logger.debug("JsonFileStore initialized in %s", self._directory)

    @property
    def directory(self) -> Path:
        """Directory holding the JSON files."""
        return self._directory

    def path_for(self, key: str) -> Path:
        """Return the file backing ``key``."""
        return self._directory / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Any | None:
        """Read and decode the file backing ``key``."""
        return await asyncio.to_thread(self._read, self.path_for(key))

    async def put(self, key: str, value: Any) -> None:
        """Encode ``value`` and atomically replace the file backing ``key``."""
        try:
            data = orjson.dumps(value, option=orjson.OPT_INDENT_2)
        except TypeError as err:
            raise StoreError(f"Value for {key!r} is not serializable: {err}") from err
        await asyncio.to_thread(self._write, self.path_for(key), data)

    @staticmethod
    def _read(path: Path) -> Any | None:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StoreError(f"Failed to read {path}: {err}") from err
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise StoreError(f"Invalid JSON in {path}: {err}") from err

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as tmp_file:
                    tmp_file.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise StoreError(f"Failed to write {path}: {err}") from err
