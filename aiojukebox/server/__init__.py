"""
Jukebox Server implementation that lets participants share one host device.

JukeboxServer is the core of the shared listening experience, responsible for:
- Managing connected participants and the host
- Fairly scheduling submissions by accumulated wait time
- Persisting play history and per-user bookmarks
"""

__all__ = [
    "DEFAULT_PATH",
    "DEFAULT_PORT",
    "Bookmark",
    "BookmarkStore",
    "Connection",
    "FairnessScheduler",
    "HistoryEntry",
    "HistoryStore",
    "HostChangedEvent",
    "JsonFileStore",
    "JukeboxEvent",
    "JukeboxServer",
    "KeyValueStore",
    "MemoryStore",
    "ParticipantQueues",
    "ParticipantRegisteredEvent",
    "ParticipantRemovedEvent",
    "PlaybackController",
    "PlaybackIdleEvent",
    "PlaybackStartedEvent",
    "PlaybackState",
    "QueueItem",
    "SessionRegistry",
    "StoreError",
    "extract_content_id",
]

from .connection import Connection
from .content import extract_content_id
from .items import HistoryEntry, QueueItem
from .persistence import Bookmark, BookmarkStore, HistoryStore
from .playback import PlaybackController, PlaybackState
from .queue import ParticipantQueues
from .scheduler import FairnessScheduler
from .server import (
    DEFAULT_PATH,
    DEFAULT_PORT,
    HostChangedEvent,
    JukeboxEvent,
    JukeboxServer,
    ParticipantRegisteredEvent,
    ParticipantRemovedEvent,
    PlaybackIdleEvent,
    PlaybackStartedEvent,
)
from .session import SessionRegistry
from .store import JsonFileStore, KeyValueStore, MemoryStore, StoreError
