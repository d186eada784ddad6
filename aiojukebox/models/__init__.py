"""Models for the jukebox protocol."""

from __future__ import annotations

__all__ = [
    "ClientMessage",
    "DisconnectPolicy",
    "PlaybackStatus",
    "ServerMessage",
    "bookmarks",
    "core",
    "playback",
    "queue",
    "types",
]

from . import bookmarks, core, playback, queue, types
from .types import ClientMessage, DisconnectPolicy, PlaybackStatus, ServerMessage
