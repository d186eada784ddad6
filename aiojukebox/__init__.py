"""Jukebox: a shared player fairly scheduling submissions of many participants."""

from __future__ import annotations

# Re-export the main entry points for easy import
from aiojukebox.client import JukeboxClient
from aiojukebox.server import JukeboxServer

__all__ = [
    "JukeboxClient",
    "JukeboxServer",
]
