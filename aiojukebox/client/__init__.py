"""Public interface for the jukebox client package."""

from .client import (
    BookmarksCallback,
    DeniedCallback,
    ErrorCallback,
    JukeboxClient,
    PlayCallback,
    StateCallback,
    StopCallback,
)

__all__ = [
    "BookmarksCallback",
    "DeniedCallback",
    "ErrorCallback",
    "JukeboxClient",
    "PlayCallback",
    "StateCallback",
    "StopCallback",
]
