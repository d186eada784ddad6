"""
Playback messages for the jukebox protocol.

The host is told what to render and reports back once rendering ended.
Participants may ask to skip the current item.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ServerMessage


# Client -> Server: playback/skip
@dataclass
class SkipCurrentMessage(ClientMessage):
    """Message sent by a participant to end the current item early."""

    type: Literal["playback/skip"] = "playback/skip"


# Client -> Server: playback/finished
@dataclass
class TrackFinishedPayload(DataClassORJSONMixin):
    """Which item finished rendering."""

    item_id: str | None = None
    """Id from the host/play message; reports for other items are ignored."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class TrackFinishedMessage(ClientMessage):
    """Message sent by the host once the current item finished rendering."""

    payload: TrackFinishedPayload | None = None
    type: Literal["playback/finished"] = "playback/finished"


# Server -> Client: playback/skip-denied
@dataclass
class SkipDeniedMessage(ServerMessage):
    """Message sent when the sender may not skip the current item."""

    type: Literal["playback/skip-denied"] = "playback/skip-denied"


# Server -> Host: host/play
@dataclass
class PlayContentPayload(DataClassORJSONMixin):
    """Content the host should render now."""

    item_id: str
    content_id: str
    title: str | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class PlayContentMessage(ServerMessage):
    """Message sent to the host to start rendering an item."""

    payload: PlayContentPayload
    type: Literal["host/play"] = "host/play"


# Server -> Host: host/stop
@dataclass
class StopContentMessage(ServerMessage):
    """Message sent to the host when nothing is left to render."""

    type: Literal["host/stop"] = "host/stop"
