"""Base message classes and enum types used by aiojukebox."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for messages sent by participants and hosts."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for messages sent by the server."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Enums


class PlaybackStatus(Enum):
    """Enum for the playback states of the shared player."""

    IDLE = "idle"
    """Nothing is being rendered by the host."""
    PLAYING = "playing"
    """The host was told to render the current item."""


class DisconnectPolicy(Enum):
    """What happens to a participant once its last connection closes."""

    RETAIN = "retain"
    """
    Keep the participant, its queue and its accumulated wait time.

    Items queued by a disconnected participant still get played.
    """
    PURGE = "purge"
    """Forget the participant together with its queue and wait time."""
