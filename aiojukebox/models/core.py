"""Core messages of the jukebox protocol.

This module contains the messages that establish who is on the other end of a
connection (a participant or the host) and the full state broadcast every
connection receives after each change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, PlaybackStatus, ServerMessage


# Client -> Server: participant/register
@dataclass
class RegisterParticipantPayload(DataClassORJSONMixin):
    """Identity of a participant."""

    identity: str
    """Opaque identifier of the participant, stable across reconnects."""
    display_name: str
    """Friendly name shown next to the participant's submissions."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if not self.identity:
            raise ValueError("identity must not be empty")


@dataclass
class RegisterParticipantMessage(ClientMessage):
    """Message sent by a participant to identify itself."""

    payload: RegisterParticipantPayload
    type: Literal["participant/register"] = "participant/register"


# Client -> Server: host/register
@dataclass
class RegisterHostMessage(ClientMessage):
    """Message sent by the device that renders content to claim the host role."""

    type: Literal["host/register"] = "host/register"


# Server -> Client: state/update
@dataclass
class QueueItemPayload(DataClassORJSONMixin):
    """A pending or playing item."""

    item_id: str
    """Opaque identifier of this submission."""
    content_id: str
    """Normalized identifier of the content to render."""
    owner_id: str | None = None
    """Identity of the submitting participant, None for history items."""
    owner_name: str | None = None
    """Display name of the submitting participant, None for history items."""
    title: str | None = None
    """Title of the content, if known."""
    is_history: bool = False
    """True if the item was picked from play history."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class StateUpdatePayload(DataClassORJSONMixin):
    """Full state of the shared player."""

    status: PlaybackStatus
    """Current playback state."""
    current_item: QueueItemPayload | None
    """Item being rendered by the host, None when idle."""
    queues: dict[str, list[QueueItemPayload]]
    """Pending items per participant identity, in registration order."""


@dataclass
class StateUpdateMessage(ServerMessage):
    """Message broadcast by the server after every change."""

    payload: StateUpdatePayload
    type: Literal["state/update"] = "state/update"


# Server -> Client: server/error
@dataclass
class ErrorPayload(DataClassORJSONMixin):
    """Failure of a single operation."""

    operation: str
    """Type of the message that failed."""
    message: str
    """Human readable reason."""


@dataclass
class ErrorMessage(ServerMessage):
    """Message sent by the server when an operation could not be carried out."""

    payload: ErrorPayload
    type: Literal["server/error"] = "server/error"
