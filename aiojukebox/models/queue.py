"""
Queue messages for the jukebox protocol.

Participants append items to their own queue and may withdraw items from it
again. Items of other participants can never be touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ServerMessage


# Client -> Server: queue/submit
@dataclass
class SubmitItemPayload(DataClassORJSONMixin):
    """Content to append to the sender's queue."""

    source: str
    """URL or bare content id."""
    display_name: str
    """Name of the submitting participant shown next to the item."""
    title: str | None = None
    """Optional title of the content, kept in play history."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class SubmitItemMessage(ClientMessage):
    """Message sent by a participant to queue content."""

    payload: SubmitItemPayload
    type: Literal["queue/submit"] = "queue/submit"


# Client -> Server: queue/withdraw
@dataclass
class WithdrawItemPayload(DataClassORJSONMixin):
    """Item to remove from the sender's queue."""

    item_id: str


@dataclass
class WithdrawItemMessage(ClientMessage):
    """Message sent by a participant to remove one of its own items."""

    payload: WithdrawItemPayload
    type: Literal["queue/withdraw"] = "queue/withdraw"


# Server -> Client: queue/withdraw-denied
@dataclass
class WithdrawDeniedPayload(DataClassORJSONMixin):
    """Item that could not be withdrawn."""

    item_id: str


@dataclass
class WithdrawDeniedMessage(ServerMessage):
    """Message sent when the item is not in the sender's own queue."""

    payload: WithdrawDeniedPayload
    type: Literal["queue/withdraw-denied"] = "queue/withdraw-denied"
