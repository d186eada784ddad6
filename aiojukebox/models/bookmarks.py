"""Bookmark messages for the jukebox protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ServerMessage


@dataclass
class BookmarkPayload(DataClassORJSONMixin):
    """A saved content id."""

    content_id: str
    name: str


# Client -> Server: bookmark/save
@dataclass
class SaveBookmarkMessage(ClientMessage):
    """Message sent by a participant to save a content id."""

    payload: BookmarkPayload
    type: Literal["bookmark/save"] = "bookmark/save"


# Client -> Server: bookmark/delete
@dataclass
class DeleteBookmarkPayload(DataClassORJSONMixin):
    """Bookmark to delete."""

    content_id: str


@dataclass
class DeleteBookmarkMessage(ClientMessage):
    """Message sent by a participant to delete a bookmark."""

    payload: DeleteBookmarkPayload
    type: Literal["bookmark/delete"] = "bookmark/delete"


# Client -> Server: bookmark/rename
@dataclass
class RenameBookmarkMessage(ClientMessage):
    """Message sent by a participant to rename a bookmark."""

    payload: BookmarkPayload
    type: Literal["bookmark/rename"] = "bookmark/rename"


# Server -> Client: bookmark/list
@dataclass
class BookmarkListPayload(DataClassORJSONMixin):
    """All bookmarks of a participant."""

    bookmarks: list[BookmarkPayload]


@dataclass
class BookmarkListMessage(ServerMessage):
    """Message sent to a participant with its bookmarks."""

    payload: BookmarkListPayload
    type: Literal["bookmark/list"] = "bookmark/list"
