"""Jukebox Client implementation to connect to a Jukebox Server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from types import TracebackType
from typing import Any, Self, TypeVar

from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiojukebox.models.bookmarks import (
    BookmarkListMessage,
    BookmarkPayload,
    DeleteBookmarkMessage,
    DeleteBookmarkPayload,
    RenameBookmarkMessage,
    SaveBookmarkMessage,
)
from aiojukebox.models.core import (
    ErrorMessage,
    ErrorPayload,
    RegisterHostMessage,
    RegisterParticipantMessage,
    RegisterParticipantPayload,
    StateUpdateMessage,
    StateUpdatePayload,
)
from aiojukebox.models.playback import (
    PlayContentMessage,
    PlayContentPayload,
    SkipCurrentMessage,
    SkipDeniedMessage,
    StopContentMessage,
    TrackFinishedMessage,
    TrackFinishedPayload,
)
from aiojukebox.models.queue import (
    SubmitItemMessage,
    SubmitItemPayload,
    WithdrawDeniedMessage,
    WithdrawItemMessage,
    WithdrawItemPayload,
)
from aiojukebox.models.types import ClientMessage, ServerMessage

logger = logging.getLogger(__name__)

StateCallback = Callable[[StateUpdatePayload], Awaitable[None] | None]
BookmarksCallback = Callable[[list[BookmarkPayload]], Awaitable[None] | None]
PlayCallback = Callable[[PlayContentPayload], Awaitable[None] | None]
StopCallback = Callable[[], Awaitable[None] | None]
ErrorCallback = Callable[[ErrorPayload], Awaitable[None] | None]
DeniedCallback = Callable[[str, str | None], Awaitable[None] | None]
"""Called with the denied message type and the affected item id, if any."""

_T = TypeVar("_T")


class JukeboxClient:
    """
    Async jukebox client for participants and the host device.

    A host client also registers as a participant by default, so it can submit
    content and earns wait time like everyone else. Pass ``participate=False``
    for a dedicated player that only renders content and never shows up in the
    queues.
    """

    def __init__(
        self,
        identity: str,
        display_name: str,
        *,
        host: bool = False,
        participate: bool = True,
        session: ClientSession | None = None,
    ) -> None:
        """
        Create a new jukebox client.

        Args:
            identity: Stable identifier of the participant.
            display_name: Name shown next to submissions, also keys bookmarks.
            host: Whether this client also claims the host role and renders content.
            participate: Whether to register as participant. Only a host may opt out.
            session: aiohttp session to use, a private one is created if omitted.
        """
        if not host and not participate:
            raise ValueError("A client must be a participant, a host or both")
        self._identity = identity
        self._display_name = display_name
        self._host = host
        self._participate = participate
        self._session = session
        self._owns_session = session is None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._state_event: asyncio.Event | None = None
        self._connected = False
        self._state: StateUpdatePayload | None = None
        self._bookmarks: list[BookmarkPayload] = []
        self._playing: PlayContentPayload | None = None
        self._state_callbacks: list[StateCallback] = []
        self._bookmark_callbacks: list[BookmarksCallback] = []
        self._play_callbacks: list[PlayCallback] = []
        self._stop_callbacks: list[StopCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._denied_callbacks: list[DeniedCallback] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def identity(self) -> str:
        """Identity this client registers with."""
        return self._identity

    @property
    def display_name(self) -> str:
        """Display name this client registers with."""
        return self._display_name

    @property
    def is_host(self) -> bool:
        """Whether this client claims the host role."""
        return self._host

    @property
    def participates(self) -> bool:
        """Whether this client registers as participant."""
        return self._participate

    @property
    def connected(self) -> bool:
        """Return True if the client currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def state(self) -> StateUpdatePayload | None:
        """Last state received from the server."""
        return self._state

    @property
    def bookmarks(self) -> list[BookmarkPayload]:
        """Last bookmark list received from the server."""
        return list(self._bookmarks)

    @property
    def playing(self) -> PlayContentPayload | None:
        """Item the host was last told to render, None once stopped."""
        return self._playing

    async def connect(self, url: str) -> None:
        """Connect to a jukebox server and register."""
        if self.connected:
            logger.debug("Already connected")
            return

        self._loop = asyncio.get_running_loop()
        if self._session is None:
            self._session = ClientSession()

        self._state_event = asyncio.Event()
        logger.info("Connecting to jukebox server at %s", url)
        self._ws = await self._session.ws_connect(url, heartbeat=30)
        self._connected = True
        self._reader_task = self._loop.create_task(self._reader_loop())

        if self._participate:
            await self._send_json(
                RegisterParticipantMessage(
                    RegisterParticipantPayload(
                        identity=self._identity, display_name=self._display_name
                    )
                )
            )
        if self._host:
            await self._send_json(RegisterHostMessage())

        try:
            await asyncio.wait_for(self._state_event.wait(), timeout=10)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for state/update") from err
        logger.info("Registered as %s (%s)", self._display_name, self._identity)

    async def disconnect(self) -> None:
        """Disconnect from the server and release resources."""
        self._connected = False
        current_task = asyncio.current_task(loop=self._loop) if self._loop else None

        if self._reader_task is not None:
            if self._reader_task is not current_task:
                self._reader_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        self._state = None
        self._playing = None

    async def submit(self, source: str, *, title: str | None = None) -> None:
        """Queue a link or content id."""
        await self._send(
            SubmitItemMessage(
                SubmitItemPayload(source=source, display_name=self._display_name, title=title)
            )
        )

    async def withdraw(self, item_id: str) -> None:
        """Withdraw one of this participant's queued items."""
        await self._send(WithdrawItemMessage(WithdrawItemPayload(item_id=item_id)))

    async def skip(self) -> None:
        """Ask the server to skip the current item."""
        await self._send(SkipCurrentMessage())

    async def report_finished(self, item_id: str | None = None) -> None:
        """
        Tell the server the host finished rendering.

        Args:
            item_id: Finished item, defaults to the item of the last host/play message.
        """
        if item_id is None and self._playing is not None:
            item_id = self._playing.item_id
        await self._send(TrackFinishedMessage(TrackFinishedPayload(item_id=item_id)))

    async def save_bookmark(self, content_id: str, name: str) -> None:
        """Save a bookmark."""
        await self._send(SaveBookmarkMessage(BookmarkPayload(content_id=content_id, name=name)))

    async def delete_bookmark(self, content_id: str) -> None:
        """Delete a bookmark."""
        await self._send(DeleteBookmarkMessage(DeleteBookmarkPayload(content_id=content_id)))

    async def rename_bookmark(self, content_id: str, name: str) -> None:
        """Rename a bookmark."""
        await self._send(
            RenameBookmarkMessage(BookmarkPayload(content_id=content_id, name=name))
        )

    def add_state_listener(self, callback: StateCallback) -> Callable[[], None]:
        """Register a callback invoked on state/update messages."""
        return self._add(self._state_callbacks, callback)

    def add_bookmarks_listener(self, callback: BookmarksCallback) -> Callable[[], None]:
        """Register a callback invoked on bookmark/list messages."""
        return self._add(self._bookmark_callbacks, callback)

    def add_play_listener(self, callback: PlayCallback) -> Callable[[], None]:
        """Register a callback invoked when the host is told to render an item."""
        return self._add(self._play_callbacks, callback)

    def add_stop_listener(self, callback: StopCallback) -> Callable[[], None]:
        """Register a callback invoked when the host is told to stop."""
        return self._add(self._stop_callbacks, callback)

    def add_error_listener(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a callback invoked on server/error messages."""
        return self._add(self._error_callbacks, callback)

    def add_denied_listener(self, callback: DeniedCallback) -> Callable[[], None]:
        """Register a callback invoked when a skip or withdraw was denied."""
        return self._add(self._denied_callbacks, callback)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _add(callbacks: list[_T], callback: _T) -> Callable[[], None]:
        callbacks.append(callback)
        return lambda: callbacks.remove(callback)

    async def _send(self, message: ClientMessage) -> None:
        if not self.connected:
            raise RuntimeError("Client is not connected")
        await self._send_json(message)

    async def _send_json(self, message: ClientMessage) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket is not connected")
        async with self._send_lock:
            await self._ws.send_str(message.to_json())

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                await self._handle_ws_message(msg)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass
        except Exception:
            logger.exception("WebSocket reader encountered an error")
        finally:
            if self._connected:
                await self.disconnect()

    async def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is WSMsgType.TEXT:
            await self._handle_json_message(msg.data)
        elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            logger.info("WebSocket closed by server")
            await self.disconnect()
        elif msg.type is WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception() if self._ws else "unknown")
            await self.disconnect()

    async def _handle_json_message(self, data: str) -> None:
        try:
            message = ServerMessage.from_json(data)
        except Exception:
            logger.exception("Failed to parse server message: %s", data)
            return

        match message:
            case StateUpdateMessage(payload=payload):
                self._state = payload
                if self._state_event is not None:
                    self._state_event.set()
                await self._notify(self._state_callbacks, payload)
            case BookmarkListMessage(payload=payload):
                self._bookmarks = list(payload.bookmarks)
                await self._notify(self._bookmark_callbacks, self.bookmarks)
            case PlayContentMessage(payload=payload):
                logger.info("Host told to play %s", payload.content_id)
                self._playing = payload
                await self._notify(self._play_callbacks, payload)
            case StopContentMessage():
                logger.info("Host told to stop")
                self._playing = None
                await self._notify(self._stop_callbacks)
            case ErrorMessage(payload=payload):
                logger.warning("Server rejected %s: %s", payload.operation, payload.message)
                await self._notify(self._error_callbacks, payload)
            case SkipDeniedMessage():
                await self._notify(self._denied_callbacks, message.type, None)
            case WithdrawDeniedMessage(payload=payload):
                await self._notify(self._denied_callbacks, message.type, payload.item_id)
            case _:
                logger.debug("Unhandled server message type: %s", type(message).__name__)

    async def _notify(self, callbacks: list[Any], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in callback %s", callback)

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Disconnect when leaving the async context manager."""
        await self.disconnect()
