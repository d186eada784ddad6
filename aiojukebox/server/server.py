"""Jukebox server that lets many participants share one host device.

JukeboxServer is the core of the shared listening experience, responsible for:
- Managing participant and host connections
- Queueing submissions per participant
- Fairly deciding whose submission plays next
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass

from aiohttp import web

from aiojukebox.models.bookmarks import (
    BookmarkListMessage,
    BookmarkListPayload,
    BookmarkPayload,
    DeleteBookmarkPayload,
)
from aiojukebox.models.core import (
    RegisterParticipantPayload,
    StateUpdateMessage,
    StateUpdatePayload,
)
from aiojukebox.models.playback import (
    PlayContentMessage,
    PlayContentPayload,
    SkipDeniedMessage,
    StopContentMessage,
    TrackFinishedPayload,
)
from aiojukebox.models.queue import (
    SubmitItemPayload,
    WithdrawDeniedMessage,
    WithdrawDeniedPayload,
    WithdrawItemPayload,
)
from aiojukebox.models.types import DisconnectPolicy, ServerMessage

from .connection import Connection
from .content import extract_content_id
from .items import QueueItem
from .persistence import Bookmark, BookmarkStore, HistoryStore
from .playback import PlaybackController
from .queue import ParticipantQueues
from .scheduler import FairnessScheduler
from .session import SessionRegistry
from .store import KeyValueStore, MemoryStore, StoreError

DEFAULT_PORT = 8927
DEFAULT_PATH = "/jukebox"

logger = logging.getLogger(__name__)


class JukeboxEvent:
    """Base event type used by JukeboxServer.add_event_listener()."""


@dataclass
class ParticipantRegisteredEvent(JukeboxEvent):
    """A participant registered or re-registered."""

    identity: str
    display_name: str


@dataclass
class ParticipantRemovedEvent(JukeboxEvent):
    """A participant was forgotten after its last connection closed."""

    identity: str


@dataclass
class HostChangedEvent(JukeboxEvent):
    """The host connection was attached, replaced or detached."""

    attached: bool


@dataclass
class PlaybackStartedEvent(JukeboxEvent):
    """The host was told to render an item."""

    item_id: str
    content_id: str
    owner_id: str | None
    """Identity of the submitting participant, None for history picks."""


@dataclass
class PlaybackIdleEvent(JukeboxEvent):
    """Nothing is left to play."""


class JukeboxServer:
    """Jukebox server sharing one host device between many participants."""

    _connections: dict[str, Connection]
    loop: asyncio.AbstractEventLoop
    _event_cbs: list[Callable[[JukeboxEvent], Coroutine[None, None, None]]]
    _event_lock: asyncio.Lock
    """Serializes all events touching participants, queues and playback state."""
    _stall_timeout: float | None
    _stall_handle: asyncio.TimerHandle | None
    _background_tasks: set[asyncio.Task[None]]
    _id: str
    _name: str
    _runner: web.AppRunner | None

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        server_id: str,
        server_name: str,
        *,
        store: KeyValueStore | None = None,
        disconnect_policy: DisconnectPolicy = DisconnectPolicy.RETAIN,
        stall_timeout: float | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize a new Jukebox Server.

        Args:
            loop: Event loop running the server.
            server_id: Unique identifier of this server.
            server_name: Friendly name of this server.
            store: Persistence for play history and bookmarks, in memory by default.
            disconnect_policy: Whether participants are forgotten once their last
                connection closes.
            stall_timeout: Seconds after which an item the host never reported as
                finished is finished anyway. None waits forever.
            rng: Random source for history fallback picks.
            clock: Source of wall-clock seconds for measuring playback time.
        """
        self.loop = loop
        self._id = server_id
        self._name = server_name
        self._connections = {}
        self._event_cbs = []
        self._event_lock = asyncio.Lock()
        self._disconnect_policy = disconnect_policy
        self._stall_timeout = stall_timeout
        self._stall_handle = None
        self._background_tasks = set()
        self._runner = None

        store = store if store is not None else MemoryStore()
        self.registry = SessionRegistry()
        self.queues = ParticipantQueues()
        self.history = HistoryStore(store)
        self.bookmarks = BookmarkStore(store)
        self.scheduler = FairnessScheduler(self.registry, self.queues, self.history, rng=rng)
        self.playback = PlaybackController(
            self.registry,
            self.queues,
            self.scheduler,
            self.history,
            on_play=self._on_play,
            on_stop=self._on_stop,
            clock=clock,
        )
        logger.debug("JukeboxServer initialized: id=%s, name=%s", server_id, server_name)

    async def on_client_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection from a participant or host."""
        logger.debug("Incoming connection from %s", request.remote)
        connection = Connection(self, request)
        self._connections[connection.connection_id] = connection
        try:
            return await connection.handle_client()
        finally:
            self._connections.pop(connection.connection_id, None)

    def add_event_listener(
        self, callback: Callable[[JukeboxEvent], Coroutine[None, None, None]]
    ) -> Callable[[], None]:
        """Register a callback to listen for state changes of the server.

        State changes include:
        - A participant registered or was removed
        - The host attached or detached
        - Playback of an item started
        - Playback became idle

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)
        return lambda: self._event_cbs.remove(callback)

    def _signal_event(self, event: JukeboxEvent) -> None:
        for cb in self._event_cbs:
            self._spawn(cb(event))

    def _spawn(self, coro: Coroutine[None, None, None]) -> None:
        task = self.loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    @property
    def connections(self) -> list[Connection]:
        """Get all open connections."""
        return list(self._connections.values())

    @property
    def id(self) -> str:
        """Get the unique identifier of this server."""
        return self._id

    @property
    def name(self) -> str:
        """Get the name of this server."""
        return self._name

    @property
    def disconnect_policy(self) -> DisconnectPolicy:
        """What happens to participants whose last connection closed."""
        return self._disconnect_policy

    # ------------------------------------------------------------------
    # Outgoing messages
    # ------------------------------------------------------------------
    def build_state_message(self) -> StateUpdateMessage:
        """Build the full state broadcast to every connection."""
        queues = {
            participant.identity: [
                item.to_payload() for item in self.queues.items(participant.identity)
            ]
            for participant in self.registry.participants
        }
        current = self.playback.current_item
        return StateUpdateMessage(
            StateUpdatePayload(
                status=self.playback.status,
                current_item=current.to_payload() if current is not None else None,
                queues=queues,
            )
        )

    def broadcast(self, message: ServerMessage) -> None:
        """Send a message to every open connection."""
        for connection in self._connections.values():
            connection.send_message(message)

    def broadcast_state(self) -> None:
        """Publish the current state to every open connection."""
        self.broadcast(self.build_state_message())

    def _host(self) -> Connection | None:
        host_id = self.registry.host_connection
        return self._connections.get(host_id) if host_id is not None else None

    def _on_play(self, item: QueueItem) -> None:
        host = self._host()
        if host is None:
            logger.warning("No host connection to play %s", item.content_id)
        else:
            host.send_message(
                PlayContentMessage(
                    PlayContentPayload(
                        item_id=item.item_id, content_id=item.content_id, title=item.title
                    )
                )
            )
        self._arm_stall_timer(item)
        self._signal_event(PlaybackStartedEvent(item.item_id, item.content_id, item.owner_id))

    def _on_stop(self) -> None:
        self._cancel_stall_timer()
        host = self._host()
        if host is not None:
            host.send_message(StopContentMessage())
        self._signal_event(PlaybackIdleEvent())

    @staticmethod
    def _bookmark_list(bookmarks: list[Bookmark]) -> BookmarkListMessage:
        return BookmarkListMessage(
            BookmarkListPayload(bookmarks=[bookmark.to_payload() for bookmark in bookmarks])
        )

    def _require_identity(self, connection: Connection, operation: str) -> str | None:
        identity = self.registry.resolve(connection.connection_id)
        if identity is None:
            logger.debug("Rejecting %s from unregistered connection", operation)
            connection.send_error(operation, "Register as participant first")
        return identity

    # ------------------------------------------------------------------
    # Incoming events
    # ------------------------------------------------------------------
    async def handle_register(
        self, connection: Connection, payload: RegisterParticipantPayload
    ) -> None:
        """Bind the connection to a participant and publish the new participant list."""
        bookmarks = await self.bookmarks.get(payload.display_name)
        async with self._event_lock:
            self.registry.register(connection.connection_id, payload.identity, payload.display_name)
            self.broadcast_state()
        connection.send_message(self._bookmark_list(bookmarks))
        self._signal_event(ParticipantRegisteredEvent(payload.identity, payload.display_name))

    async def handle_register_host(self, connection: Connection) -> None:
        """Make the connection the host, replacing any previous host."""
        async with self._event_lock:
            previous = self.registry.register_host(connection.connection_id)
            try:
                started = await self.playback.on_host_attached()
            except StoreError:
                self.registry.restore_host(previous)
                raise
            connection.send_message(self.build_state_message())
            if started:
                self.broadcast_state()
        self._signal_event(HostChangedEvent(attached=True))

    async def handle_submit(self, connection: Connection, payload: SubmitItemPayload) -> None:
        """Queue content for the sender and start playback if the player is idle."""
        identity = self._require_identity(connection, "queue/submit")
        if identity is None:
            return
        content_id = extract_content_id(payload.source)
        async with self._event_lock:
            item_id = self.queues.submit(identity, content_id, payload.display_name, payload.title)
            try:
                await self.playback.on_submit()
            except StoreError:
                self.queues.withdraw(identity, item_id)
                raise
            self.broadcast_state()

    async def handle_withdraw(self, connection: Connection, payload: WithdrawItemPayload) -> None:
        """Remove an item from the sender's own queue."""
        identity = self.registry.resolve(connection.connection_id)
        async with self._event_lock:
            if identity is None or not self.queues.withdraw(identity, payload.item_id):
                logger.info("Withdraw of %s denied for %s", payload.item_id, identity)
                connection.send_message(
                    WithdrawDeniedMessage(WithdrawDeniedPayload(item_id=payload.item_id))
                )
                return
            self.broadcast_state()

    async def handle_skip(self, connection: Connection) -> None:
        """Skip the current item if the sender is allowed to."""
        identity = self.registry.resolve(connection.connection_id)
        async with self._event_lock:
            if not await self.playback.skip(identity):
                connection.send_message(SkipDeniedMessage())
                return
            self.broadcast_state()

    async def handle_track_finished(
        self, connection: Connection, payload: TrackFinishedPayload | None
    ) -> None:
        """Advance playback after the host finished rendering the current item."""
        async with self._event_lock:
            if connection.connection_id != self.registry.host_connection:
                logger.info("Ignoring track end reported by non-host connection")
                connection.send_error("playback/finished", "Only the host may report track ends")
                return
            current = self.playback.current_item
            if payload is not None and payload.item_id is not None:
                if current is None or current.item_id != payload.item_id:
                    logger.debug("Ignoring stale track end for %s", payload.item_id)
                    return
            if await self.playback.track_finished():
                self.broadcast_state()

    async def handle_save_bookmark(self, connection: Connection, payload: BookmarkPayload) -> None:
        """Save a bookmark for the sender."""
        username = self._require_username(connection, "bookmark/save")
        if username is None:
            return
        bookmarks = await self.bookmarks.save(username, payload.content_id, payload.name)
        connection.send_message(self._bookmark_list(bookmarks))

    async def handle_delete_bookmark(
        self, connection: Connection, payload: DeleteBookmarkPayload
    ) -> None:
        """Delete a bookmark of the sender."""
        username = self._require_username(connection, "bookmark/delete")
        if username is None:
            return
        bookmarks = await self.bookmarks.delete(username, payload.content_id)
        connection.send_message(self._bookmark_list(bookmarks))

    async def handle_rename_bookmark(
        self, connection: Connection, payload: BookmarkPayload
    ) -> None:
        """Rename a bookmark of the sender."""
        username = self._require_username(connection, "bookmark/rename")
        if username is None:
            return
        bookmarks = await self.bookmarks.rename(username, payload.content_id, payload.name)
        connection.send_message(self._bookmark_list(bookmarks))

    def _require_username(self, connection: Connection, operation: str) -> str | None:
        identity = self._require_identity(connection, operation)
        if identity is None:
            return None
        participant = self.registry.get(identity)
        return participant.display_name if participant is not None else None

    async def handle_disconnect(self, connection: Connection) -> None:
        """Drop the bindings of a closed connection."""
        async with self._event_lock:
            was_host = connection.connection_id == self.registry.host_connection
            identity = self.registry.unregister(connection.connection_id)
            if was_host:
                self.playback.on_host_detached()
            purged = (
                identity is not None
                and self._disconnect_policy is DisconnectPolicy.PURGE
                and not self.registry.is_connected(identity)
            )
            if purged:
                assert identity is not None
                dropped = self.queues.drop(identity)
                self.registry.remove_participant(identity)
                logger.info("Purged %s with %d queued item(s)", identity, len(dropped))
                self.broadcast_state()
        if was_host:
            self._signal_event(HostChangedEvent(attached=False))
        if purged:
            assert identity is not None
            self._signal_event(ParticipantRemovedEvent(identity))

    # ------------------------------------------------------------------
    # Stalled host
    # ------------------------------------------------------------------
    def _arm_stall_timer(self, item: QueueItem) -> None:
        self._cancel_stall_timer()
        if self._stall_timeout is None:
            return
        self._stall_handle = self.loop.call_later(
            self._stall_timeout, lambda: self._spawn(self._force_finish(item.item_id))
        )

    def _cancel_stall_timer(self) -> None:
        if self._stall_handle is not None:
            self._stall_handle.cancel()
            self._stall_handle = None

    async def _force_finish(self, item_id: str) -> None:
        async with self._event_lock:
            current = self.playback.current_item
            if current is None or current.item_id != item_id:
                return
            logger.warning(
                "Host did not finish %s within %.0fs, advancing",
                current.content_id,
                self._stall_timeout,
            )
            try:
                await self.playback.track_finished()
            except StoreError:
                logger.exception("Failed to advance after stalled item %s", current.content_id)
                return
            self.broadcast_state()

    # ------------------------------------------------------------------
    # Standalone HTTP server
    # ------------------------------------------------------------------
    def create_app(self, path: str = DEFAULT_PATH) -> web.Application:
        """Return an aiohttp application serving the jukebox WebSocket at ``path``."""
        app = web.Application()
        app.router.add_get(path, self.on_client_connect)
        return app

    async def start_server(
        self, host: str = "0.0.0.0", port: int = DEFAULT_PORT, path: str = DEFAULT_PATH
    ) -> None:
        """Listen for connections on ``host``:``port``."""
        if self._runner is not None:
            raise RuntimeError("Server already started")
        runner = web.AppRunner(self.create_app(path))
        await runner.setup()
        try:
            site = web.TCPSite(runner, host, port)
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Jukebox server listening on ws://%s:%d%s", host, port, path)

    async def close(self) -> None:
        """Disconnect all connections and stop background work."""
        self._cancel_stall_timer()
        for connection in list(self._connections.values()):
            await connection.disconnect()
        for task in list(self._background_tasks):
            task.cancel()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Jukebox server stopped")
