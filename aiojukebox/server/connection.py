"""Represents a single participant or host connection to the server."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from aiohttp import WSMessage, WSMsgType, web

from aiojukebox.models.bookmarks import (
    DeleteBookmarkMessage,
    RenameBookmarkMessage,
    SaveBookmarkMessage,
)
from aiojukebox.models.core import (
    ErrorMessage,
    ErrorPayload,
    RegisterHostMessage,
    RegisterParticipantMessage,
)
from aiojukebox.models.playback import SkipCurrentMessage, TrackFinishedMessage
from aiojukebox.models.queue import SubmitItemMessage, WithdrawItemMessage
from aiojukebox.models.types import ClientMessage, ServerMessage

from .store import StoreError

MAX_PENDING_MSG = 512

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import JukeboxServer


class Connection:
    """
    A WebSocket connection from a participant or the host.

    The connection only parses messages and forwards them to the JukeboxServer,
    which owns all shared state. Messages of one connection are handled strictly
    in order.
    """

    _server: JukeboxServer
    """Reference to the JukeboxServer instance this connection belongs to."""
    _request: web.Request
    """Web Request that opened this connection."""
    _wsock: web.WebSocketResponse
    _connection_id: str
    _writer_task: asyncio.Task[None] | None = None
    """Task responsible for sending JSON messages."""
    _to_write: asyncio.Queue[ServerMessage]
    """Queue for messages to be sent through the WebSocket."""
    _closing: bool = False
    _logger: logging.Logger

    def __init__(self, server: JukeboxServer, request: web.Request) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Use JukeboxServer.on_client_connect instead.
        """
        self._server = server
        self._request = request
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self._connection_id = uuid.uuid4().hex
        self._logger = logger.getChild(self._connection_id[:8])
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._closing = False
        self._logger.debug("Connection initialized from %s", request.remote)

    @property
    def connection_id(self) -> str:
        """The unique identifier of this connection."""
        return self._connection_id

    @property
    def closing(self) -> bool:
        """Whether this connection is in the process of closing."""
        return self._closing

    async def disconnect(self) -> None:
        """Close this connection."""
        if self._closing:
            return
        self._closing = True
        self._logger.debug("Disconnecting")

        if self._writer_task and not self._writer_task.done():
            _ = self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task

        if not self._wsock.closed:
            _ = await self._wsock.close()

        await self._server.handle_disconnect(self)
        self._logger.info("Connection closed")

    async def handle_client(self) -> web.WebSocketResponse:
        """
        Handle the complete websocket connection lifecycle.

        This method should only be called by JukeboxServer.on_client_connect.
        """
        try:
            await self._setup_connection()
            await self._run_message_loop()
        finally:
            await self.disconnect()
        return self._wsock

    async def _setup_connection(self) -> None:
        """Establish WebSocket connection."""
        try:
            async with asyncio.timeout(10):
                _ = await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise

        self._logger.info("Connection established")
        self._writer_task = self._server.loop.create_task(self._writer())

    async def _run_message_loop(self) -> None:
        """Run the main message processing loop."""
        receive_task: asyncio.Task[WSMessage] | None = None
        try:
            while not self._wsock.closed:
                # Wait for either a message or the writer task to complete (meaning the
                # connection dropped or errored)
                receive_task = self._server.loop.create_task(self._wsock.receive())
                assert self._writer_task is not None
                done, pending = await asyncio.wait(
                    [receive_task, self._writer_task],
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if self._writer_task in done:
                    self._logger.debug("Writer task ended, closing connection")
                    if receive_task in pending:
                        _ = receive_task.cancel()
                    break

                try:
                    msg = await receive_task
                except (ConnectionError, asyncio.CancelledError, TimeoutError) as e:
                    self._logger.error("Error receiving message: %s", e)
                    break

                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ClientMessage.from_json(cast("str", msg.data))
                except Exception:
                    self._logger.exception("error parsing message")
                    continue
                await self._dispatch(message)
            self._logger.debug("wsock was closed")

        except asyncio.CancelledError:
            self._logger.debug("Connection closed by client")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            if receive_task and not receive_task.done():
                _ = receive_task.cancel()

    async def _dispatch(self, message: ClientMessage) -> None:
        """Handle one message, reporting failed operations back to the sender."""
        operation = cast("str", getattr(message, "type", type(message).__name__))
        try:
            await self._handle_message(message)
        except StoreError as err:
            self._logger.warning("%s failed: %s", operation, err)
            self.send_error(operation, f"Storage failure: {err}")
        except Exception:
            self._logger.exception("error handling %s", operation)
            self.send_error(operation, "Internal error")

    async def _handle_message(self, message: ClientMessage) -> None:
        """Route an incoming message to the server."""
        server = self._server
        match message:
            case RegisterParticipantMessage(payload):
                await server.handle_register(self, payload)
            case RegisterHostMessage():
                await server.handle_register_host(self)
            case SubmitItemMessage(payload):
                await server.handle_submit(self, payload)
            case WithdrawItemMessage(payload):
                await server.handle_withdraw(self, payload)
            case SkipCurrentMessage():
                await server.handle_skip(self)
            case TrackFinishedMessage(payload):
                await server.handle_track_finished(self, payload)
            case SaveBookmarkMessage(payload):
                await server.handle_save_bookmark(self, payload)
            case DeleteBookmarkMessage(payload):
                await server.handle_delete_bookmark(self, payload)
            case RenameBookmarkMessage(payload):
                await server.handle_rename_bookmark(self, payload)
            case _:
                self._logger.debug("Unhandled message type: %s", type(message).__name__)

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        try:
            while not self._wsock.closed and not self._closing:
                item = await self._to_write.get()
                try:
                    await self._wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
            self._logger.debug("WebSocket Connection was closed, ending writer task")
        except Exception:
            self._logger.exception("Error in writer task")

    def send_message(self, message: ServerMessage) -> None:
        """Enqueue a message to be sent to this connection."""
        if self._closing:
            return
        self._logger.debug("Enqueueing message: %s", type(message).__name__)
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.error("Too many pending messages, dropping connection")
            if self._writer_task is not None:
                _ = self._writer_task.cancel()

    def send_error(self, operation: str, reason: str) -> None:
        """Tell the peer that an operation could not be carried out."""
        self.send_message(ErrorMessage(ErrorPayload(operation=operation, message=reason)))
