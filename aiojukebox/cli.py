"""Command-line interface for running a jukebox server or joining one."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from collections.abc import Sequence
from pathlib import Path

import aioconsole
from aiohttp import ClientError

from aiojukebox.client import JukeboxClient
from aiojukebox.discovery import ServiceAdvertiser, ServiceDiscovery
from aiojukebox.models.bookmarks import BookmarkPayload
from aiojukebox.models.core import ErrorPayload, StateUpdatePayload
from aiojukebox.models.playback import PlayContentPayload
from aiojukebox.models.types import DisconnectPolicy
from aiojukebox.server import (
    DEFAULT_PATH,
    DEFAULT_PORT,
    JsonFileStore,
    JukeboxServer,
    KeyValueStore,
    MemoryStore,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Shared jukebox with fair scheduling")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=LOG_LEVELS,
        help="Logging level to use",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run a jukebox server")
    serve.add_argument("--host", default="0.0.0.0", help="Address to listen on")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    serve.add_argument("--path", default=DEFAULT_PATH, help="WebSocket path")
    serve.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for play history and bookmarks. Kept in memory if omitted.",
    )
    serve.add_argument(
        "--disconnect-policy",
        default=DisconnectPolicy.RETAIN.value,
        choices=[policy.value for policy in DisconnectPolicy],
        help="Whether participants are forgotten once their last connection closes",
    )
    serve.add_argument(
        "--stall-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Advance playback if the host does not report the end of an item in time",
    )
    serve.add_argument("--name", default="Jukebox", help="Friendly name of this server")
    serve.add_argument(
        "--no-mdns", action="store_true", help="Do not advertise the server via mDNS"
    )

    join = commands.add_parser("join", help="Join a jukebox server")
    target = join.add_mutually_exclusive_group()
    target.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the jukebox server. If omitted, discover via mDNS.",
    )
    target.add_argument(
        "--server",
        default=None,
        metavar="NAME|ID",
        help="Only join the discovered server with this name or id",
    )
    join.add_argument("--id", default=None, help="Participant identity, random if omitted")
    join.add_argument("--name", default="Guest", help="Display name")
    join.add_argument(
        "--host", action="store_true", help="Act as the host device that plays content"
    )
    join.add_argument(
        "--host-only",
        action="store_true",
        help="Act as the host device without joining the queues",
    )
    return parser.parse_args(argv)


# ----------------------------------------------------------------------
# serve
# ----------------------------------------------------------------------
async def _serve(args: argparse.Namespace) -> int:
    loop = asyncio.get_running_loop()
    store: KeyValueStore
    if args.data_dir is not None:
        store = JsonFileStore(args.data_dir)
        logger.info("Persisting to %s", args.data_dir)
    else:
        store = MemoryStore()
        logger.info("Persisting in memory only")

    server_id = uuid.uuid4().hex[:12]
    server = JukeboxServer(
        loop,
        server_id,
        args.name,
        store=store,
        disconnect_policy=DisconnectPolicy(args.disconnect_policy),
        stall_timeout=args.stall_timeout,
    )
    try:
        await server.start_server(args.host, args.port, args.path)
    except OSError:
        logger.exception("Failed to listen on %s:%d", args.host, args.port)
        return 1

    advertiser: ServiceAdvertiser | None = None
    if not args.no_mdns:
        advertiser = ServiceAdvertiser(server_id, args.name, args.port, args.path)
        await advertiser.start()

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    _print_event(f"Serving '{args.name}' on ws://{args.host}:{args.port}{args.path}")
    try:
        await stop.wait()
    finally:
        logger.debug("Received shutdown signal, stopping...")
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if advertiser is not None:
            await advertiser.stop()
        await server.close()
    return 0


# ----------------------------------------------------------------------
# join
# ----------------------------------------------------------------------
def describe_state(state: StateUpdatePayload) -> str:
    """Return a human-friendly description of the shared player."""
    lines: list[str] = []
    current = state.current_item
    if current is None:
        lines.append("Nothing playing")
    else:
        owner = "history" if current.is_history else current.owner_name or current.owner_id
        lines.append(f"Now playing: {current.title or current.content_id} ({owner})")
    for identity, items in state.queues.items():
        if not items:
            continue
        owner = items[0].owner_name or identity
        lines.append(f"{owner}:")
        lines.extend(
            f"  [{item.item_id}] {item.title or item.content_id}" for item in items
        )
    return "\n".join(lines)


def describe_bookmarks(bookmarks: list[BookmarkPayload]) -> str:
    """Return one line per bookmark."""
    if not bookmarks:
        return "No bookmarks"
    return "\n".join(f"{bookmark.content_id}  {bookmark.name}" for bookmark in bookmarks)


def _attach_printers(client: JukeboxClient) -> None:
    last_current: list[str | None] = [None]

    def on_state(state: StateUpdatePayload) -> None:
        current = state.current_item.item_id if state.current_item else None
        if current != last_current[0]:
            last_current[0] = current
            _print_event(describe_state(state))

    def on_play(payload: PlayContentPayload) -> None:
        _print_event(f"PLAY {payload.content_id} {payload.title or ''}".rstrip())

    def on_stop() -> None:
        _print_event("STOP")

    def on_error(payload: ErrorPayload) -> None:
        _print_event(f"Error in {payload.operation}: {payload.message}")

    def on_denied(operation: str, item_id: str | None) -> None:
        _print_event(f"Denied: {operation}" + (f" {item_id}" if item_id else ""))

    client.add_state_listener(on_state)
    if client.is_host:
        client.add_play_listener(on_play)
        client.add_stop_listener(on_stop)
    client.add_error_listener(on_error)
    client.add_denied_listener(on_denied)


async def _keyboard_loop(client: JukeboxClient) -> None:
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            parts = line.strip().split()
            if not parts:
                continue
            keyword = parts[0].lower()
            if keyword in {"quit", "exit", "q"}:
                break
            if not client.connected:
                _print_event("Not connected")
                continue
            try:
                await _run_command(client, keyword, parts[1:])
            except RuntimeError as err:
                _print_event(str(err))
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


async def _run_command(client: JukeboxClient, keyword: str, args: list[str]) -> None:
    if keyword == "add" and args:
        await client.submit(args[0], title=" ".join(args[1:]) or None)
    elif keyword == "remove" and len(args) == 1:
        await client.withdraw(args[0])
    elif keyword == "skip":
        await client.skip()
    elif keyword == "done" and client.is_host:
        await client.report_finished()
    elif keyword == "queue":
        _print_event(describe_state(client.state) if client.state else "No state yet")
    elif keyword == "save" and len(args) >= 2:
        await client.save_bookmark(args[0], " ".join(args[1:]))
    elif keyword == "unsave" and len(args) == 1:
        await client.delete_bookmark(args[0])
    elif keyword == "rename" and len(args) >= 2:
        await client.rename_bookmark(args[0], " ".join(args[1:]))
    elif keyword == "bookmarks":
        _print_event(describe_bookmarks(client.bookmarks))
    else:
        _print_event("Unknown command")
        _print_instructions(client.is_host)


async def _connection_loop(
    client: JukeboxClient,
    discovery: ServiceDiscovery | None,
    initial_url: str,
    keyboard_task: asyncio.Task[None],
) -> None:
    """Keep the client connected, retrying with exponential backoff (up to 5 min)."""
    url = initial_url
    error_backoff = 1.0
    max_backoff = 300.0

    while not keyboard_task.done():
        try:
            await client.connect(url)
            _print_event(f"Connected to {url}")
            error_backoff = 1.0

            while client.connected and not keyboard_task.done():  # noqa: ASYNC110
                await asyncio.sleep(0.5)
            if keyboard_task.done():
                break

            logger.info("Connection lost")
            _print_event("Connection lost, reconnecting...")
            url = _rediscover(discovery, url)
        except (TimeoutError, OSError, ClientError) as e:
            logger.debug(
                "Connection error (%s), retrying in %.0fs", type(e).__name__, error_backoff
            )
            _print_event(f"Connection error, retrying in {error_backoff:.0f}s...")
            await asyncio.wait([keyboard_task], timeout=error_backoff)
            url = _rediscover(discovery, url)
            error_backoff = min(error_backoff * 2, max_backoff)


def _rediscover(discovery: ServiceDiscovery | None, url: str) -> str:
    if discovery is None:
        return url
    return discovery.current_url() or url


async def _discover(wanted: str | None) -> tuple[ServiceDiscovery, str]:
    discovery = ServiceDiscovery(wanted)
    await discovery.start()
    _print_event(
        f"Searching for jukebox server '{wanted}'..."
        if wanted
        else "Searching for jukebox server..."
    )
    try:
        server = await discovery.wait_for_server()
    except BaseException:
        await discovery.stop()
        raise
    _print_event(f"Found '{server.name}' at {server.url}")
    return discovery, server.url


async def _join(args: argparse.Namespace) -> int:
    identity = args.id or uuid.uuid4().hex
    client = JukeboxClient(
        identity, args.name, host=args.host or args.host_only, participate=not args.host_only
    )
    _attach_printers(client)

    discovery: ServiceDiscovery | None = None
    if args.url is not None:
        url = args.url
    else:
        discovery, url = await _discover(args.server)
    try:
        _print_instructions(client.is_host)
        keyboard_task = asyncio.create_task(_keyboard_loop(client))

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, keyboard_task.cancel)
        try:
            await _connection_loop(client, discovery, url, keyboard_task)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            logger.debug("Connection loop cancelled")
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            await client.disconnect()
    finally:
        if discovery is not None:
            await discovery.stop()
    return 0


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions(host: bool) -> None:
    commands = (
        "Commands: add <link> [title], remove <item-id>, skip, queue, "
        "save <content-id> <name>, unsave <content-id>, rename <content-id> <name>, "
        "bookmarks, quit(q)"
    )
    if host:
        commands += "\n  done reports that the current item finished playing"
    print(commands, flush=True)  # noqa: T201


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))
    if args.command == "serve":
        return await _serve(args)
    return await _join(args)


def main() -> int:
    """Run the CLI client."""
    try:
        return asyncio.run(main_async(sys.argv[1:]))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
