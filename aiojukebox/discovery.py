"""mDNS advertisement and discovery of jukebox servers.

A server announces itself as ``SERVICE_TYPE`` with the TXT properties ``id``
(random per server start), ``name`` (friendly name) and ``path`` (WebSocket
path). Clients browse for the service type and pick the first server whose id
or name matches what the user asked for, or any server if nothing was asked.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from aiojukebox.server.server import DEFAULT_PATH

if TYPE_CHECKING:
    from zeroconf import ServiceListener, Zeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_aiojukebox._tcp.local."


def local_ip_address() -> str:
    """Return the address of the interface used for outgoing traffic."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # No packet is sent, connecting only selects the outgoing interface
            sock.connect(("8.8.8.8", 80))
        except OSError:
            return "127.0.0.1"
        return cast("str", sock.getsockname()[0])


def _text(properties: dict[bytes, bytes | None], key: bytes) -> str | None:
    value = properties.get(key)
    if not value:
        return None
    return value.decode("utf-8", "replace")


def build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Return the WebSocket URL of an advertised server."""
    path = _text(properties, b"path") or DEFAULT_PATH
    if not path.startswith("/"):
        path = f"/{path}"
    if ":" in host:
        host = f"[{host}]"
    return f"ws://{host}:{port}{path}"


@dataclass(frozen=True, slots=True)
class DiscoveredServer:
    """A jukebox server seen on the local network."""

    service_name: str
    """Full mDNS instance name, unique per server."""
    server_id: str | None
    name: str
    url: str

    @classmethod
    def from_service(
        cls, service_name: str, host: str, port: int, properties: dict[bytes, bytes | None]
    ) -> DiscoveredServer:
        """Build from a resolved mDNS record."""
        name = _text(properties, b"name") or service_name.removesuffix(f".{SERVICE_TYPE}")
        return cls(
            service_name=service_name,
            server_id=_text(properties, b"id"),
            name=name,
            url=build_service_url(host, port, properties),
        )

    def matches(self, wanted: str | None) -> bool:
        """Whether this server is the one asked for by id or by name."""
        if wanted is None:
            return True
        return wanted == self.server_id or wanted.casefold() == self.name.casefold()


class ServiceAdvertiser:
    """Announces a running jukebox server on the local network."""

    def __init__(
        self, server_id: str, server_name: str, port: int, path: str = DEFAULT_PATH
    ) -> None:
        """Prepare the announcement, nothing is sent before start()."""
        self._info = ServiceInfo(
            SERVICE_TYPE,
            f"{server_name}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(local_ip_address())],
            port=port,
            properties={"path": path, "id": server_id, "name": server_name},
            server=f"{server_id}.local.",
        )
        self._zeroconf: AsyncZeroconf | None = None

    @property
    def info(self) -> ServiceInfo:
        """The advertised service record."""
        return self._info

    async def start(self) -> None:
        """Register the service via mDNS."""
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._info)
        logger.info("Advertising %s on port %d", self._info.name, self._info.port)

    async def stop(self) -> None:
        """Unregister the service and release the mDNS socket."""
        if self._zeroconf is None:
            return
        try:
            await self._zeroconf.async_unregister_service(self._info)
        finally:
            await self._zeroconf.async_close()
            self._zeroconf = None
        logger.debug("Stopped advertising %s", self._info.name)


class ServiceDiscovery:
    """
    Keeps track of the jukebox servers announced on the local network.

    Servers not matching ``wanted`` are remembered but never selected, so a
    client asked to join one jukebox is not redirected to another one on
    reconnect.
    """

    def __init__(self, wanted: str | None = None) -> None:
        """
        Initialize discovery.

        Args:
            wanted: Id or friendly name of the server to join, any server if None.
        """
        self._wanted = wanted
        self._servers: dict[str, DiscoveredServer] = {}
        self._found = asyncio.Event()
        self._pending: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None

    @property
    def wanted(self) -> str | None:
        """Id or name the selection is restricted to."""
        return self._wanted

    @property
    def servers(self) -> list[DiscoveredServer]:
        """All servers currently announced, matching or not."""
        return list(self._servers.values())

    def selected(self) -> DiscoveredServer | None:
        """Return the first announced server matching ``wanted``."""
        return next((s for s in self._servers.values() if s.matches(self._wanted)), None)

    def current_url(self) -> str | None:
        """URL of the selected server, None while none is announced."""
        server = self.selected()
        return server.url if server is not None else None

    async def wait_for_server(self) -> DiscoveredServer:
        """Wait until a matching server is announced."""
        while (server := self.selected()) is None:
            self._found.clear()
            await self._found.wait()
        return server

    def record(self, server: DiscoveredServer) -> None:
        """Remember an announced server."""
        if self._servers.get(server.service_name) != server:
            logger.debug("Discovered %s (%s) at %s", server.name, server.server_id, server.url)
        self._servers[server.service_name] = server
        if server.matches(self._wanted):
            self._found.set()
        else:
            logger.debug("Ignoring %s, looking for %s", server.name, self._wanted)

    def forget(self, service_name: str) -> None:
        """Drop a server that stopped announcing itself."""
        server = self._servers.pop(service_name, None)
        if server is not None:
            logger.info("Server %s went offline", server.name)

    async def start(self) -> None:
        """Start browsing, keeps running until stop() is called."""
        self._loop = asyncio.get_running_loop()
        self._zeroconf = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", self)
            )
        except Exception:
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop browsing and release the mDNS socket."""
        for task in list(self._pending):
            task.cancel()
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None

    async def _resolve(self, service_type: str, name: str) -> None:
        if self._zeroconf is None:
            return
        info = await self._zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            logger.debug("Could not resolve %s", name)
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        self.record(DiscoveredServer.from_service(name, addresses[0], info.port, info.properties))

    def _schedule_resolve(self, service_type: str, name: str) -> None:
        if self._loop is None:
            return
        task = self._loop.create_task(self._resolve(service_type, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ServiceListener interface, called from the event loop by the browser
    def add_service(self, _zeroconf: Zeroconf, service_type: str, name: str) -> None:
        self._schedule_resolve(service_type, name)

    def update_service(self, _zeroconf: Zeroconf, service_type: str, name: str) -> None:
        self._schedule_resolve(service_type, name)

    def remove_service(self, _zeroconf: Zeroconf, _service_type: str, name: str) -> None:
        self.forget(name)
