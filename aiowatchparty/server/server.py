"""Watch party server implementation to connect to and coordinate many viewers."""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable

from aiohttp import web
from zeroconf import InterfaceChoice, ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

from aiowatchparty.models.types import ServerMessage

from .connection import Connection
from .queue import QueueManager
from .registry import RoomRegistry
from .relay import PlaybackControlRelay

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_watchparty._tcp.local."
DEFAULT_PATH = "/watchparty"
DEFAULT_PORT = 8927


class WatchPartyServer:
    """
    Composition root of the watch party server.

    Owns the connections of one process and the room registry, queue manager
    and control relay that act on them.
    """

    _connections: dict[str, Connection]
    loop: asyncio.AbstractEventLoop
    registry: RoomRegistry
    queue: QueueManager
    relay: PlaybackControlRelay
    _id: str
    _name: str
    _runner: web.AppRunner | None
    _zeroconf: AsyncZeroconf | None
    _service_info: ServiceInfo | None

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        server_id: str,
        server_name: str,
        *,
        registry_factory: Callable[[WatchPartyServer], RoomRegistry] | None = None,
    ) -> None:
        """
        Initialize a new watch party server.

        Args:
            loop: Event loop running the server.
            server_id: Unique identifier of this server.
            server_name: Friendly name of this server.
            registry_factory: Optional factory building the room registry for this
                server, mainly used to inject a clock in tests.
        """
        self._connections = {}
        self.loop = loop
        self._id = server_id
        self._name = server_name
        self.registry = (
            registry_factory(self) if registry_factory is not None else RoomRegistry(self)
        )
        self.queue = QueueManager(self.registry)
        self.relay = PlaybackControlRelay(self.registry)
        self._runner = None
        self._zeroconf = None
        self._service_info = None
        logger.debug("WatchPartyServer initialized: id=%s, name=%s", server_id, server_name)

    async def on_client_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection from a viewer."""
        logger.debug("Incoming connection from %s", request.remote)
        connection = Connection(self, request)
        self._connections[connection.connection_id] = connection
        try:
            return await connection.handle_client()
        finally:
            self._connections.pop(connection.connection_id, None)

    async def on_admin_rooms(self, _request: web.Request) -> web.Response:
        """Return a summary of every active room."""
        return web.json_response({"rooms": self.registry.summary()})

    def send_to(self, connection_id: str, message: ServerMessage) -> None:
        """Enqueue ``message`` for a connection, unknown connections are ignored."""
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(
                "Dropping %s for unknown connection %s", type(message).__name__, connection_id
            )
            return
        connection.send_message(message)

    def create_app(self, path: str = DEFAULT_PATH) -> web.Application:
        """Create the aiohttp application serving the WebSocket endpoint."""
        app = web.Application()
        app.router.add_get(path, self.on_client_connect)
        app.router.add_get("/admin/rooms", self.on_admin_rooms)
        return app

    async def start_server(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = DEFAULT_PORT,
        *,
        path: str = DEFAULT_PATH,
        advertise: bool = True,
    ) -> None:
        """Start serving WebSocket connections and optionally advertise via mDNS."""
        if self._runner is not None:
            raise RuntimeError("Server is already running")
        self._runner = web.AppRunner(self.create_app(path))
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("Serving watch party '%s' on %s:%d%s", self._name, host, port, path)
        if advertise:
            await self._advertise(port, path)

    async def stop_server(self) -> None:
        """Stop advertising, close every connection and shut the web server down."""
        if self._zeroconf is not None:
            if self._service_info is not None:
                unregistered = await self._zeroconf.async_unregister_service(self._service_info)
                await unregistered
            await self._zeroconf.async_close()
            self._zeroconf = None
            self._service_info = None
        for connection in list(self._connections.values()):
            if not connection.closing:
                await connection.disconnect()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Watch party server stopped")

    async def _advertise(self, port: int, path: str) -> None:
        """Register this server as a zeroconf service."""
        address = _get_local_ip()
        self._service_info = ServiceInfo(
            SERVICE_TYPE,
            f"{self._name}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(address)],
            port=port,
            properties={"path": path, "server_id": self._id},
            server=f"{socket.gethostname()}.local.",
        )
        self._zeroconf = AsyncZeroconf(interfaces=InterfaceChoice.Default)
        registered = await self._zeroconf.async_register_service(self._service_info)
        await registered
        logger.info("Advertising %s at %s:%d", SERVICE_TYPE, address, port)

    @property
    def connections(self) -> dict[str, Connection]:
        """Get the currently open connections by id."""
        return self._connections

    @property
    def id(self) -> str:
        """Get the unique identifier of this server."""
        return self._id

    @property
    def name(self) -> str:
        """Get the name of this server."""
        return self._name


def _get_local_ip() -> str:
    """Return the address used for outbound traffic, falling back to loopback."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # Nothing is sent, connecting a UDP socket only selects a route
            sock.connect(("10.255.255.255", 1))
            return str(sock.getsockname()[0])
        except OSError:
            return "127.0.0.1"
