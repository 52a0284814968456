"""Command-line interface for running a watch party server or viewer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import socket
import sys
import uuid
from collections.abc import Sequence
from contextlib import suppress
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from zeroconf import ServiceListener

import aioconsole
from aiohttp import ClientError
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from aiowatchparty.client import SimulatedPlayer, WatchPartyClient
from aiowatchparty.models.control import PlaybackEvent
from aiowatchparty.models.queue import QueueItem
from aiowatchparty.models.room import ChatEntryPayload, ParticipantsPayload, RoomSettingsPayload
from aiowatchparty.models.types import UploadPolicy
from aiowatchparty.server import AuthError, WatchPartyServer
from aiowatchparty.server.server import DEFAULT_PATH, DEFAULT_PORT, SERVICE_TYPE

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the watch party server and viewer."""
    parser = argparse.ArgumentParser(description="Watch videos together in sync")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run a watch party server")
    serve.add_argument("--host", default="0.0.0.0", help="Address to listen on")  # noqa: S104
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    serve.add_argument(
        "--name", default=socket.gethostname(), help="Friendly name advertised for this server"
    )
    serve.add_argument(
        "--no-advertise",
        dest="advertise",
        action="store_false",
        help="Do not advertise the server via mDNS",
    )

    watch = subparsers.add_parser("watch", help="Join a room with a simulated player")
    watch.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the watch party server. If omitted, discover via mDNS.",
    )
    watch.add_argument("--room", default=None, help="Room id to join or create")
    watch.add_argument("--password", default=None, help="Room password")
    watch.add_argument("--name", default=None, help="Display name in the room")
    watch.add_argument(
        "--create",
        action="store_true",
        help="Create the room and become its host, a room id is generated if none is given",
    )
    watch.add_argument(
        "--allow-upload",
        choices=[policy.value for policy in UploadPolicy],
        default=UploadPolicy.HOST.value,
        help="Who may change the source of a created room",
    )
    args = parser.parse_args(argv)
    if args.command == "watch" and args.room is None and not args.create:
        parser.error("watch requires --room unless --create is given")
    return args


# ----------------------------------------------------------------------
# Server
# ----------------------------------------------------------------------
async def serve_async(args: argparse.Namespace) -> int:
    """Run a server until interrupted."""
    loop = asyncio.get_running_loop()
    server = WatchPartyServer(loop, uuid.uuid4().hex, args.name)
    stop = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, stop.set)
    loop.add_signal_handler(signal.SIGTERM, stop.set)
    try:
        await server.start_server(args.host, args.port, advertise=args.advertise)
        _print_event(f"Serving on ws://{args.host}:{args.port}{DEFAULT_PATH}")
        await stop.wait()
        logger.debug("Received interrupt signal, shutting down...")
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await server.stop_server()
    return 0


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------
def _build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Construct WebSocket URL from mDNS service info."""
    path_raw = properties.get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else DEFAULT_PATH
    if not path:
        path = DEFAULT_PATH
    if not path.startswith("/"):
        path = "/" + path
    host_fmt = f"[{host}]" if ":" in host else host
    return f"ws://{host_fmt}:{port}{path}"


class _ServiceDiscoveryListener:
    """Listens for watch party server advertisements via mDNS."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._current_url: str | None = None
        self._first_result: asyncio.Future[str] = loop.create_future()
        self.tasks: set[asyncio.Task[None]] = set()

    @property
    def current_url(self) -> str | None:
        """Get the current discovered server URL, or None if no servers."""
        return self._current_url

    async def wait_for_first(self) -> str:
        """Wait for the first server to be discovered."""
        return await self._first_result

    async def _process_service_info(
        self, zeroconf: AsyncZeroconf, service_type: str, name: str
    ) -> None:
        info = await zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        url = _build_service_url(addresses[0], info.port, info.properties)
        self._current_url = url
        if not self._first_result.done():
            self._first_result.set_result(url)

    def _schedule(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        task = self._loop.create_task(self._process_service_info(zeroconf, service_type, name))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def add_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def update_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def remove_service(self, _zeroconf: AsyncZeroconf, _service_type: str, _name: str) -> None:
        """Handle service removal (server offline)."""
        self._current_url = None


class ServiceDiscovery:
    """Manages continuous discovery of watch party servers via mDNS."""

    def __init__(self) -> None:
        """Initialize the service discovery manager."""
        self._listener: _ServiceDiscoveryListener | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._zeroconf: AsyncZeroconf | None = None

    async def start(self) -> None:
        """Start continuous discovery (keeps running until stop() is called)."""
        loop = asyncio.get_running_loop()
        self._listener = _ServiceDiscoveryListener(loop)
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.__aenter__()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", self._listener)
            )
        except Exception:
            await self.stop()
            raise

    async def wait_for_first_server(self) -> str:
        """Wait indefinitely for the first server to be discovered."""
        if self._listener is None:
            raise RuntimeError("Discovery not started. Call start() first.")
        return await self._listener.wait_for_first()

    def current_url(self) -> str | None:
        """Get the current discovered server URL, or None if no servers."""
        return self._listener.current_url if self._listener else None

    async def stop(self) -> None:
        """Stop discovery and clean up resources."""
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf:
            await self._zeroconf.__aexit__(None, None, None)
            self._zeroconf = None
        self._listener = None


# ----------------------------------------------------------------------
# Viewer
# ----------------------------------------------------------------------
async def _sleep_interruptible(duration: float, keyboard_task: asyncio.Task[None]) -> bool:
    """Sleep with keyboard interrupt support. Return True if interrupted."""
    remaining = duration
    while remaining > 0 and not keyboard_task.done():
        await asyncio.sleep(min(0.5, remaining))
        remaining -= 0.5
    return keyboard_task.done()


async def _enter_room(client: WatchPartyClient, args: argparse.Namespace, *, create: bool) -> str:
    """Create or join the room given on the command line and return its id."""
    if create:
        room_id = await client.create_room(
            args.room,
            password=args.password,
            allow_upload=UploadPolicy(args.allow_upload),
        )
        _print_event(f"Created room {room_id}, share it with your friends")
        return room_id
    state = await client.join(args.room, args.password)
    _print_event(f"Joined room {client.room_id}")
    if state is not None:
        _print_event(f"Synced to host: {state.type.value} at {state.at or 0.0:.1f}s")
    assert client.room_id is not None
    return client.room_id


async def _connection_loop(
    client: WatchPartyClient,
    args: argparse.Namespace,
    discovery: ServiceDiscovery | None,
    initial_url: str,
    keyboard_task: asyncio.Task[None],
) -> None:
    """
    Run the connection loop with automatic reconnection on disconnect.

    The room is created on the first connection when requested, later
    connections rejoin it. Uses exponential backoff (up to 5 min) for errors.
    """
    url = initial_url
    error_backoff = 1.0
    max_backoff = 300.0  # 5 minutes
    create = args.create

    while not keyboard_task.done():
        try:
            await client.connect(url)
            logger.info("Connected to %s", url)
            _print_event(f"Connected to {url}")
            error_backoff = 1.0

            args.room = await _enter_room(client, args, create=create)
            create = False

            while client.connected and not keyboard_task.done():  # noqa: ASYNC110
                await asyncio.sleep(0.5)

            if keyboard_task.done():
                break

            logger.info("Connection lost")
            _print_event("Connection lost")
            if discovery is not None and (new_url := discovery.current_url()):
                url = new_url
            _print_event(f"Reconnecting to {url}...")

        except AuthError as err:
            _print_event(f"Could not enter room: {err}")
            keyboard_task.cancel()
            break
        except (TimeoutError, OSError, ClientError) as e:
            logger.debug(
                "Connection error (%s), retrying in %.0fs", type(e).__name__, error_backoff
            )
            await client.disconnect()
            _print_event(f"Connection error, retrying in {error_backoff:.0f}s...")
            if await _sleep_interruptible(error_backoff, keyboard_task):
                break
            error_backoff = min(error_backoff * 2, max_backoff)
            if discovery is not None and (new_url := discovery.current_url()):
                url = new_url
        except Exception:
            logger.exception("Unexpected error during connection")
            _print_event("Unexpected error occurred")
            await client.disconnect()
            await asyncio.sleep(error_backoff)
            error_backoff = min(error_backoff * 2, max_backoff)


def _register_listeners(client: WatchPartyClient, player: SimulatedPlayer) -> None:
    def on_source(url: str) -> None:
        player.load(url)
        _print_event(f"Now playing: {url}")

    def on_participants(payload: ParticipantsPayload) -> None:
        names = ", ".join(participant.name for participant in payload.participants)
        _print_event(f"{payload.count} watching" + (f": {names}" if names else ""))

    def on_settings(payload: RoomSettingsPayload) -> None:
        _print_event(
            f"Room settings: password {'set' if payload.password else 'none'}, "
            f"source changes by {payload.allow_upload.value}"
        )

    def on_chat(entry: ChatEntryPayload) -> None:
        _print_event(f"<{entry.name}> {entry.text}")

    def on_queue(queue: list[QueueItem]) -> None:
        _print_queue(queue)

    def on_control(event: PlaybackEvent) -> None:
        _print_event(f"{event.type.value} at {player.current_time:.1f}s")

    def on_host(room_id: str) -> None:
        _print_event(f"You are now host of room {room_id}")

    def on_error(message: str) -> None:
        _print_event(f"Rejected: {message}")

    client.add_source_listener(on_source)
    client.add_participants_listener(on_participants)
    client.add_settings_listener(on_settings)
    client.add_chat_listener(on_chat)
    client.add_queue_listener(on_queue)
    client.add_control_listener(on_control)
    client.add_host_listener(on_host)
    client.add_error_listener(on_error)


async def watch_async(args: argparse.Namespace) -> int:
    """Run a viewer with a simulated player until the user quits."""
    player = SimulatedPlayer()
    client = WatchPartyClient(player, name=args.name)
    _register_listeners(client, player)

    discovery: ServiceDiscovery | None = None
    url = args.url
    if url is None:
        discovery = ServiceDiscovery()
        await discovery.start()

    try:
        if url is None:
            assert discovery is not None
            logger.info("Waiting for mDNS discovery of watch party server...")
            _print_event("Searching for watch party server...")
            try:
                url = await discovery.wait_for_first_server()
            except Exception:
                logger.exception("Failed to discover server")
                return 1
            _print_event(f"Found server at {url}")

        _print_instructions()
        keyboard_task = asyncio.create_task(_keyboard_loop(client, player))

        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.debug("Received interrupt signal, shutting down...")
            keyboard_task.cancel()

        loop.add_signal_handler(signal.SIGINT, signal_handler)
        try:
            await _connection_loop(client, args, discovery, url, keyboard_task)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            logger.debug("Connection loop cancelled")
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            if client.connected and client.room_id is not None:
                with suppress(ConnectionError, RuntimeError):
                    await client.leave()
            await client.disconnect()
    finally:
        if discovery is not None:
            await discovery.stop()
    return 0


async def _keyboard_loop(client: WatchPartyClient, player: SimulatedPlayer) -> None:  # noqa: PLR0912
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            parts = line.strip().split(maxsplit=1)
            if not parts:
                continue
            keyword = parts[0].lower()
            argument = parts[1] if len(parts) > 1 else ""
            if keyword in {"quit", "exit", "q"}:
                break
            if not client.connected or client.room_id is None:
                _print_event("Not in a room yet")
                continue
            try:
                if keyword in {"play", "p"}:
                    await client.play()
                elif keyword == "pause":
                    await client.pause()
                elif keyword == "seek":
                    await client.seek(float(argument))
                elif keyword == "source":
                    await client.set_source(argument)
                elif keyword == "add":
                    url, _, title = argument.partition(" ")
                    await client.enqueue(url, title or None)
                elif keyword == "queue":
                    _print_queue(await client.request_queue())
                elif keyword == "remove":
                    await client.remove_from_queue(int(argument))
                elif keyword in {"next", "n"}:
                    await client.next()
                elif keyword == "ended":
                    await client.video_ended()
                elif keyword == "say":
                    await client.send_chat(argument)
                elif keyword == "upload":
                    await client.update_settings(allow_upload=UploadPolicy(argument))
                elif keyword == "password":
                    await client.update_settings(password=argument or None)
                elif keyword == "status":
                    _print_status(client, player)
                else:
                    _print_event("Unknown command")
            except ValueError:
                _print_event(f"Invalid argument for {keyword}")
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


def _print_queue(queue: list[QueueItem]) -> None:
    if not queue:
        _print_event("Queue is empty")
        return
    lines = [
        f"{index}: {item.title or item.url} (added by {item.uploaded_by or 'unknown'})"
        for index, item in enumerate(queue)
    ]
    _print_event("\n".join(lines))


def _print_status(client: WatchPartyClient, player: SimulatedPlayer) -> None:
    state = "paused" if player.paused else f"playing at {player.playback_rate:.2f}x"
    lines = [
        f"Room: {client.room_id}{' (host)' if client.is_host else ''}",
        f"Source: {client.source or 'none'}",
        f"Position: {player.current_time:.1f}s, {state}",
        f"Clock offset: {client.clock.offset * 1000:.1f} ms",
    ]
    _print_event("\n".join(lines))


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions() -> None:
    print(  # noqa: T201
        (
            "Commands: play(p), pause, seek <s>, source <url>, add <url> [title], queue, "
            "remove <i>, next(n), ended, say <text>, upload host|all, password [<pw>], "
            "status, quit(q)"
        ),
        flush=True,
    )


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))
    if args.command == "serve":
        return await serve_async(args)
    return await watch_async(args)


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
