"""Watch party client implementation to connect to a watch party server."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiowatchparty.models.control import (
    ControlClientMessage,
    ControlPayload,
    ControlServerMessage,
    PlaybackEvent,
    RequestStateServerMessage,
    SendStateToClientMessage,
    SendStateToPayload,
)
from aiowatchparty.models.core import (
    ErrorMessageServerMessage,
    ServerHelloMessage,
    ServerHelloPayload,
    TimeRequestMessage,
    TimeRequestPayload,
    TimeResponseMessage,
)
from aiowatchparty.models.queue import (
    EnqueueClientMessage,
    EnqueueItemPayload,
    EnqueuePayload,
    NextClientMessage,
    QueueItem,
    QueueUpdatedServerMessage,
    RemoveFromQueueClientMessage,
    RemoveFromQueuePayload,
    ReorderQueueClientMessage,
    ReorderQueuePayload,
    RequestQueueClientMessage,
    SetSourceClientMessage,
    SetSourceClientPayload,
    SetSourceServerMessage,
    VideoEndedClientMessage,
)
from aiowatchparty.models.room import (
    AnnounceClientMessage,
    AnnouncePayload,
    ChatEntryPayload,
    ChatHistoryServerMessage,
    ChatMessageClientMessage,
    ChatMessageClientPayload,
    ChatMessageServerMessage,
    CreateRoomClientMessage,
    CreateRoomPayload,
    JoinClientMessage,
    JoinFailedServerMessage,
    JoinPayload,
    LeaveRoomClientMessage,
    ParticipantsPayload,
    ParticipantsServerMessage,
    RoomRefPayload,
    RoomSettingsPatch,
    RoomSettingsPayload,
    RoomSettingsServerMessage,
    UpdateSettingsClientMessage,
    UpdateSettingsPayload,
    YouAreHostServerMessage,
)
from aiowatchparty.models.types import (
    ControlType,
    ServerMessage,
    UndefinedField,
    UploadPolicy,
    undefined_field,
)
from aiowatchparty.server.errors import AuthError
from aiowatchparty.utils import generate_room_id, normalize_room_id

from .corrector import CorrectorConfig, PlaybackCorrector
from .player import SimulatedPlayer, VideoPlayer
from .time_sync import DEFAULT_SYNC_ROUNDS, ClockSyncEstimator

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_STATE_TIMEOUT = 2.0
"""Seconds a joining viewer waits for the host to push its playback state."""
REQUEST_TIMEOUT = 10.0

ParticipantsCallback = Callable[[ParticipantsPayload], Awaitable[None] | None]
SettingsCallback = Callable[[RoomSettingsPayload], Awaitable[None] | None]
ChatCallback = Callable[[ChatEntryPayload], Awaitable[None] | None]
SourceCallback = Callable[[str], Awaitable[None] | None]
QueueCallback = Callable[[list[QueueItem]], Awaitable[None] | None]
ControlCallback = Callable[[PlaybackEvent], Awaitable[None] | None]
HostCallback = Callable[[str], Awaitable[None] | None]
ErrorCallback = Callable[[str], Awaitable[None] | None]


@dataclass(slots=True)
class ServerInfo:
    """Information about the connected server."""

    server_id: str
    name: str
    connection_id: str


class WatchPartyClient:
    """
    Async watch party client keeping a local player in sync with one room.

    Incoming play, pause and seek events are applied through a
    ``PlaybackCorrector``. Local player actions are sent with ``play``,
    ``pause`` and ``seek``, which stay silent while a remote event is applied.
    """

    def __init__(
        self,
        player: VideoPlayer | None = None,
        *,
        name: str | None = None,
        avatar: str | None = None,
        session: ClientSession | None = None,
        corrector_config: CorrectorConfig | None = None,
        sync_rounds: int = DEFAULT_SYNC_ROUNDS,
        initial_state_timeout: float = DEFAULT_INITIAL_STATE_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create a new watch party client driving ``player``."""
        self._player = player if player is not None else SimulatedPlayer()
        self._name = name
        self._avatar = avatar
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._initial_state_timeout = initial_state_timeout
        self._estimator = ClockSyncEstimator(rounds=sync_rounds, clock=clock)
        self._corrector = PlaybackCorrector(
            self._player, self._estimator, config=corrector_config, clock=clock
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._connected = False
        self._server_info: ServerInfo | None = None
        self._server_hello_event: asyncio.Event | None = None
        self._time_requests: dict[float, asyncio.Future[float]] = {}
        self._join_future: asyncio.Future[None] | None = None
        self._initial_state_event: asyncio.Event | None = None
        self._queue_future: asyncio.Future[list[QueueItem]] | None = None
        self._reset_room_state()
        self._participants_callbacks: list[ParticipantsCallback] = []
        self._settings_callbacks: list[SettingsCallback] = []
        self._chat_callbacks: list[ChatCallback] = []
        self._source_callbacks: list[SourceCallback] = []
        self._queue_callbacks: list[QueueCallback] = []
        self._control_callbacks: list[ControlCallback] = []
        self._host_callbacks: list[HostCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def server_info(self) -> ServerInfo | None:
        """Return information about the connected server, if available."""
        return self._server_info

    @property
    def connection_id(self) -> str | None:
        """Return the identifier the server assigned to this connection."""
        return self._server_info.connection_id if self._server_info else None

    @property
    def connected(self) -> bool:
        """Return True if the client currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def player(self) -> VideoPlayer:
        """Return the local player kept in sync."""
        return self._player

    @property
    def corrector(self) -> PlaybackCorrector:
        """Return the corrector applying remote events to the player."""
        return self._corrector

    @property
    def clock(self) -> ClockSyncEstimator:
        """Return the clock offset estimator of this connection."""
        return self._estimator

    @property
    def room_id(self) -> str | None:
        """Return the room this client is in."""
        return self._room_id

    @property
    def is_host(self) -> bool:
        """Return True if this client is host of its room."""
        return self._is_host

    @property
    def participants(self) -> ParticipantsPayload | None:
        """Return the last known membership of the room."""
        return self._participants

    @property
    def settings(self) -> RoomSettingsPayload | None:
        """Return the last known settings of the room."""
        return self._settings

    @property
    def chat_history(self) -> list[ChatEntryPayload]:
        """Return the chat lines received in this room, oldest first."""
        return list(self._chat_history)

    @property
    def queue(self) -> list[QueueItem]:
        """Return the last known queue of the room."""
        return list(self._queue)

    @property
    def source(self) -> str | None:
        """Return the source currently playing in the room."""
        return self._source

    async def connect(self, url: str) -> None:
        """Connect to a watch party server via WebSocket and start the clock sync."""
        if self.connected:
            logger.debug("Already connected")
            return

        self._loop = asyncio.get_running_loop()
        if self._session is None:
            self._session = ClientSession()
        self._server_hello_event = asyncio.Event()

        logger.info("Connecting to watch party server at %s", url)
        self._ws = await self._session.ws_connect(url, heartbeat=30)
        self._connected = True
        self._reader_task = self._loop.create_task(self._reader_loop())

        try:
            await asyncio.wait_for(self._server_hello_event.wait(), timeout=REQUEST_TIMEOUT)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for server_hello") from err

        # Playback never waits for the clock sync, the offset is 0 until it completes
        self._sync_task = self._loop.create_task(self._sync_clock())
        logger.info("Handshake with server complete")

    async def disconnect(self) -> None:
        """Disconnect from the server and release resources."""
        self._connected = False
        current_task = asyncio.current_task(loop=self._loop) if self._loop else None

        if self._sync_task is not None and self._sync_task is not current_task:
            self._sync_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sync_task
            self._sync_task = None
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
        for future in (*self._time_requests.values(), self._join_future, self._queue_future):
            if future is not None and not future.done():
                future.set_exception(ConnectionError("Disconnected from server"))
                # Nobody may be waiting, do not warn about an unretrieved exception
                future.exception()
        self._time_requests.clear()
        self._join_future = None
        self._queue_future = None
        self._corrector.close()
        self._estimator.reset()
        self._server_info = None
        self._reset_room_state()

    # Rooms
    async def create_room(
        self,
        room_id: str | None = None,
        *,
        password: str | None = None,
        allow_upload: UploadPolicy = UploadPolicy.HOST,
    ) -> str:
        """
        Create a room and become its host.

        A readable room id is generated when none is given. Returns the room id.
        """
        room_id = normalize_room_id(room_id or "") or generate_room_id()
        settings = RoomSettingsPayload(password=password or None, allow_upload=allow_upload)
        self._enter_room(room_id)
        try:
            await self._request_room(
                CreateRoomClientMessage(CreateRoomPayload(room_id=room_id, settings=settings))
            )
        except Exception:
            self._reset_room_state()
            raise
        await self._announce_if_named()
        logger.info("Created room %s", room_id)
        return room_id

    async def join(self, room_id: str, password: str | None = None) -> PlaybackEvent | None:
        """
        Join a room, creating it on the server if it does not exist yet.

        Waits up to ``initial_state_timeout`` seconds for the host to push its
        playback state, which is applied to the player and returned. Returns
        None when this client became host or no state arrived in time.

        Raises:
            AuthError: The server rejected the join.
            ValueError: The room id is blank.
        """
        room_id = normalize_room_id(room_id)
        if not room_id:
            raise ValueError("room id is empty")
        self._enter_room(room_id)
        initial_state = asyncio.Event()
        self._initial_state_event = initial_state
        try:
            await self._request_room(
                JoinClientMessage(JoinPayload(room_id=room_id, password=password or None))
            )
        except Exception:
            self._reset_room_state()
            raise
        await self._announce_if_named()
        logger.info("Joined room %s", room_id)

        if self._is_host:
            return None
        try:
            await asyncio.wait_for(initial_state.wait(), timeout=self._initial_state_timeout)
        except TimeoutError:
            logger.debug("No playback state received from host, starting without one")
            return None
        return self._initial_state

    async def leave(self) -> None:
        """Leave the current room."""
        room_id = self._require_room()
        await self._send_json(LeaveRoomClientMessage(RoomRefPayload(room_id=room_id)))
        self._corrector.cancel_adjust()
        self._reset_room_state()
        logger.info("Left room %s", room_id)

    async def announce(self, name: str | None = None, avatar: str | None = None) -> None:
        """Publish the display name and avatar of this client to the room."""
        if name is not None:
            self._name = name
        if avatar is not None:
            self._avatar = avatar
        await self._send_json(
            AnnounceClientMessage(
                AnnouncePayload(room_id=self._require_room(), name=self._name, avatar=self._avatar)
            )
        )

    async def update_settings(
        self,
        *,
        password: str | None | UndefinedField = undefined_field(),  # noqa: B008
        allow_upload: UploadPolicy | UndefinedField = undefined_field(),  # noqa: B008
    ) -> None:
        """Change the room settings, only the host may do this."""
        patch = RoomSettingsPatch(password=password, allow_upload=allow_upload)
        await self._send_json(
            UpdateSettingsClientMessage(
                UpdateSettingsPayload(room_id=self._require_room(), settings=patch)
            )
        )

    async def send_chat(self, text: str) -> None:
        """Post a line to the room chat."""
        await self._send_json(
            ChatMessageClientMessage(
                ChatMessageClientPayload(
                    room_id=self._require_room(),
                    text=text,
                    name=self._name,
                    at=self._clock(),
                    avatar=self._avatar,
                )
            )
        )

    # Source and queue
    async def set_source(self, url: str) -> None:
        """Ask the server to play ``url`` in the room right away."""
        await self._send_json(
            SetSourceClientMessage(SetSourceClientPayload(room_id=self._require_room(), url=url))
        )

    async def enqueue(self, url: str, title: str | None = None) -> None:
        """Append a source to the queue of the room."""
        item = EnqueueItemPayload(url=url, title=title, uploaded_by=self._name)
        await self._send_json(
            EnqueueClientMessage(EnqueuePayload(room_id=self._require_room(), item=item))
        )

    async def reorder_queue(self, new_order: list[QueueItem]) -> None:
        """Replace the queue of the room, only the host may do this."""
        await self._send_json(
            ReorderQueueClientMessage(
                ReorderQueuePayload(room_id=self._require_room(), new_order=list(new_order))
            )
        )

    async def remove_from_queue(self, index: int) -> None:
        """Remove the queue item at ``index``, only the host may do this."""
        await self._send_json(
            RemoveFromQueueClientMessage(
                RemoveFromQueuePayload(room_id=self._require_room(), index=index)
            )
        )

    async def request_queue(self) -> list[QueueItem]:
        """Fetch the current queue of the room."""
        room_id = self._require_room()
        assert self._loop is not None
        if self._queue_future is None or self._queue_future.done():
            self._queue_future = self._loop.create_future()
        future = self._queue_future
        await self._send_json(RequestQueueClientMessage(RoomRefPayload(room_id=room_id)))
        return await asyncio.wait_for(asyncio.shield(future), timeout=REQUEST_TIMEOUT)

    async def next(self) -> None:
        """Skip to the next queued source."""
        await self._send_json(NextClientMessage(RoomRefPayload(room_id=self._require_room())))

    async def video_ended(self) -> None:
        """Report that the current source finished playing locally."""
        await self._send_json(
            VideoEndedClientMessage(RoomRefPayload(room_id=self._require_room()))
        )

    # Playback
    async def play(self) -> PlaybackEvent | None:
        """Resume the local player and tell the room."""
        self._player.play()
        return await self.send_local_control(ControlType.PLAY)

    async def pause(self) -> PlaybackEvent | None:
        """Pause the local player and tell the room."""
        self._player.pause()
        return await self.send_local_control(ControlType.PAUSE)

    async def seek(self, position: float) -> PlaybackEvent | None:
        """Seek the local player and tell the room."""
        self._player.seek(position)
        return await self.send_local_control(ControlType.SEEK)

    async def send_local_control(self, control: ControlType) -> PlaybackEvent | None:
        """
        Send a play, pause or seek the local player just performed.

        Meant to be called from player callbacks. Nothing is sent while the
        corrector applies a remote event, returns the event that was sent.
        """
        room_id = self._require_room()
        event = self._corrector.local_event(control)
        if event is None:
            return None
        await self._send_json(ControlClientMessage(ControlPayload(room_id=room_id, msg=event)))
        return event

    # Listeners
    def add_participants_listener(self, callback: ParticipantsCallback) -> None:
        """Register a callback invoked on participants messages."""
        self._participants_callbacks.append(callback)

    def add_settings_listener(self, callback: SettingsCallback) -> None:
        """Register a callback invoked on room_settings messages."""
        self._settings_callbacks.append(callback)

    def add_chat_listener(self, callback: ChatCallback) -> None:
        """Register a callback invoked for every new chat line."""
        self._chat_callbacks.append(callback)

    def add_source_listener(self, callback: SourceCallback) -> None:
        """Register a callback invoked when the room switches to a new source."""
        self._source_callbacks.append(callback)

    def add_queue_listener(self, callback: QueueCallback) -> None:
        """Register a callback invoked on queue_updated messages."""
        self._queue_callbacks.append(callback)

    def add_control_listener(self, callback: ControlCallback) -> None:
        """Register a callback invoked after a remote playback event was applied."""
        self._control_callbacks.append(callback)

    def add_host_listener(self, callback: HostCallback) -> None:
        """Register a callback invoked when this client becomes host."""
        self._host_callbacks.append(callback)

    def add_error_listener(self, callback: ErrorCallback) -> None:
        """Register a callback invoked when the server rejected an action."""
        self._error_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _reset_room_state(self) -> None:
        self._room_id: str | None = None
        self._is_host = False
        self._participants: ParticipantsPayload | None = None
        self._settings: RoomSettingsPayload | None = None
        self._chat_history: list[ChatEntryPayload] = []
        self._queue: list[QueueItem] = []
        self._source: str | None = None
        self._initial_state: PlaybackEvent | None = None
        self._initial_state_event = None

    def _enter_room(self, room_id: str) -> None:
        if self._room_id is not None and self._room_id != room_id:
            raise RuntimeError(f"Already in room {self._room_id}, leave it first")
        # The server does not repeat you_are_host when the host joins again
        was_host = self._is_host and self._room_id == room_id
        self._reset_room_state()
        self._room_id = room_id
        self._is_host = was_host

    def _require_room(self) -> str:
        if self._room_id is None:
            raise RuntimeError("Client is not in a room")
        return self._room_id

    async def _request_room(self, message: CreateRoomClientMessage | JoinClientMessage) -> None:
        """Send a create_room or join and wait until the server confirmed it."""
        assert self._loop is not None
        self._join_future = self._loop.create_future()
        future = self._join_future
        await self._send_json(message)
        try:
            await asyncio.wait_for(future, timeout=REQUEST_TIMEOUT)
        finally:
            if self._join_future is future:
                self._join_future = None

    async def _announce_if_named(self) -> None:
        if self._name is not None or self._avatar is not None:
            await self.announce()

    async def _sync_clock(self) -> None:
        try:
            await self._estimator.sync(self._probe_time)
        except (ConnectionError, RuntimeError) as err:
            logger.warning(
                "Clock sync stopped after %d probes: %s", self._estimator.samples, err
            )

    async def _probe_time(self, client_sent_at: float) -> float:
        assert self._loop is not None
        future: asyncio.Future[float] = self._loop.create_future()
        self._time_requests[client_sent_at] = future
        try:
            await self._send_json(
                TimeRequestMessage(TimeRequestPayload(client_sent_at=client_sent_at))
            )
            return await future
        finally:
            self._time_requests.pop(client_sent_at, None)

    async def _send_json(self, message: Any) -> None:
        if not self.connected or self._ws is None:
            raise RuntimeError("Client is not connected")
        payload = message.to_json()
        async with self._send_lock:
            await self._ws.send_str(payload)

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

    async def _handle_json_message(self, data: str) -> None:  # noqa: PLR0912
        try:
            message = ServerMessage.from_json(data)
        except Exception:
            logger.exception("Failed to parse server message: %s", data)
            return

        match message:
            case ServerHelloMessage(payload=payload):
                self._handle_server_hello(payload)
            case TimeResponseMessage(payload=payload):
                future = self._time_requests.get(payload.client_sent_at)
                if future is not None and not future.done():
                    future.set_result(payload.server_time)
            case YouAreHostServerMessage():
                await self._handle_you_are_host()
            case JoinFailedServerMessage(payload=payload):
                logger.warning("Join rejected: %s", payload.reason.value)
                if self._join_future is not None and not self._join_future.done():
                    self._join_future.set_exception(AuthError(payload.reason))
            case ChatHistoryServerMessage(payload=payload):
                # Only sent to the connection that created or joined a room
                self._chat_history = list(payload.messages)
                if self._join_future is not None and not self._join_future.done():
                    self._join_future.set_result(None)
            case ChatMessageServerMessage(payload=payload):
                self._chat_history.append(payload)
                await self._notify_callbacks(self._chat_callbacks, payload)
            case ParticipantsServerMessage(payload=payload):
                self._participants = payload
                await self._notify_callbacks(self._participants_callbacks, payload)
            case RoomSettingsServerMessage(payload=payload):
                self._settings = payload
                await self._notify_callbacks(self._settings_callbacks, payload)
            case SetSourceServerMessage(payload=payload):
                await self._handle_set_source(payload.url)
            case QueueUpdatedServerMessage(payload=payload):
                self._queue = list(payload.queue)
                if self._queue_future is not None and not self._queue_future.done():
                    self._queue_future.set_result(list(payload.queue))
                await self._notify_callbacks(self._queue_callbacks, list(payload.queue))
            case ControlServerMessage(payload=payload):
                await self._handle_control(payload)
            case RequestStateServerMessage(payload=payload):
                await self._handle_request_state(payload.to)
            case ErrorMessageServerMessage(payload=payload):
                logger.warning("Server rejected action: %s", payload.message)
                await self._notify_callbacks(self._error_callbacks, payload.message)
            case _:
                logger.debug("Unhandled server message type: %s", type(message).__name__)

    def _handle_server_hello(self, payload: ServerHelloPayload) -> None:
        self._server_info = ServerInfo(
            server_id=payload.server_id,
            name=payload.name,
            connection_id=payload.connection_id,
        )
        if self._server_hello_event:
            self._server_hello_event.set()
        logger.info(
            "Connected to server '%s' (%s) as %s",
            payload.name,
            payload.server_id,
            payload.connection_id,
        )

    async def _handle_you_are_host(self) -> None:
        self._is_host = True
        logger.info("This client is now host of room %s", self._room_id)
        if self._room_id is not None:
            await self._notify_callbacks(self._host_callbacks, self._room_id)

    async def _handle_set_source(self, url: str) -> None:
        logger.info("Room switched to source %s", url)
        self._source = url
        self._corrector.cancel_adjust()
        await self._notify_callbacks(self._source_callbacks, url)

    async def _handle_control(self, event: PlaybackEvent) -> None:
        self._corrector.apply_remote(event)
        if self._initial_state_event is not None and not self._initial_state_event.is_set():
            self._initial_state = event
            self._initial_state_event.set()
        await self._notify_callbacks(self._control_callbacks, event)

    async def _handle_request_state(self, target: str) -> None:
        state = self._corrector.snapshot()
        logger.debug("Sending %s state at %.3f to %s", state.type.value, state.at or 0.0, target)
        await self._send_json(
            SendStateToClientMessage(SendStateToPayload(to=target, state=state))
        )

    async def _notify_callbacks(
        self,
        callbacks: list[Callable[[Any], Awaitable[None] | None]],
        payload: Any,
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in client callback %s", callback)

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
