"""Represents a single viewer connection to the server."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from aiohttp import WSMessage, WSMsgType, web
from mashumaro.exceptions import MissingField

from aiowatchparty.models.control import (
    ControlClientMessage,
    SendStateToClientMessage,
)
from aiowatchparty.models.core import (
    ErrorMessagePayload,
    ErrorMessageServerMessage,
    ServerHelloMessage,
    ServerHelloPayload,
    TimeRequestMessage,
    TimeResponseMessage,
    TimeResponsePayload,
)
from aiowatchparty.models.queue import (
    EnqueueClientMessage,
    NextClientMessage,
    QueueUpdatedPayload,
    QueueUpdatedServerMessage,
    RemoveFromQueueClientMessage,
    ReorderQueueClientMessage,
    RequestQueueClientMessage,
    SetSourceClientMessage,
    VideoEndedClientMessage,
)
from aiowatchparty.models.room import (
    AnnounceClientMessage,
    ChatMessageClientMessage,
    CreateRoomClientMessage,
    JoinClientMessage,
    JoinFailedPayload,
    JoinFailedServerMessage,
    LeaveRoomClientMessage,
    UpdateSettingsClientMessage,
)
from aiowatchparty.models.types import ClientMessage, ServerMessage

from .errors import AuthError, ValidationError
from .room import RoomSettings

MAX_PENDING_MSG = 512

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import WatchPartyServer


class Connection:
    """
    A viewer connected to a WatchPartyServer.

    Every inbound message is handled to completion before the next one is
    read, outgoing messages are queued and written by a dedicated task.
    """

    _server: WatchPartyServer
    """Reference to the WatchPartyServer instance this connection belongs to."""
    _request: web.Request
    """Web Request that opened the WebSocket."""
    _wsock: web.WebSocketResponse
    _connection_id: str
    _writer_task: asyncio.Task[None] | None = None
    """Task responsible for sending JSON data."""
    _to_write: asyncio.Queue[ServerMessage]
    """Queue for messages to be sent to the client through the WebSocket."""
    _closing: bool = False
    _logger: logging.Logger

    def __init__(self, server: WatchPartyServer, request: web.Request) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Use WatchPartyServer.on_client_connect instead.
        """
        self._server = server
        self._request = request
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self._connection_id = uuid.uuid4().hex
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._closing = False
        self._logger = logger.getChild(self._connection_id[:8])
        self._logger.debug("Connection initialized for %s", request.remote)

    @property
    def connection_id(self) -> str:
        """The unique identifier of this connection."""
        return self._connection_id

    @property
    def closing(self) -> bool:
        """Whether this connection is in the process of closing."""
        return self._closing

    async def disconnect(self) -> None:
        """Close the connection and remove it from every room."""
        if self._closing:
            return
        self._closing = True
        self._logger.debug("Disconnecting")

        if self._writer_task and not self._writer_task.done():
            self._logger.debug("Cancelling writer task")
            _ = self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task

        if not self._wsock.closed:
            _ = await self._wsock.close()

        self._server.registry.disconnect(self._connection_id)
        self._logger.info("Connection closed")

    async def handle_client(self) -> web.WebSocketResponse:
        """
        Handle the complete websocket connection lifecycle.

        Should only be called by WatchPartyServer while handling the request.
        """
        try:
            await self._setup_connection()
            await self._run_message_loop()
        finally:
            await self.disconnect()
        return self._wsock

    async def _setup_connection(self) -> None:
        """Establish WebSocket connection and greet the client."""
        try:
            async with asyncio.timeout(10):
                _ = await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise

        self._logger.info("Connection established from %s", self._request.remote)
        self._writer_task = self._server.loop.create_task(self._writer())
        self.send_message(
            ServerHelloMessage(
                ServerHelloPayload(
                    connection_id=self._connection_id,
                    server_id=self._server.id,
                    name=self._server.name,
                )
            )
        )

    async def _run_message_loop(self) -> None:
        """Run the main message processing loop."""
        receive_task: asyncio.Task[WSMessage] | None = None
        try:
            while not self._wsock.closed:
                # Wait for either a message or the writer task to complete (meaning the
                # client disconnected or errored)
                receive_task = self._server.loop.create_task(self._wsock.receive())
                assert self._writer_task is not None  # for type checking
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

                self.handle_text(cast("str", msg.data))
            self._logger.debug("wsock was closed")

        except asyncio.CancelledError:
            self._logger.debug("Connection closed by client")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            if receive_task and not receive_task.done():
                _ = receive_task.cancel()

    def handle_text(self, data: str) -> None:
        """Decode and handle one text frame, malformed input is logged and dropped."""
        try:
            message = ClientMessage.from_json(data)
        except MissingField as err:
            self._logger.warning("Dropping message with missing field: %s", err)
            return
        except Exception:
            self._logger.exception("error parsing message")
            return

        try:
            self._handle_message(message)
        except AuthError as err:
            self._logger.warning("Rejected %s: %s", type(message).__name__, err)
            if isinstance(message, JoinClientMessage):
                self.send_message(JoinFailedServerMessage(JoinFailedPayload(reason=err.reason)))
            else:
                self.send_message(ErrorMessageServerMessage(ErrorMessagePayload(str(err))))
        except ValidationError as err:
            self._logger.warning("Ignoring invalid %s: %s", type(message).__name__, err)

    def _handle_message(self, message: ClientMessage) -> None:  # noqa: PLR0912
        """Handle an incoming message from the client."""
        registry = self._server.registry
        queue = self._server.queue
        relay = self._server.relay
        conn_id = self._connection_id
        match message:
            # Core messages
            case TimeRequestMessage(payload):
                self.send_message(
                    TimeResponseMessage(
                        TimeResponsePayload(
                            client_sent_at=payload.client_sent_at,
                            server_time=registry.now(),
                        )
                    )
                )
            # Room messages
            case CreateRoomClientMessage(payload):
                registry.create_room(
                    payload.room_id, RoomSettings.from_payload(payload.settings), conn_id
                )
            case JoinClientMessage(payload):
                registry.join(payload.room_id, payload.password, conn_id)
            case LeaveRoomClientMessage(payload):
                registry.leave(payload.room_id, conn_id)
            case AnnounceClientMessage(payload):
                registry.announce(payload.room_id, conn_id, payload.name, payload.avatar)
            case UpdateSettingsClientMessage(payload):
                registry.update_settings(payload.room_id, conn_id, payload.settings)
            case ChatMessageClientMessage(payload):
                registry.post_chat(
                    payload.room_id,
                    conn_id,
                    payload.text,
                    name=payload.name,
                    at=payload.at,
                    avatar=payload.avatar,
                )
            # Queue messages
            case SetSourceClientMessage(payload):
                queue.set_source(payload.room_id, conn_id, payload.url)
            case EnqueueClientMessage(payload):
                queue.enqueue(payload.room_id, conn_id, payload.item)
            case ReorderQueueClientMessage(payload):
                queue.reorder(payload.room_id, conn_id, payload.new_order)
            case RemoveFromQueueClientMessage(payload):
                queue.remove_at(payload.room_id, conn_id, payload.index)
            case RequestQueueClientMessage(payload):
                self.send_message(
                    QueueUpdatedServerMessage(
                        QueueUpdatedPayload(queue=queue.request_queue(payload.room_id))
                    )
                )
            case NextClientMessage(payload) | VideoEndedClientMessage(payload):
                queue.advance(payload.room_id)
            # Playback messages
            case ControlClientMessage(payload):
                relay.relay_control(payload.room_id, conn_id, payload.msg)
            case SendStateToClientMessage(payload):
                relay.relay_directed_state(payload.to, payload.state)
            case _:
                self._logger.debug("Unhandled client message type: %s", type(message).__name__)

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        # Exceptions if socket disconnected or cancelled by connection handler
        try:
            while not self._wsock.closed and not self._closing:
                item = await self._to_write.get()
                if isinstance(item, TimeResponseMessage):
                    item.payload.server_time = self._server.registry.now()
                try:
                    await self._wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
            self._logger.debug("WebSocket Connection was closed, ending writer task")
        except Exception:
            self._logger.exception("Error in writer task")

    def send_message(self, message: ServerMessage) -> None:
        """
        Enqueue a message to be sent to the client.

        Messages are dropped once MAX_PENDING_MSG messages are waiting, delivery
        is at most once.
        """
        if self._closing:
            return
        if not isinstance(message, TimeResponseMessage):
            self._logger.debug("Enqueueing message: %s", type(message).__name__)
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning("Outgoing queue full, dropping %s", type(message).__name__)
