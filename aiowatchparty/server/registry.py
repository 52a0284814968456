"""Process-wide table of active rooms, their membership and their host."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from aiowatchparty.models.control import RequestStatePayload, RequestStateServerMessage
from aiowatchparty.models.queue import SetSourcePayload, SetSourceServerMessage
from aiowatchparty.models.room import (
    ChatEntryPayload,
    ChatHistoryPayload,
    ChatHistoryServerMessage,
    ChatMessageServerMessage,
    ParticipantsServerMessage,
    RoomSettingsPatch,
    RoomSettingsServerMessage,
    YouAreHostServerMessage,
)
from aiowatchparty.models.types import AuthFailureReason, ServerMessage, UploadPolicy
from aiowatchparty.utils import normalize_room_id

from .errors import AuthError, ValidationError
from .room import DEFAULT_MEMBER_NAME, MemberInfo, Room, RoomSettings

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    """Transport used by the registry to reach a single connection."""

    def send_to(self, connection_id: str, message: ServerMessage) -> None:
        """Enqueue ``message`` for the connection, unknown connections are ignored."""


class Action(Enum):
    """Room mutations that are gated by the host."""

    CHANGE_SOURCE = "change_source"
    """Replace the current source, open to everyone when allowUpload is all."""
    UPDATE_SETTINGS = "update_settings"
    EDIT_QUEUE = "edit_queue"
    """Reorder the queue or remove items from it."""


class RoomRegistry:
    """
    Registry of all rooms of one server process.

    All methods run to completion without suspending, so callers on a single
    event loop get serialized access to every room without locking.
    """

    _rooms: dict[str, Room]
    _sender: MessageSender
    _clock: Callable[[], float]

    def __init__(self, sender: MessageSender, clock: Callable[[], float] = time.time) -> None:
        """
        Initialize an empty registry.

        Args:
            sender: Transport used to deliver directed messages and broadcasts.
            clock: Source of epoch seconds for server side timestamps.
        """
        self._rooms = {}
        self._sender = sender
        self._clock = clock

    @property
    def rooms(self) -> Mapping[str, Room]:
        """Read-only view of the active rooms by id."""
        return MappingProxyType(self._rooms)

    def get_room(self, room_id: str) -> Room | None:
        """Return the room with the given id without creating it."""
        return self._rooms.get(normalize_room_id(room_id))

    def get_or_create_room(self, room_id: str) -> Room:
        """
        Return the room with the given id, creating it with default settings if needed.

        Raises:
            ValidationError: The room id is blank.
        """
        room_id = normalize_room_id(room_id)
        if not room_id:
            raise ValidationError("room id is empty")
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id)
            self._rooms[room_id] = room
            logger.info("Room %s created", room_id)
        return room

    def visit_room(self, room_id: str, connection_id: str) -> Room:
        """
        Return the room for a write by a connection that need not be a member.

        While the room has no members the connection is remembered, so the room
        is dropped again when that connection disconnects.
        """
        room = self.get_or_create_room(room_id)
        if not room.members:
            room.visitors.add(connection_id)
        return room

    def now(self) -> float:
        """Return the current server time in epoch seconds."""
        return self._clock()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def create_room(self, room_id: str, settings: RoomSettings, connection_id: str) -> Room:
        """
        Create a room with the requester as host.

        Creating a room that already exists takes it over: the requester becomes
        host and the settings are replaced.
        """
        room = self.get_or_create_room(room_id)
        room.settings = settings
        room.add_member(connection_id)
        if room.host not in (None, connection_id):
            logger.info("Room %s taken over by %s from %s", room.room_id, connection_id, room.host)
        room.host = connection_id
        logger.info("Room %s set up by %s", room.room_id, connection_id)

        self.send(connection_id, YouAreHostServerMessage())
        self._send_chat_history(room, connection_id)
        self.broadcast(room, ParticipantsServerMessage(room.participants()))
        self.broadcast(room, RoomSettingsServerMessage(room.settings.to_payload()))
        return room

    def join(self, room_id: str, password: str | None, connection_id: str) -> Room:
        """
        Add a connection to a room, creating the room if it does not exist.

        Raises:
            AuthError: The room has a password and ``password`` does not match.
        """
        room = self.get_or_create_room(room_id)
        if room.settings.password and room.settings.password != password:
            logger.warning("Rejected %s from room %s: incorrect password", connection_id, room_id)
            raise AuthError(AuthFailureReason.INCORRECT_PASSWORD)

        room.add_member(connection_id)
        if room.host is None:
            room.host = connection_id
            logger.info("%s is now host of room %s", connection_id, room.room_id)
            self.send(connection_id, YouAreHostServerMessage())
        elif room.host != connection_id:
            # The host pushes its playback state to the newcomer via send_state_to
            self.send(room.host, RequestStateServerMessage(RequestStatePayload(to=connection_id)))

        self._send_chat_history(room, connection_id)
        self.send(connection_id, RoomSettingsServerMessage(room.settings.to_payload()))
        if room.current_source is not None:
            self.send(connection_id, SetSourceServerMessage(SetSourcePayload(room.current_source)))
        self.broadcast(room, ParticipantsServerMessage(room.participants()))
        logger.info("%s joined room %s", connection_id, room.room_id)
        return room

    def leave(self, room_id: str, connection_id: str) -> None:
        """
        Remove a connection from a room.

        Elects a new host when the host leaves and deletes the room as soon as
        its last member is gone.
        """
        room = self.get_room(room_id)
        if room is None:
            logger.debug("%s left unknown room %s", connection_id, room_id)
            return

        room.remove_member(connection_id)
        if room.host == connection_id:
            new_host = self._elect_host(room)
            logger.info(
                "Host %s left room %s, new host: %s", connection_id, room.room_id, new_host
            )

        if not room.members:
            logger.info("Room %s is empty, deleting it", room.room_id)
            del self._rooms[room.room_id]
            return

        self.broadcast(room, ParticipantsServerMessage(room.participants()))
        logger.info("%s left room %s", connection_id, room.room_id)

    def disconnect(self, connection_id: str) -> None:
        """Remove a closed connection from every room it was part of."""
        for room in list(self._rooms.values()):
            visited = connection_id in room.visitors
            room.visitors.discard(connection_id)
            if room.is_member(connection_id) or connection_id in room.member_info:
                self.leave(room.room_id, connection_id)
            elif visited and not room.members and not room.visitors:
                logger.info("Room %s was never joined, deleting it", room.room_id)
                del self._rooms[room.room_id]

    def announce(
        self, room_id: str, connection_id: str, name: str | None, avatar: str | None
    ) -> Room:
        """Store the display name and avatar of a connection, membership is unchanged."""
        room = self.get_or_create_room(room_id)
        room.member_info[connection_id] = MemberInfo(name=name or DEFAULT_MEMBER_NAME, avatar=avatar)
        self.broadcast(room, ParticipantsServerMessage(room.participants()))
        return room

    def _elect_host(self, room: Room) -> str | None:
        """Make the longest present member host of the room and notify it."""
        room.host = room.members[0] if room.members else None
        if room.host is not None:
            self.send(room.host, YouAreHostServerMessage())
        return room.host

    # ------------------------------------------------------------------
    # Settings and permissions
    # ------------------------------------------------------------------
    def update_settings(
        self, room_id: str, connection_id: str, patch: RoomSettingsPatch
    ) -> Room | None:
        """
        Merge ``patch`` into the room settings and broadcast the result.

        Raises:
            AuthError: The connection is not the host of the room.
        """
        room = self.get_room(room_id)
        if room is None:
            logger.debug("Ignoring settings update for unknown room %s", room_id)
            return None
        self.require(
            room_id, connection_id, Action.UPDATE_SETTINGS, "only host can update settings"
        )

        room.settings.apply(patch)
        logger.info(
            "Room %s settings updated: password=%s, allow_upload=%s",
            room.room_id,
            "set" if room.settings.password else "none",
            room.settings.allow_upload.value,
        )
        self.broadcast(room, RoomSettingsServerMessage(room.settings.to_payload()))
        self.broadcast(room, ParticipantsServerMessage(room.participants()))
        return room

    def is_allowed(self, room_id: str, connection_id: str, action: Action) -> bool:
        """Return True if the connection may perform ``action`` in the room."""
        room = self.get_room(room_id)
        if room is None:
            return False
        if room.host == connection_id:
            return True
        return action is Action.CHANGE_SOURCE and room.settings.allow_upload is UploadPolicy.ALL

    def require(self, room_id: str, connection_id: str, action: Action, message: str) -> None:
        """
        Raise unless the connection may perform ``action`` in the room.

        Raises:
            AuthError: With NOT_ALLOWED for source changes and NOT_HOST otherwise.
        """
        if self.is_allowed(room_id, connection_id, action):
            return
        reason = (
            AuthFailureReason.NOT_ALLOWED
            if action is Action.CHANGE_SOURCE
            else AuthFailureReason.NOT_HOST
        )
        raise AuthError(reason, message)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    def post_chat(
        self,
        room_id: str,
        connection_id: str,
        text: str,
        *,
        name: str | None = None,
        at: float | None = None,
        avatar: str | None = None,
    ) -> ChatEntryPayload:
        """Append a line to the room chat and broadcast it."""
        room = self.visit_room(room_id, connection_id)
        entry = ChatEntryPayload(
            text=text,
            name=name or DEFAULT_MEMBER_NAME,
            at=at if at is not None else self.now(),
            avatar=avatar,
            from_=connection_id,
        )
        room.chat_history.append(entry)
        self.broadcast(room, ChatMessageServerMessage(entry))
        return entry

    def _send_chat_history(self, room: Room, connection_id: str) -> None:
        self.send(
            connection_id,
            ChatHistoryServerMessage(ChatHistoryPayload(messages=list(room.chat_history))),
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    def send(self, connection_id: str, message: ServerMessage) -> None:
        """Send a directed message to one connection."""
        self._sender.send_to(connection_id, message)

    def broadcast(self, room: Room, message: ServerMessage) -> None:
        """Send a message to every member of the room."""
        for connection_id in list(room.members):
            self._sender.send_to(connection_id, message)

    def summary(self) -> list[dict[str, Any]]:
        """Return an overview of every room for diagnostics."""
        return [
            {
                "id": room.room_id,
                "host": room.host,
                "count": len(room.members),
                "settings": {
                    "password": room.settings.password is not None,
                    "allowUpload": room.settings.allow_upload.value,
                },
                "source": room.current_source,
                "messages": len(room.chat_history),
                "queue": len(room.queue),
            }
            for room in self._rooms.values()
        ]
