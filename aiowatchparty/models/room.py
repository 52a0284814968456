"""
Room messages for the watch party protocol.

This module contains the messages that manage room membership: creating and
joining rooms, announcing display information, changing room settings and the
room chat. The server answers with membership, settings and chat broadcasts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import (
    AuthFailureReason,
    ClientMessage,
    ServerMessage,
    UndefinedField,
    UploadPolicy,
    undefined_field,
)


# Shared settings object
@dataclass
class RoomSettingsPayload(DataClassORJSONMixin):
    """Settings of a room."""

    password: str | None = None
    """Shared secret required to join, None for an open room."""
    allow_upload: UploadPolicy = field(
        default=UploadPolicy.HOST, metadata=field_options(alias="allowUpload")
    )
    """Who may change the source of the room."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class RoomSettingsPatch(DataClassORJSONMixin):
    """Partial settings update, only defined fields are applied."""

    password: str | None | UndefinedField = field(default_factory=undefined_field)
    allow_upload: UploadPolicy | UndefinedField = field(
        default_factory=undefined_field, metadata=field_options(alias="allowUpload")
    )

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_default = True
        serialize_by_alias = True


# Client -> Server: create_room
@dataclass
class CreateRoomPayload(DataClassORJSONMixin):
    """Request to create (or take over) a room."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    settings: RoomSettingsPayload = field(default_factory=RoomSettingsPayload)

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class CreateRoomClientMessage(ClientMessage):
    """Message sent by the client to create a room and become its host."""

    payload: CreateRoomPayload
    type: Literal["create_room"] = "create_room"


# Client -> Server: join
@dataclass
class JoinPayload(DataClassORJSONMixin):
    """Request to join a room."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    password: str | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class JoinClientMessage(ClientMessage):
    """Message sent by the client to join a room."""

    payload: JoinPayload
    type: Literal["join"] = "join"


# Shared payload for messages that only carry a room id
@dataclass
class RoomRefPayload(DataClassORJSONMixin):
    """Reference to a room."""

    room_id: str = field(metadata=field_options(alias="roomId"))

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


# Client -> Server: leave_room
@dataclass
class LeaveRoomClientMessage(ClientMessage):
    """Message sent by the client to leave a room."""

    payload: RoomRefPayload
    type: Literal["leave_room"] = "leave_room"


# Client -> Server: announce
@dataclass
class AnnouncePayload(DataClassORJSONMixin):
    """Display information of a member."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    name: str | None = None
    avatar: str | None = None
    """Reference to an avatar image, stored outside of this server."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class AnnounceClientMessage(ClientMessage):
    """Message sent by the client to publish its display name and avatar."""

    payload: AnnouncePayload
    type: Literal["announce"] = "announce"


# Client -> Server: update_settings
@dataclass
class UpdateSettingsPayload(DataClassORJSONMixin):
    """Settings change requested by the host."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    settings: RoomSettingsPatch = field(default_factory=RoomSettingsPatch)

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class UpdateSettingsClientMessage(ClientMessage):
    """Message sent by the host to change the room settings."""

    payload: UpdateSettingsPayload
    type: Literal["update_settings"] = "update_settings"


# Client -> Server: chat_message
@dataclass
class ChatMessageClientPayload(DataClassORJSONMixin):
    """Chat line posted by a member."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    text: str = ""
    name: str | None = None
    at: float | None = None
    """Client timestamp in epoch seconds, the server time is used if missing."""
    avatar: str | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ChatMessageClientMessage(ClientMessage):
    """Message sent by the client to post in the room chat."""

    payload: ChatMessageClientPayload
    type: Literal["chat_message"] = "chat_message"


# Server -> Client: you_are_host
@dataclass
class YouAreHostServerMessage(ServerMessage):
    """Message sent to the connection that just became host of a room."""

    type: Literal["you_are_host"] = "you_are_host"


# Server -> Client: join_failed
@dataclass
class JoinFailedPayload(DataClassORJSONMixin):
    """Why a join was rejected."""

    reason: AuthFailureReason


@dataclass
class JoinFailedServerMessage(ServerMessage):
    """Message sent to a connection whose join was rejected."""

    payload: JoinFailedPayload
    type: Literal["join_failed"] = "join_failed"


# Server -> Client: participants
@dataclass
class ParticipantPayload(DataClassORJSONMixin):
    """Display information of a single member."""

    id: str
    """Connection identifier of the member."""
    name: str
    avatar: str | None = None


@dataclass
class ParticipantsPayload(DataClassORJSONMixin):
    """Current membership of a room."""

    count: int
    """Number of connections in the room."""
    participants: list[ParticipantPayload] = field(metadata=field_options(alias="list"))
    """Announced members."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ParticipantsServerMessage(ServerMessage):
    """Message broadcast whenever the membership of a room changes."""

    payload: ParticipantsPayload
    type: Literal["participants"] = "participants"


# Server -> Client: room_settings
@dataclass
class RoomSettingsServerMessage(ServerMessage):
    """Message broadcast with the current settings of a room."""

    payload: RoomSettingsPayload
    type: Literal["room_settings"] = "room_settings"


# Server -> Client: chat_message and chat_history
@dataclass
class ChatEntryPayload(DataClassORJSONMixin):
    """Chat line as stored and broadcast by the server."""

    text: str
    name: str
    at: float
    avatar: str | None = None
    from_: str | None = field(default=None, metadata=field_options(alias="from"))
    """Connection identifier of the author."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ChatMessageServerMessage(ServerMessage):
    """Message broadcast for every new chat line."""

    payload: ChatEntryPayload
    type: Literal["chat_message"] = "chat_message"


@dataclass
class ChatHistoryPayload(DataClassORJSONMixin):
    """Chat lines retained by the room, oldest first."""

    messages: list[ChatEntryPayload]


@dataclass
class ChatHistoryServerMessage(ServerMessage):
    """Message sent to a connection entering a room."""

    payload: ChatHistoryPayload
    type: Literal["chat_history"] = "chat_history"
