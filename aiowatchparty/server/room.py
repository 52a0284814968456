"""In-memory state of a single room."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from aiowatchparty.models.control import PlaybackEvent
from aiowatchparty.models.queue import QueueItem
from aiowatchparty.models.room import (
    ChatEntryPayload,
    ParticipantPayload,
    ParticipantsPayload,
    RoomSettingsPatch,
    RoomSettingsPayload,
)
from aiowatchparty.models.types import UndefinedField, UploadPolicy

CHAT_HISTORY_LIMIT = 200
DEFAULT_MEMBER_NAME = "Anon"


@dataclass
class RoomSettings:
    """Settings of a room, controlled by its host."""

    password: str | None = None
    """Shared secret required to join, None for an open room."""
    allow_upload: UploadPolicy = UploadPolicy.HOST
    """Who may change the source."""

    @classmethod
    def from_payload(cls, payload: RoomSettingsPayload) -> RoomSettings:
        """Build settings from a create_room request, empty passwords mean no password."""
        return cls(password=payload.password or None, allow_upload=payload.allow_upload)

    def apply(self, patch: RoomSettingsPatch) -> None:
        """Merge the defined fields of ``patch`` into these settings."""
        if not isinstance(patch.password, UndefinedField):
            self.password = patch.password or None
        if not isinstance(patch.allow_upload, UndefinedField):
            self.allow_upload = patch.allow_upload

    def to_payload(self) -> RoomSettingsPayload:
        """Return the settings as sent to clients."""
        return RoomSettingsPayload(password=self.password, allow_upload=self.allow_upload)


@dataclass
class MemberInfo:
    """Display information announced by a connection."""

    name: str = DEFAULT_MEMBER_NAME
    avatar: str | None = None


@dataclass
class Room:
    """
    A watch party session.

    Rooms are owned by the RoomRegistry, which is the only place that mutates
    membership and host. The queue is mutated by the QueueManager and the last
    control event by the PlaybackControlRelay.
    """

    room_id: str
    """Normalized identifier of the room."""
    settings: RoomSettings = field(default_factory=RoomSettings)
    host: str | None = None
    """Connection id of the host, always a member or None."""
    members: list[str] = field(default_factory=list)
    """Connection ids in the order they entered the room."""
    member_info: dict[str, MemberInfo] = field(default_factory=dict)
    """Announced display information by connection id."""
    queue: list[QueueItem] = field(default_factory=list)
    """Pending sources, the front item plays next."""
    current_source: str | None = None
    """URI of the source that was dispatched last."""
    last_control: PlaybackEvent | None = None
    """Most recent playback event relayed to the room."""
    chat_history: deque[ChatEntryPayload] = field(
        default_factory=lambda: deque(maxlen=CHAT_HISTORY_LIMIT)
    )
    """Recent chat lines, the oldest are evicted first."""
    visitors: set[str] = field(default_factory=set)
    """Connections that wrote to the room while it had no members."""

    def is_member(self, connection_id: str) -> bool:
        """Return True if the connection is in this room."""
        return connection_id in self.members

    def add_member(self, connection_id: str) -> None:
        """Add a connection, adding it twice has no effect."""
        if connection_id not in self.members:
            self.members.append(connection_id)

    def remove_member(self, connection_id: str) -> None:
        """Remove a connection and its display information."""
        if connection_id in self.members:
            self.members.remove(connection_id)
        self.member_info.pop(connection_id, None)

    def display_name(self, connection_id: str) -> str:
        """Return the announced name of a connection."""
        info = self.member_info.get(connection_id)
        return info.name if info is not None else DEFAULT_MEMBER_NAME

    def participants(self) -> ParticipantsPayload:
        """Return the membership as broadcast to clients."""
        return ParticipantsPayload(
            count=len(self.members),
            participants=[
                ParticipantPayload(id=connection_id, name=info.name, avatar=info.avatar)
                for connection_id, info in self.member_info.items()
            ],
        )
