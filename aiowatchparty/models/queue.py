"""
Queue messages for the watch party protocol.

This module contains the messages that manage what a room plays: the shared
queue of pending sources and the source that is currently playing. Anyone can
add to the queue or advance it, reordering and removing is reserved for the
host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .room import RoomRefPayload
from .types import ClientMessage, ServerMessage


# Shared queue entry
@dataclass(frozen=True)
class QueueItem(DataClassORJSONMixin):
    """A source waiting in the queue of a room."""

    url: str
    """URI of the source."""
    title: str | None = None
    uploaded_by: str | None = field(default=None, metadata=field_options(alias="uploadedBy"))
    """Display name of the member that added this item."""
    at: float | None = None
    """Server time in epoch seconds when the item was enqueued."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


# Client -> Server: enqueue
@dataclass
class EnqueueItemPayload(DataClassORJSONMixin):
    """Item submitted by a member, the url is validated by the server."""

    url: str | None = None
    title: str | None = None
    uploaded_by: str | None = field(default=None, metadata=field_options(alias="uploadedBy"))

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass
class EnqueuePayload(DataClassORJSONMixin):
    """Request to append an item to the queue."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    item: EnqueueItemPayload = field(default_factory=EnqueueItemPayload)

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class EnqueueClientMessage(ClientMessage):
    """Message sent by the client to add a source to the queue."""

    payload: EnqueuePayload
    type: Literal["enqueue"] = "enqueue"


# Client -> Server: reorder_queue
@dataclass
class ReorderQueuePayload(DataClassORJSONMixin):
    """Complete new order of the queue."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    new_order: list[QueueItem] = field(metadata=field_options(alias="newOrder"))

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ReorderQueueClientMessage(ClientMessage):
    """Message sent by the host to replace the queue."""

    payload: ReorderQueuePayload
    type: Literal["reorder_queue"] = "reorder_queue"


# Client -> Server: remove_from_queue
@dataclass
class RemoveFromQueuePayload(DataClassORJSONMixin):
    """Index of the queue item to remove."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    index: int

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class RemoveFromQueueClientMessage(ClientMessage):
    """Message sent by the host to drop an item from the queue."""

    payload: RemoveFromQueuePayload
    type: Literal["remove_from_queue"] = "remove_from_queue"


# Client -> Server: request_queue, next, video_ended
@dataclass
class RequestQueueClientMessage(ClientMessage):
    """Message sent by the client to receive the current queue."""

    payload: RoomRefPayload
    type: Literal["request_queue"] = "request_queue"


@dataclass
class NextClientMessage(ClientMessage):
    """Message sent by any member to skip to the next queued source."""

    payload: RoomRefPayload
    type: Literal["next"] = "next"


@dataclass
class VideoEndedClientMessage(ClientMessage):
    """Message sent by a member whose current source finished playing."""

    payload: RoomRefPayload
    type: Literal["video_ended"] = "video_ended"


# Client -> Server: set_source
@dataclass
class SetSourceClientPayload(DataClassORJSONMixin):
    """Source to play immediately."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    url: str

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class SetSourceClientMessage(ClientMessage):
    """Message sent by the client to change the source of the room."""

    payload: SetSourceClientPayload
    type: Literal["set_source"] = "set_source"


# Server -> Client: set_source
@dataclass
class SetSourcePayload(DataClassORJSONMixin):
    """Source every member should load."""

    url: str


@dataclass
class SetSourceServerMessage(ServerMessage):
    """Message broadcast when the source of the room changes."""

    payload: SetSourcePayload
    type: Literal["set_source"] = "set_source"


# Server -> Client: queue_updated
@dataclass
class QueueUpdatedPayload(DataClassORJSONMixin):
    """Snapshot of the queue, front item plays next."""

    queue: list[QueueItem]


@dataclass
class QueueUpdatedServerMessage(ServerMessage):
    """Message broadcast whenever the queue changes."""

    payload: QueueUpdatedPayload
    type: Literal["queue_updated"] = "queue_updated"
