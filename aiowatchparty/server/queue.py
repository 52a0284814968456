"""Per-room playlist of pending sources and the currently dispatched source."""

from __future__ import annotations

import logging

from aiowatchparty.models.queue import (
    EnqueueItemPayload,
    QueueItem,
    QueueUpdatedPayload,
    QueueUpdatedServerMessage,
    SetSourcePayload,
    SetSourceServerMessage,
)

from .errors import ValidationError
from .registry import Action, RoomRegistry
from .room import Room

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Manages the queue of every room in a RoomRegistry.

    Anyone may enqueue and advance, reordering and removing is reserved for the
    host. Every change is broadcast to the room as the complete queue.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        """Initialize the manager on top of ``registry``."""
        self._registry = registry

    def enqueue(self, room_id: str, connection_id: str, item: EnqueueItemPayload) -> QueueItem:
        """
        Append an item to the queue of a room, creating the room if needed.

        Raises:
            ValidationError: The item has no url.
        """
        if not item.url:
            raise ValidationError(f"enqueue for room {room_id} without url")
        room = self._registry.visit_room(room_id, connection_id)
        queued = QueueItem(
            url=item.url,
            title=item.title,
            uploaded_by=item.uploaded_by or room.display_name(connection_id),
            at=self._registry.now(),
        )
        room.queue.append(queued)
        logger.info("Enqueued %s in room %s (%d items)", queued.url, room.room_id, len(room.queue))
        self._broadcast_queue(room)
        return queued

    def reorder(self, room_id: str, connection_id: str, new_order: list[QueueItem]) -> None:
        """
        Replace the queue of a room with ``new_order``.

        The new order is taken as is, it is not checked to be a permutation of
        the current queue.

        Raises:
            AuthError: The connection is not the host of the room.
        """
        room = self._registry.get_room(room_id)
        if room is None:
            logger.debug("Ignoring reorder for unknown room %s", room_id)
            return
        self._registry.require(
            room_id, connection_id, Action.EDIT_QUEUE, "only host can reorder queue"
        )
        room.queue = list(new_order)
        logger.debug("Queue of room %s reordered (%d items)", room.room_id, len(room.queue))
        self._broadcast_queue(room)

    def remove_at(self, room_id: str, connection_id: str, index: int) -> QueueItem | None:
        """
        Remove the item at ``index`` from the queue of a room.

        Out of range indexes are ignored.

        Raises:
            AuthError: The connection is not the host of the room.
        """
        room = self._registry.get_room(room_id)
        if room is None:
            logger.debug("Ignoring remove for unknown room %s", room_id)
            return None
        self._registry.require(
            room_id, connection_id, Action.EDIT_QUEUE, "only host can remove items"
        )
        if not 0 <= index < len(room.queue):
            logger.debug("Ignoring remove of index %d from room %s", index, room.room_id)
            return None
        removed = room.queue.pop(index)
        logger.debug("Removed %s from queue of room %s", removed.url, room.room_id)
        self._broadcast_queue(room)
        return removed

    def advance(self, room_id: str) -> QueueItem | None:
        """
        Dispatch the front item of the queue as the new source of the room.

        With an empty queue the (empty) queue is broadcast again and the
        current source is kept.
        """
        room = self._registry.get_room(room_id)
        if room is None:
            logger.debug("Ignoring advance for unknown room %s", room_id)
            return None
        if not room.queue:
            self._broadcast_queue(room)
            return None
        item = room.queue.pop(0)
        self._dispatch_source(room, item.url)
        self._broadcast_queue(room)
        logger.info("Room %s advanced to %s", room.room_id, item.url)
        return item

    def request_queue(self, room_id: str) -> list[QueueItem]:
        """Return a snapshot of the queue, empty for unknown rooms."""
        room = self._registry.get_room(room_id)
        if room is None:
            return []
        return list(room.queue)

    def set_source(self, room_id: str, connection_id: str, url: str) -> None:
        """
        Play ``url`` in the room right away, bypassing the queue.

        Raises:
            AuthError: The room only lets the host change the source.
        """
        room = self._registry.get_room(room_id)
        if room is None:
            logger.debug("Ignoring set_source for unknown room %s", room_id)
            return
        self._registry.require(
            room_id, connection_id, Action.CHANGE_SOURCE, "not allowed to set video source"
        )
        self._dispatch_source(room, url)
        logger.info("Source of room %s set to %s by %s", room.room_id, url, connection_id)

    def _dispatch_source(self, room: Room, url: str) -> None:
        room.current_source = url
        self._registry.broadcast(room, SetSourceServerMessage(SetSourcePayload(url=url)))

    def _broadcast_queue(self, room: Room) -> None:
        self._registry.broadcast(
            room, QueueUpdatedServerMessage(QueueUpdatedPayload(queue=list(room.queue)))
        )
