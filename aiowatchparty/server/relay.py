"""Relays playback control events between the members of a room."""

from __future__ import annotations

import logging

from aiowatchparty.models.control import ControlServerMessage, PlaybackEvent

from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class PlaybackControlRelay:
    """
    Forwards play, pause and seek events to every member of a room.

    Any member may drive the playback of the current source. Events are
    forwarded verbatim, including back to the sender, and the last one is
    cached on the room.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        """Initialize the relay on top of ``registry``."""
        self._registry = registry

    def relay_control(self, room_id: str, connection_id: str, event: PlaybackEvent) -> None:
        """Store ``event`` as the last control of the room and broadcast it."""
        room = self._registry.get_room(room_id)
        if room is None:
            logger.debug("Dropping %s control for unknown room %s", event.type.value, room_id)
            return
        room.last_control = event
        logger.debug(
            "Relaying %s at %s from %s to room %s",
            event.type.value,
            event.at,
            connection_id,
            room.room_id,
        )
        self._registry.broadcast(room, ControlServerMessage(event))

    def relay_directed_state(self, target_connection_id: str, state: PlaybackEvent) -> None:
        """Push a playback state to a single connection, usually a member that just joined."""
        logger.debug("Sending %s state to %s", state.type.value, target_connection_id)
        self._registry.send(target_connection_id, ControlServerMessage(state))

    def last_control(self, room_id: str) -> PlaybackEvent | None:
        """Return the most recent event relayed to the room."""
        room = self._registry.get_room(room_id)
        return room.last_control if room is not None else None
