"""
Watch party server implementation to coordinate rooms of viewers.

WatchPartyServer is the core of the shared viewing experience, responsible for:
- Managing connected viewers and the rooms they are in
- Keeping one authoritative queue per room
- Relaying playback controls so every viewer can stay in sync
"""

__all__ = [
    "Action",
    "AuthError",
    "Connection",
    "MemberInfo",
    "PlaybackControlRelay",
    "QueueManager",
    "Room",
    "RoomRegistry",
    "RoomSettings",
    "ValidationError",
    "WatchPartyError",
    "WatchPartyServer",
]

from .connection import Connection
from .errors import AuthError, ValidationError, WatchPartyError
from .queue import QueueManager
from .registry import Action, RoomRegistry
from .relay import PlaybackControlRelay
from .room import MemberInfo, Room, RoomSettings
from .server import WatchPartyServer
