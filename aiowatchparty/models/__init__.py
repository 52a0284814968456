"""Models for the watch party protocol."""

from __future__ import annotations

__all__ = [
    "AuthFailureReason",
    "ClientMessage",
    "ControlType",
    "PlaybackEvent",
    "QueueItem",
    "ServerMessage",
    "UploadPolicy",
    "control",
    "core",
    "queue",
    "room",
    "types",
]

# Importing every message module registers the subclasses used by the
# "type" discriminator of ClientMessage and ServerMessage.
from . import control, core, queue, room, types
from .control import PlaybackEvent
from .queue import QueueItem
from .types import AuthFailureReason, ClientMessage, ControlType, ServerMessage, UploadPolicy
