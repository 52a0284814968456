"""
Playback control messages for the watch party protocol.

Any member may drive play, pause and seek of the current source. Events are
stamped by the sender and relayed verbatim, receivers compensate for the time
spent in transit using their own clock offset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ControlType, ServerMessage


@dataclass(frozen=True)
class PlaybackEvent(DataClassORJSONMixin):
    """A play, pause or seek of the current source."""

    type: ControlType
    at: float | None = None
    """Position in the source in seconds at the time the event was generated."""
    sent_at: float | None = field(default=None, metadata=field_options(alias="sentAt"))
    """Send time in epoch seconds as estimated on the server clock by the sender."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


# Client -> Server: control
@dataclass
class ControlPayload(DataClassORJSONMixin):
    """Playback event for a room."""

    room_id: str = field(metadata=field_options(alias="roomId"))
    msg: PlaybackEvent

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ControlClientMessage(ClientMessage):
    """Message sent by a member whose player was played, paused or seeked."""

    payload: ControlPayload
    type: Literal["control"] = "control"


# Server -> Client: control
@dataclass
class ControlServerMessage(ServerMessage):
    """Playback event relayed to room members or pushed to a single member."""

    payload: PlaybackEvent
    type: Literal["control"] = "control"


# Server -> Client: request_state
@dataclass
class RequestStatePayload(DataClassORJSONMixin):
    """Connection waiting for the current playback state."""

    to: str


@dataclass
class RequestStateServerMessage(ServerMessage):
    """Message sent to the host when a new member joined its room."""

    payload: RequestStatePayload
    type: Literal["request_state"] = "request_state"


# Client -> Server: send_state_to
@dataclass
class SendStateToPayload(DataClassORJSONMixin):
    """Playback state pushed by the host to a single connection."""

    to: str
    state: PlaybackEvent


@dataclass
class SendStateToClientMessage(ClientMessage):
    """Message sent by the host in reply to request_state."""

    payload: SendStateToPayload
    type: Literal["send_state_to"] = "send_state_to"
