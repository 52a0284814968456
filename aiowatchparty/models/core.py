"""Core messages for the watch party protocol.

This module contains the messages that establish communication between clients
and the server: the greeting that hands a connection its identifier, clock
synchronization probes, and the generic error notice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ServerMessage


# Server -> Client: server_hello
@dataclass
class ServerHelloPayload(DataClassORJSONMixin):
    """Information about the server and the connection."""

    connection_id: str = field(metadata=field_options(alias="connectionId"))
    """Identifier the server uses for this connection."""
    server_id: str = field(metadata=field_options(alias="serverId"))
    """Identifier of the server."""
    name: str
    """Friendly name of the server."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class ServerHelloMessage(ServerMessage):
    """Message sent by the server as soon as a connection is established."""

    payload: ServerHelloPayload
    type: Literal["server_hello"] = "server_hello"


# Client -> Server: time_request
@dataclass
class TimeRequestPayload(DataClassORJSONMixin):
    """Clock probe sent by the client."""

    client_sent_at: float = field(metadata=field_options(alias="clientSentAt"))
    """Client local clock in epoch seconds when the probe was sent."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class TimeRequestMessage(ClientMessage):
    """Message sent by the client for clock synchronization."""

    payload: TimeRequestPayload
    type: Literal["time_request"] = "time_request"


# Server -> Client: time_response
@dataclass
class TimeResponsePayload(DataClassORJSONMixin):
    """Answer to a clock probe."""

    client_sent_at: float = field(metadata=field_options(alias="clientSentAt"))
    """Echo of the client timestamp from the time_request message."""
    server_time: float = field(metadata=field_options(alias="serverTime"))
    """Server clock in epoch seconds when the probe was answered."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class TimeResponseMessage(ServerMessage):
    """Message sent by the server in reply to a time_request."""

    payload: TimeResponsePayload
    type: Literal["time_response"] = "time_response"


# Server -> Client: error_message
@dataclass
class ErrorMessagePayload(DataClassORJSONMixin):
    """Human readable explanation of a rejected action."""

    message: str


@dataclass
class ErrorMessageServerMessage(ServerMessage):
    """Message sent to the acting connection when an action was rejected."""

    payload: ErrorMessagePayload
    type: Literal["error_message"] = "error_message"
