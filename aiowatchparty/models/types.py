"""Base message classes and enum types used by the watch party protocol."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for client messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for server messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Helpers for discerning between null and undefined fields in messages
@dataclass
class UndefinedField(DataClassORJSONMixin):
    """Marker type to indicate undefined fields in messages."""


_UNDEFINED_SINGLETON = UndefinedField()


def undefined_field() -> UndefinedField:
    """Return the singleton UndefinedField instance."""
    return _UNDEFINED_SINGLETON


# Enums


class ControlType(Enum):
    """Playback control actions relayed between viewers."""

    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"


class UploadPolicy(Enum):
    """Who may change the source of a room."""

    HOST = "host"
    """Only the host may change the source."""
    ALL = "all"
    """Every member may change the source."""


class AuthFailureReason(Enum):
    """Reasons an action was rejected for the acting connection."""

    INCORRECT_PASSWORD = "incorrect_password"
    """The room password did not match."""
    NOT_HOST = "not_host"
    """The action is reserved for the host."""
    NOT_ALLOWED = "not_allowed"
    """The room settings do not allow this member to change the source."""
