"""Public interface for the watch party client package."""

from .client import (
    ChatCallback,
    ControlCallback,
    ErrorCallback,
    HostCallback,
    ParticipantsCallback,
    QueueCallback,
    ServerInfo,
    SettingsCallback,
    SourceCallback,
    WatchPartyClient,
)
from .corrector import AdjustOutcome, CorrectorConfig, CorrectorState, PlaybackCorrector
from .player import SimulatedPlayer, VideoPlayer
from .time_sync import ClockSyncEstimator

__all__ = [
    "AdjustOutcome",
    "ChatCallback",
    "ClockSyncEstimator",
    "ControlCallback",
    "CorrectorConfig",
    "CorrectorState",
    "ErrorCallback",
    "HostCallback",
    "ParticipantsCallback",
    "PlaybackCorrector",
    "QueueCallback",
    "ServerInfo",
    "SettingsCallback",
    "SimulatedPlayer",
    "SourceCallback",
    "VideoPlayer",
    "WatchPartyClient",
]
