"""aiowatchparty: rooms, shared queues and playback sync for watching videos together."""

from __future__ import annotations

# Re-export client library for easy import
from aiowatchparty.client import (
    ClockSyncEstimator,
    CorrectorConfig,
    PlaybackCorrector,
    ServerInfo,
    SimulatedPlayer,
    VideoPlayer,
    WatchPartyClient,
)
from aiowatchparty.server import WatchPartyServer

__all__ = [
    "ClockSyncEstimator",
    "CorrectorConfig",
    "PlaybackCorrector",
    "ServerInfo",
    "SimulatedPlayer",
    "VideoPlayer",
    "WatchPartyClient",
    "WatchPartyServer",
]
