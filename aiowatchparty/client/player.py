"""Local video player abstraction driven by the playback corrector."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol


class VideoPlayer(Protocol):
    """Minimal surface of a local player that can be kept in sync."""

    @property
    def current_time(self) -> float:
        """Playback position in seconds."""

    @property
    def paused(self) -> bool:
        """True while playback is paused."""

    @property
    def playback_rate(self) -> float:
        """Playback speed factor, 1.0 is normal speed."""

    def set_playback_rate(self, rate: float) -> None:
        """Change the playback speed factor."""

    def seek(self, position: float) -> None:
        """Jump to ``position`` seconds."""

    def play(self) -> None:
        """Start or resume playback."""

    def pause(self) -> None:
        """Pause playback."""


class SimulatedPlayer:
    """
    Player without output that advances its position with a clock.

    Used by the command line client and by tests. The position moves at
    ``playback_rate`` seconds per clock second while playing.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Create a paused player at position 0."""
        self._clock = clock
        self._position = 0.0
        self._anchor = clock()
        self._paused = True
        self._rate = 1.0
        self.source: str | None = None
        self.seek_count = 0
        """Number of discontinuous position changes, for diagnostics."""

    def _settle(self) -> None:
        """Fold the time played since the last change into the position."""
        now = self._clock()
        if not self._paused:
            self._position += (now - self._anchor) * self._rate
        self._anchor = now

    @property
    def current_time(self) -> float:
        """Playback position in seconds."""
        if self._paused:
            return self._position
        return self._position + (self._clock() - self._anchor) * self._rate

    @property
    def paused(self) -> bool:
        """True while playback is paused."""
        return self._paused

    @property
    def playback_rate(self) -> float:
        """Playback speed factor."""
        return self._rate

    def set_playback_rate(self, rate: float) -> None:
        """Change the playback speed factor."""
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._settle()
        self._rate = rate

    def seek(self, position: float) -> None:
        """Jump to ``position`` seconds."""
        self._settle()
        self._position = max(0.0, position)
        self.seek_count += 1

    def play(self) -> None:
        """Start or resume playback."""
        self._settle()
        self._paused = False

    def pause(self) -> None:
        """Pause playback."""
        self._settle()
        self._paused = True

    def load(self, url: str) -> None:
        """Load a new source and rewind to the start."""
        self.source = url
        self._settle()
        self._position = 0.0
        self._rate = 1.0
