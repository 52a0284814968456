"""Keeps a local player converged onto the playback position of the room."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from aiowatchparty.models.control import PlaybackEvent
from aiowatchparty.models.types import ControlType

from .player import VideoPlayer
from .time_sync import ClockSyncEstimator

logger = logging.getLogger(__name__)


class CorrectorState(Enum):
    """States of the playback corrector."""

    IDLE = "idle"
    APPLYING_REMOTE = "applying_remote"
    """A remote event is being applied, local controls are not emitted."""
    SOFT_ADJUSTING = "soft_adjusting"
    """The playback rate is temporarily changed to close a small drift."""


class AdjustOutcome(Enum):
    """Result of a soft adjustment."""

    IN_SYNC = "in_sync"
    """Drift within tolerance, nothing changed besides the rate reset."""
    NUDGED = "nudged"
    """Playback rate changed, a deadline checks for convergence later."""
    SNAPPED = "snapped"
    """Drift too large, the position was set directly."""


@dataclass(slots=True)
class CorrectorConfig:
    """Tunable thresholds of the playback corrector, in seconds unless noted."""

    hard_tolerance: float = 0.6
    """Drift above which a playing stream is snapped instead of nudged."""
    soft_tolerance: float = 0.15
    """Drift that is accepted without any correction."""
    seek_threshold: float = 0.5
    """Drift above which a paused player is seeked before pausing or playing."""
    converged_tolerance: float = 0.2
    """Drift accepted when a nudge deadline expires."""
    max_adjust_duration: float = 2.0
    """How long a rate nudge may run before falling back to a snap."""
    rate_fast: float = 1.05
    """Playback rate factor used while behind the target."""
    rate_slow: float = 0.95
    """Playback rate factor used while ahead of the target."""
    suppress_window: float = 0.12
    """How long local player callbacks are ignored after applying a remote event."""

    def __post_init__(self) -> None:
        """Validate the thresholds."""
        if not 0 <= self.soft_tolerance <= self.hard_tolerance:
            raise ValueError("soft_tolerance must be between 0 and hard_tolerance")
        if self.max_adjust_duration <= 0:
            raise ValueError("max_adjust_duration must be positive")
        if self.suppress_window < 0:
            raise ValueError("suppress_window must not be negative")
        if not self.rate_slow < 1.0 < self.rate_fast:
            raise ValueError("rate_slow must be below 1 and rate_fast above 1")


class PlaybackCorrector:
    """
    Applies relayed playback events to a local player.

    Hard seeks are visible and may cause buffering, so a playing stream that
    drifted only a little is corrected by briefly changing the playback rate.
    While a remote event is applied, the player callbacks it triggers must not
    be sent back to the room: ``local_event`` returns None during that window.
    """

    def __init__(
        self,
        player: VideoPlayer,
        estimator: ClockSyncEstimator | None = None,
        *,
        config: CorrectorConfig | None = None,
        clock: Callable[[], float] = time.time,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Create a corrector for ``player``.

        Args:
            player: The local player to drive.
            estimator: Clock offset of this viewer, offset 0 is used without one.
            config: Thresholds, the defaults match the protocol recommendations.
            clock: Local clock in epoch seconds.
            loop: Event loop used for timers, defaults to the running loop.
        """
        self.player = player
        self.estimator = estimator
        self.config = config or CorrectorConfig()
        self._clock = clock
        self._loop = loop
        self._applying_remote = False
        self._suppress_handle: asyncio.TimerHandle | None = None
        self._adjust_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> CorrectorState:
        """Return the current state of the corrector."""
        if self._applying_remote:
            return CorrectorState.APPLYING_REMOTE
        if self._adjust_handle is not None:
            return CorrectorState.SOFT_ADJUSTING
        return CorrectorState.IDLE

    @property
    def clock_offset(self) -> float:
        """Return the offset from local to server time in seconds."""
        return self.estimator.offset if self.estimator is not None else 0.0

    def server_now(self) -> float:
        """Return the current time estimated on the server clock."""
        return self._clock() + self.clock_offset

    def target_position(self, event: PlaybackEvent) -> float | None:
        """
        Return where the player should be now according to ``event``.

        The event position is advanced by the time elapsed since the sender
        generated it. Events without a position have no target.
        """
        if event.at is None:
            return None
        now = self._clock()
        sender_local = event.sent_at - self.clock_offset if event.sent_at is not None else now
        delta = now - sender_local
        return max(0.0, event.at + delta)

    def apply_remote(self, event: PlaybackEvent) -> None:
        """Converge the local player onto a play, pause or seek from the room."""
        self.cancel_adjust()
        self._enter_applying_remote()
        target = self.target_position(event)
        player = self.player
        logger.debug(
            "Applying remote %s: target=%s current=%.3f",
            event.type.value,
            f"{target:.3f}" if target is not None else None,
            player.current_time,
        )

        if event.type is ControlType.PAUSE:
            if target is not None and abs(player.current_time - target) > self.config.seek_threshold:
                player.seek(target)
            player.pause()
        elif event.type is ControlType.PLAY:
            if player.paused:
                if (
                    target is not None
                    and abs(player.current_time - target) > self.config.seek_threshold
                ):
                    player.seek(target)
                player.play()
            elif target is not None:
                # Never hard seek a playing stream unless the drift is large
                self.soft_adjust_to(target)
        elif event.type is ControlType.SEEK and target is not None:
            player.seek(target)
            if not player.paused:
                self.soft_adjust_to(target)

    def soft_adjust_to(self, target: float) -> AdjustOutcome:
        """
        Converge a playing player onto ``target`` without a visible jump if possible.

        Cancels any adjustment in flight. Large drifts are snapped, small drifts
        are ignored and drifts in between are closed by a temporary rate change
        that falls back to a snap if it did not converge in time.
        """
        self.cancel_adjust()
        config = self.config
        player = self.player
        diff = target - player.current_time
        safe_target = max(0.0, target)

        if abs(diff) > config.hard_tolerance:
            player.seek(safe_target)
            player.set_playback_rate(1.0)
            logger.debug("Drift %.3fs, snapped to %.3f", diff, safe_target)
            return AdjustOutcome.SNAPPED
        if abs(diff) <= config.soft_tolerance:
            player.set_playback_rate(1.0)
            return AdjustOutcome.IN_SYNC

        player.set_playback_rate(config.rate_fast if diff > 0 else config.rate_slow)
        self._adjust_handle = self._get_loop().call_later(
            config.max_adjust_duration, self._finish_adjust, safe_target, self._clock()
        )
        logger.debug("Drift %.3fs, nudging rate to %.2f", diff, player.playback_rate)
        return AdjustOutcome.NUDGED

    def cancel_adjust(self) -> None:
        """Stop any adjustment in flight and restore the normal playback rate."""
        if self._adjust_handle is not None:
            self._adjust_handle.cancel()
            self._adjust_handle = None
        if self.player.playback_rate != 1.0:
            self.player.set_playback_rate(1.0)

    def _finish_adjust(self, target: float, started: float) -> None:
        """Snap if a nudge did not converge, the target moves on while playing."""
        self._adjust_handle = None
        expected = target
        if not self.player.paused:
            expected += self._clock() - started
        if abs(self.player.current_time - expected) > self.config.converged_tolerance:
            logger.debug("Nudge did not converge, snapping to %.3f", expected)
            self.player.seek(expected)
        self.player.set_playback_rate(1.0)

    def local_event(self, control: ControlType) -> PlaybackEvent | None:
        """
        Build the event to send for a play, pause or seek of the local player.

        Returns None while a remote event is being applied, the callback was
        caused by the corrector itself. A local seek or pause cancels any
        adjustment in flight.
        """
        if self._applying_remote:
            logger.debug("Suppressing local %s while applying remote event", control.value)
            return None
        if control is not ControlType.PLAY:
            self.cancel_adjust()
        return PlaybackEvent(
            type=control, at=self.player.current_time, sent_at=self.server_now()
        )

    def snapshot(self) -> PlaybackEvent:
        """Return the current playback state, used to answer request_state."""
        return PlaybackEvent(
            type=ControlType.PAUSE if self.player.paused else ControlType.PLAY,
            at=self.player.current_time,
            sent_at=self.server_now(),
        )

    def close(self) -> None:
        """Cancel every timer of the corrector."""
        self.cancel_adjust()
        if self._suppress_handle is not None:
            self._suppress_handle.cancel()
            self._suppress_handle = None
        self._applying_remote = False

    def _enter_applying_remote(self) -> None:
        if self._suppress_handle is not None:
            self._suppress_handle.cancel()
        self._applying_remote = True
        self._suppress_handle = self._get_loop().call_later(
            self.config.suppress_window, self._exit_applying_remote
        )

    def _exit_applying_remote(self) -> None:
        self._suppress_handle = None
        self._applying_remote = False

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
