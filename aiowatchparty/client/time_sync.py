"""Clock offset estimation for watch party clients."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_SYNC_ROUNDS = 4
SMOOTHING_FACTOR = 0.4
"""Weight of a new estimate in the exponentially smoothed offset."""

TimeProbe = Callable[[float], Awaitable[float]]
"""Sends a probe stamped with the local send time and returns the server time."""


class ClockSyncEstimator:
    """
    Estimates the offset between the local clock and the server clock.

    ``estimated_server_time = local_time + offset``. The first probe seeds the
    offset, following probes are blended in with exponential smoothing. Until a
    probe completes the offset is 0, leaving timestamps uncorrected.
    """

    def __init__(
        self,
        rounds: int = DEFAULT_SYNC_ROUNDS,
        smoothing: float = SMOOTHING_FACTOR,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise the estimator with the number of probes and the smoothing weight."""
        if rounds <= 0:
            raise ValueError("rounds must be positive")
        if not 0.0 < smoothing <= 1.0:
            raise ValueError("smoothing must be in (0, 1]")
        self._rounds = rounds
        self._smoothing = smoothing
        self._clock = clock
        self._offset = 0.0
        self._samples = 0
        self._last_rtt: float | None = None

    def reset(self) -> None:
        """Forget every sample."""
        self._offset = 0.0
        self._samples = 0
        self._last_rtt = None

    def add_sample(
        self, client_sent_at: float, server_time: float, client_received_at: float
    ) -> float:
        """
        Fold one probe round trip into the offset estimate.

        Assumes the server answered half way through the round trip.
        Returns the updated offset.
        """
        rtt = client_received_at - client_sent_at
        estimated = server_time - (client_sent_at + rtt / 2)
        if self._samples == 0:
            self._offset = estimated
        else:
            self._offset = self._offset * (1 - self._smoothing) + estimated * self._smoothing
        self._samples += 1
        self._last_rtt = rtt
        logger.debug(
            "Clock probe: rtt=%.4fs estimate=%.4fs offset=%.4fs", rtt, estimated, self._offset
        )
        return self._offset

    async def sync(self, probe: TimeProbe) -> float:
        """
        Run the configured number of probes and return the final offset.

        A probe that never resolves stalls the sync, the offset keeps the
        value reached so far.
        """
        for _ in range(self._rounds):
            sent_at = self._clock()
            server_time = await probe(sent_at)
            self.add_sample(sent_at, server_time, self._clock())
        logger.info("Clock offset after %d probes: %.4fs", self._samples, self._offset)
        return self._offset

    @property
    def offset(self) -> float:
        """Return the offset in seconds to add to local time to get server time."""
        return self._offset

    @property
    def samples(self) -> int:
        """Return the number of probes folded into the estimate."""
        return self._samples

    @property
    def last_rtt(self) -> float | None:
        """Return the round trip time of the latest probe in seconds."""
        return self._last_rtt

    @property
    def ready(self) -> bool:
        """Return True once every configured probe completed."""
        return self._samples >= self._rounds

    def now(self) -> float:
        """Return the local clock in epoch seconds."""
        return self._clock()

    def to_server_time(self, local_time: float) -> float:
        """Map a local timestamp to the server clock."""
        return local_time + self._offset

    def to_local_time(self, server_time: float) -> float:
        """Map a server timestamp to the local clock."""
        return server_time - self._offset
