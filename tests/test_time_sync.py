"""Tests for the clock offset estimator."""

from __future__ import annotations

import pytest

from aiowatchparty.client import ClockSyncEstimator

from .conftest import FakeClock


async def test_zero_latency_same_clock_gives_zero_offset() -> None:
    clock = FakeClock()
    estimator = ClockSyncEstimator(clock=clock)

    async def probe(_sent_at: float) -> float:
        return clock()

    offset = await estimator.sync(probe)

    assert offset == pytest.approx(0.0)
    assert estimator.samples == 4
    assert estimator.ready
    assert estimator.last_rtt == 0.0


async def test_symmetric_latency_recovers_skew() -> None:
    clock = FakeClock()
    estimator = ClockSyncEstimator(rounds=3, clock=clock)

    async def probe(_sent_at: float) -> float:
        clock.advance(0.05)
        server_time = clock() + 5.0
        clock.advance(0.05)
        return server_time

    offset = await estimator.sync(probe)

    assert offset == pytest.approx(5.0)
    assert estimator.last_rtt == pytest.approx(0.1)
    assert estimator.to_server_time(clock()) == pytest.approx(clock() + 5.0)
    assert estimator.to_local_time(clock() + 5.0) == pytest.approx(clock())


def test_first_sample_seeds_then_smooths() -> None:
    estimator = ClockSyncEstimator(smoothing=0.4)

    assert estimator.add_sample(10.0, 12.0, 10.0) == pytest.approx(2.0)
    assert estimator.add_sample(20.0, 27.0, 20.0) == pytest.approx(2.0 * 0.6 + 7.0 * 0.4)


def test_reset_forgets_samples() -> None:
    estimator = ClockSyncEstimator(rounds=1)
    estimator.add_sample(0.0, 3.0, 0.0)
    assert estimator.ready

    estimator.reset()

    assert estimator.offset == 0.0
    assert estimator.samples == 0
    assert estimator.last_rtt is None
    assert not estimator.ready


@pytest.mark.parametrize(("rounds", "smoothing"), [(0, 0.4), (4, 0.0), (4, 1.5)])
def test_invalid_parameters(rounds: int, smoothing: float) -> None:
    with pytest.raises(ValueError):
        ClockSyncEstimator(rounds=rounds, smoothing=smoothing)
