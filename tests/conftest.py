"""Shared fixtures for the watch party tests."""

from __future__ import annotations

import pytest

from aiowatchparty.models.types import ServerMessage
from aiowatchparty.server import PlaybackControlRelay, QueueManager, RoomRegistry


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """Message sender that records every delivery instead of writing to a socket."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, ServerMessage]] = []

    def send_to(self, connection_id: str, message: ServerMessage) -> None:
        self.sent.append((connection_id, message))

    def messages_for(
        self, connection_id: str, kind: type[ServerMessage] | None = None
    ) -> list[ServerMessage]:
        return [
            message
            for target, message in self.sent
            if target == connection_id and (kind is None or isinstance(message, kind))
        ]

    def types_for(self, connection_id: str) -> list[str]:
        return [message.type for message in self.messages_for(connection_id)]  # type: ignore[attr-defined]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def registry(transport: RecordingTransport, clock: FakeClock) -> RoomRegistry:
    return RoomRegistry(transport, clock=clock)


@pytest.fixture
def queue(registry: RoomRegistry) -> QueueManager:
    return QueueManager(registry)


@pytest.fixture
def relay(registry: RoomRegistry) -> PlaybackControlRelay:
    return PlaybackControlRelay(registry)
