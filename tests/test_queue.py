"""Tests for the shared queue and source changes."""

from __future__ import annotations

import pytest

from aiowatchparty.models.queue import (
    EnqueueItemPayload,
    QueueItem,
    QueueUpdatedServerMessage,
    SetSourceServerMessage,
)
from aiowatchparty.models.room import RoomSettingsPatch
from aiowatchparty.models.types import AuthFailureReason, UploadPolicy
from aiowatchparty.server import AuthError, QueueManager, RoomRegistry, RoomSettings, ValidationError

from .conftest import FakeClock, RecordingTransport


@pytest.fixture
def room(registry: RoomRegistry) -> str:
    registry.create_room("abc123", RoomSettings(), "host")
    registry.join("abc123", None, "guest")
    return "abc123"


def _items(*urls: str) -> list[QueueItem]:
    return [QueueItem(url=url, title=url.upper(), uploaded_by="x") for url in urls]


def test_enqueue_appends_and_broadcasts(
    queue: QueueManager, transport: RecordingTransport, room: str, clock: FakeClock
) -> None:
    transport.clear()
    clock.advance(5)

    item = queue.enqueue(room, "guest", EnqueueItemPayload(url="a", title="A", uploaded_by="Kim"))

    assert item == QueueItem(url="a", title="A", uploaded_by="Kim", at=1_005.0)
    snapshot = queue.request_queue(room)
    assert len(snapshot) == 1
    assert (snapshot[-1].url, snapshot[-1].title, snapshot[-1].uploaded_by) == ("a", "A", "Kim")
    for member in ("host", "guest"):
        updates = transport.messages_for(member, QueueUpdatedServerMessage)
        assert updates[-1].payload.queue == snapshot


def test_enqueue_defaults_uploader_to_display_name(
    queue: QueueManager, registry: RoomRegistry, room: str
) -> None:
    registry.announce(room, "guest", "Kim", None)

    assert queue.enqueue(room, "guest", EnqueueItemPayload(url="a")).uploaded_by == "Kim"
    assert queue.enqueue(room, "host", EnqueueItemPayload(url="b")).uploaded_by == "Anon"


def test_enqueue_without_url_is_rejected(
    queue: QueueManager, transport: RecordingTransport, room: str
) -> None:
    transport.clear()

    with pytest.raises(ValidationError):
        queue.enqueue(room, "guest", EnqueueItemPayload(title="no url"))

    assert queue.request_queue(room) == []
    assert transport.sent == []


def test_enqueue_creates_unknown_room(queue: QueueManager, registry: RoomRegistry) -> None:
    queue.enqueue("ghost1", "c1", EnqueueItemPayload(url="a"))

    room = registry.get_room("ghost1")
    assert room is not None
    assert [item.url for item in room.queue] == ["a"]
    assert room.members == []


def test_advance_dispatches_front_item(
    queue: QueueManager, registry: RoomRegistry, transport: RecordingTransport, room: str
) -> None:
    for url in ("a", "b", "c"):
        queue.enqueue(room, "guest", EnqueueItemPayload(url=url))
    transport.clear()

    advanced = queue.advance(room)

    assert advanced is not None
    assert advanced.url == "a"
    assert registry.rooms[room].current_source == "a"
    assert [item.url for item in queue.request_queue(room)] == ["b", "c"]
    assert transport.types_for("guest") == ["set_source", "queue_updated"]
    assert transport.messages_for("host", SetSourceServerMessage)[0].payload.url == "a"


def test_advance_empty_queue_keeps_source(
    queue: QueueManager, registry: RoomRegistry, transport: RecordingTransport, room: str
) -> None:
    queue.set_source(room, "host", "current")
    transport.clear()

    assert queue.advance(room) is None

    assert registry.rooms[room].current_source == "current"
    assert transport.types_for("guest") == ["queue_updated"]
    assert transport.messages_for("guest", QueueUpdatedServerMessage)[0].payload.queue == []


def test_advance_unknown_room(queue: QueueManager, transport: RecordingTransport) -> None:
    assert queue.advance("nope22") is None
    assert transport.sent == []


def test_remove_at(queue: QueueManager, room: str) -> None:
    for url in ("a", "b", "c"):
        queue.enqueue(room, "guest", EnqueueItemPayload(url=url))

    removed = queue.remove_at(room, "host", 1)

    assert removed is not None
    assert removed.url == "b"
    assert [item.url for item in queue.request_queue(room)] == ["a", "c"]


@pytest.mark.parametrize("index", [2, 3, 100, -1])
def test_remove_at_out_of_range_is_noop(
    queue: QueueManager, transport: RecordingTransport, room: str, index: int
) -> None:
    for url in ("a", "b"):
        queue.enqueue(room, "guest", EnqueueItemPayload(url=url))
    transport.clear()

    assert queue.remove_at(room, "host", index) is None

    assert [item.url for item in queue.request_queue(room)] == ["a", "b"]
    assert transport.sent == []


def test_remove_at_requires_host(queue: QueueManager, room: str) -> None:
    queue.enqueue(room, "guest", EnqueueItemPayload(url="a"))

    with pytest.raises(AuthError) as err:
        queue.remove_at(room, "guest", 0)

    assert err.value.reason is AuthFailureReason.NOT_HOST
    assert len(queue.request_queue(room)) == 1


def test_reorder_replaces_queue(
    queue: QueueManager, transport: RecordingTransport, room: str
) -> None:
    for url in ("a", "b"):
        queue.enqueue(room, "guest", EnqueueItemPayload(url=url))
    transport.clear()

    queue.reorder(room, "host", _items("b", "a", "z"))

    assert [item.url for item in queue.request_queue(room)] == ["b", "a", "z"]
    assert transport.types_for("guest") == ["queue_updated"]


def test_reorder_requires_host(queue: QueueManager, room: str) -> None:
    queue.enqueue(room, "guest", EnqueueItemPayload(url="a"))

    with pytest.raises(AuthError) as err:
        queue.reorder(room, "guest", [])

    assert err.value.reason is AuthFailureReason.NOT_HOST
    assert [item.url for item in queue.request_queue(room)] == ["a"]


def test_set_source_requires_permission(
    queue: QueueManager, registry: RoomRegistry, transport: RecordingTransport, room: str
) -> None:
    with pytest.raises(AuthError) as err:
        queue.set_source(room, "guest", "mine")

    assert err.value.reason is AuthFailureReason.NOT_ALLOWED
    assert str(err.value) == "not allowed to set video source"
    assert registry.rooms[room].current_source is None

    registry.update_settings(room, "host", RoomSettingsPatch(allow_upload=UploadPolicy.ALL))
    transport.clear()

    queue.set_source(room, "guest", "mine")

    assert registry.rooms[room].current_source == "mine"
    assert transport.messages_for("host", SetSourceServerMessage)[0].payload.url == "mine"


def test_request_queue_unknown_room(queue: QueueManager, registry: RoomRegistry) -> None:
    assert queue.request_queue("nope22") == []
    assert registry.get_room("nope22") is None


def test_request_queue_returns_snapshot(queue: QueueManager, room: str) -> None:
    queue.enqueue(room, "guest", EnqueueItemPayload(url="a"))

    snapshot = queue.request_queue(room)
    snapshot.clear()

    assert len(queue.request_queue(room)) == 1
