"""Tests for room membership, hosts, settings and chat."""

from __future__ import annotations

import pytest

from aiowatchparty.models.control import RequestStateServerMessage
from aiowatchparty.models.queue import EnqueueItemPayload, SetSourceServerMessage
from aiowatchparty.models.room import (
    ChatHistoryServerMessage,
    ChatMessageServerMessage,
    ParticipantsServerMessage,
    RoomSettingsPatch,
    RoomSettingsServerMessage,
    YouAreHostServerMessage,
)
from aiowatchparty.models.types import AuthFailureReason, UploadPolicy
from aiowatchparty.server import (
    Action,
    AuthError,
    QueueManager,
    RoomRegistry,
    RoomSettings,
    ValidationError,
)
from aiowatchparty.server.room import CHAT_HISTORY_LIMIT

from .conftest import RecordingTransport


def assert_host_is_member(registry: RoomRegistry) -> None:
    for room in registry.rooms.values():
        assert room.host is None or room.host in room.members


def test_create_room_makes_requester_host(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    room = registry.create_room("abc123", RoomSettings(), "c1")

    assert room.host == "c1"
    assert room.members == ["c1"]
    assert transport.types_for("c1") == [
        "you_are_host",
        "chat_history",
        "participants",
        "room_settings",
    ]
    assert_host_is_member(registry)


def test_join_existing_room_keeps_host_and_requests_state(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    transport.clear()

    room = registry.join("abc123", None, "c2")

    assert room.members == ["c1", "c2"]
    assert room.host == "c1"
    requests = transport.messages_for("c1", RequestStateServerMessage)
    assert len(requests) == 1
    assert requests[0].payload.to == "c2"
    assert not transport.messages_for("c2", YouAreHostServerMessage)
    assert transport.messages_for("c2", ChatHistoryServerMessage)
    assert transport.messages_for("c2", RoomSettingsServerMessage)
    participants = transport.messages_for("c1", ParticipantsServerMessage)
    assert participants[-1].payload.count == 2
    assert_host_is_member(registry)


def test_join_unknown_room_creates_it_with_joiner_as_host(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    room = registry.join("fresh1", None, "c1")

    assert room.host == "c1"
    assert transport.types_for("c1")[0] == "you_are_host"
    assert not transport.messages_for("c1", RequestStateServerMessage)


def test_join_twice_does_not_duplicate_member(registry: RoomRegistry) -> None:
    registry.join("abc123", None, "c1")
    room = registry.join("abc123", None, "c1")

    assert room.members == ["c1"]


def test_join_with_wrong_password_is_rejected(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(password="s3cret"), "c1")
    transport.clear()

    for password in ("wrong", None, ""):
        with pytest.raises(AuthError) as err:
            registry.join("abc123", password, "c2")
        assert err.value.reason is AuthFailureReason.INCORRECT_PASSWORD

    room = registry.get_room("abc123")
    assert room is not None
    assert room.members == ["c1"]
    assert room.host == "c1"
    assert transport.sent == []


def test_join_with_correct_password(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(password="s3cret"), "c1")

    room = registry.join("abc123", "s3cret", "c2")

    assert room.members == ["c1", "c2"]


def test_join_sends_current_source(
    registry: RoomRegistry, queue: QueueManager, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    queue.set_source("abc123", "c1", "https://example.com/a.mp4")
    transport.clear()

    registry.join("abc123", None, "c2")

    sources = transport.messages_for("c2", SetSourceServerMessage)
    assert [message.payload.url for message in sources] == ["https://example.com/a.mp4"]


def test_room_ids_are_case_insensitive(registry: RoomRegistry) -> None:
    registry.create_room("ABC123", RoomSettings(), "c1")
    registry.join(" abc123 ", None, "c2")

    assert list(registry.rooms) == ["abc123"]
    assert registry.rooms["abc123"].members == ["c1", "c2"]


def test_create_existing_room_takes_it_over(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(password="one"), "c1")

    room = registry.create_room("abc123", RoomSettings(allow_upload=UploadPolicy.ALL), "c2")

    assert room.host == "c2"
    assert room.members == ["c1", "c2"]
    assert room.settings == RoomSettings(password=None, allow_upload=UploadPolicy.ALL)
    assert_host_is_member(registry)


def test_host_leaving_elects_oldest_member(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    registry.join("abc123", None, "c2")
    registry.join("abc123", None, "c3")
    transport.clear()

    registry.leave("abc123", "c1")

    room = registry.get_room("abc123")
    assert room is not None
    assert room.host == "c2"
    assert room.members == ["c2", "c3"]
    assert transport.messages_for("c2", YouAreHostServerMessage)
    assert not transport.messages_for("c3", YouAreHostServerMessage)
    assert transport.messages_for("c3", ParticipantsServerMessage)[-1].payload.count == 2
    assert_host_is_member(registry)


def test_member_leaving_keeps_host(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    registry.join("abc123", None, "c2")

    registry.leave("abc123", "c2")

    room = registry.get_room("abc123")
    assert room is not None
    assert room.host == "c1"
    assert room.members == ["c1"]


def test_leave_unknown_room_is_ignored(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.leave("nope22", "c1")

    assert registry.rooms == {}
    assert transport.sent == []


def test_last_member_disconnecting_deletes_room(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(password="pw", allow_upload=UploadPolicy.ALL), "c1")

    registry.disconnect("c1")

    assert registry.get_room("abc123") is None

    room = registry.join("abc123", None, "c3")
    assert room.host == "c3"
    assert room.settings == RoomSettings()
    assert room.chat_history.maxlen == CHAT_HISTORY_LIMIT
    assert not room.chat_history


def test_disconnect_leaves_every_room(registry: RoomRegistry) -> None:
    registry.join("room11", None, "c1")
    registry.join("room11", None, "c2")
    registry.join("room22", None, "c2")
    registry.join("room22", None, "c1")

    registry.disconnect("c1")

    assert registry.rooms["room11"].members == ["c2"]
    assert registry.rooms["room11"].host == "c2"
    assert registry.rooms["room22"].members == ["c2"]
    assert_host_is_member(registry)


def test_announce_updates_participants(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    registry.join("abc123", None, "c2")
    transport.clear()

    registry.announce("abc123", "c2", "Robin", "avatar://robin")
    registry.announce("abc123", "c1", None, None)

    payload = transport.messages_for("c1", ParticipantsServerMessage)[-1].payload
    assert payload.count == 2
    names = {participant.id: participant.name for participant in payload.participants}
    assert names == {"c2": "Robin", "c1": "Anon"}

    registry.leave("abc123", "c2")
    payload = transport.messages_for("c1", ParticipantsServerMessage)[-1].payload
    assert [participant.id for participant in payload.participants] == ["c1"]


def test_update_settings_requires_host(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(password="pw"), "c1")
    registry.join("abc123", "pw", "c2")

    with pytest.raises(AuthError) as err:
        registry.update_settings(
            "abc123", "c2", RoomSettingsPatch(allow_upload=UploadPolicy.ALL)
        )

    assert err.value.reason is AuthFailureReason.NOT_HOST
    assert str(err.value) == "only host can update settings"
    assert registry.rooms["abc123"].settings.allow_upload is UploadPolicy.HOST


def test_update_settings_merges_defined_fields(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(password="pw"), "c1")
    registry.join("abc123", "pw", "c2")
    transport.clear()

    registry.update_settings("abc123", "c1", RoomSettingsPatch(allow_upload=UploadPolicy.ALL))

    settings = registry.rooms["abc123"].settings
    assert settings == RoomSettings(password="pw", allow_upload=UploadPolicy.ALL)
    broadcast = transport.messages_for("c2", RoomSettingsServerMessage)
    assert broadcast[-1].payload.allow_upload is UploadPolicy.ALL
    assert transport.messages_for("c2", ParticipantsServerMessage)

    registry.update_settings("abc123", "c1", RoomSettingsPatch(password=""))
    assert registry.rooms["abc123"].settings.password is None


def test_update_settings_unknown_room(registry: RoomRegistry) -> None:
    assert registry.update_settings("nope22", "c1", RoomSettingsPatch()) is None
    assert registry.rooms == {}


def test_permissions(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    registry.join("abc123", None, "c2")

    for action in Action:
        assert registry.is_allowed("abc123", "c1", action)
        assert not registry.is_allowed("abc123", "c2", action)

    registry.update_settings("abc123", "c1", RoomSettingsPatch(allow_upload=UploadPolicy.ALL))

    assert registry.is_allowed("abc123", "c2", Action.CHANGE_SOURCE)
    assert not registry.is_allowed("abc123", "c2", Action.EDIT_QUEUE)
    assert not registry.is_allowed("nope22", "c1", Action.CHANGE_SOURCE)


def test_chat_is_broadcast_and_kept_in_history(
    registry: RoomRegistry, transport: RecordingTransport
) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")
    registry.join("abc123", None, "c2")

    entry = registry.post_chat("abc123", "c1", "hello", name="Sam")

    assert entry.from_ == "c1"
    assert entry.at == 1_000.0
    received = transport.messages_for("c2", ChatMessageServerMessage)
    assert [message.payload.text for message in received] == ["hello"]

    transport.clear()
    registry.join("abc123", None, "c3")
    history = transport.messages_for("c3", ChatHistoryServerMessage)[0].payload.messages
    assert [line.text for line in history] == ["hello"]
    assert history[0].name == "Sam"


def test_chat_history_is_bounded(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(), "c1")

    for index in range(CHAT_HISTORY_LIMIT + 5):
        registry.post_chat("abc123", "c1", f"line {index}", at=float(index))

    history = registry.rooms["abc123"].chat_history
    assert len(history) == CHAT_HISTORY_LIMIT
    assert history[0].text == "line 5"
    assert history[-1].text == f"line {CHAT_HISTORY_LIMIT + 4}"


def test_summary_hides_password(registry: RoomRegistry) -> None:
    registry.create_room("abc123", RoomSettings(password="pw"), "c1")

    (summary,) = registry.summary()

    assert summary["id"] == "abc123"
    assert summary["host"] == "c1"
    assert summary["count"] == 1
    assert summary["settings"] == {"password": True, "allowUpload": "host"}


@pytest.mark.parametrize("room_id", ["", "   ", "\t"])
def test_blank_room_id_is_rejected(
    registry: RoomRegistry, transport: RecordingTransport, room_id: str
) -> None:
    with pytest.raises(ValidationError):
        registry.join(room_id, None, "c1")
    with pytest.raises(ValidationError):
        registry.create_room(room_id, RoomSettings(), "c1")
    with pytest.raises(ValidationError):
        registry.post_chat(room_id, "c1", "hello")
    with pytest.raises(ValidationError):
        registry.announce(room_id, "c1", "Sam", None)

    assert registry.rooms == {}
    assert transport.sent == []


def test_rooms_written_without_joining_are_dropped_on_disconnect(
    registry: RoomRegistry, queue: QueueManager
) -> None:
    registry.post_chat("typo11", "c9", "anyone here?")
    queue.enqueue("typo22", "c9", EnqueueItemPayload(url="a"))
    assert sorted(registry.rooms) == ["typo11", "typo22"]

    registry.disconnect("c9")

    assert registry.rooms == {}


def test_unjoined_room_stays_while_another_writer_is_connected(
    registry: RoomRegistry,
) -> None:
    registry.post_chat("typo11", "c8", "one")
    registry.post_chat("typo11", "c9", "two")
    registry.join("other1", None, "c1")

    registry.disconnect("c9")
    registry.disconnect("c1")
    assert list(registry.rooms) == ["typo11"]

    registry.disconnect("c8")
    assert registry.rooms == {}


def test_unjoined_room_survives_once_someone_joins(registry: RoomRegistry) -> None:
    registry.post_chat("abc123", "c9", "early")
    registry.join("abc123", None, "c1")

    registry.disconnect("c9")

    room = registry.get_room("abc123")
    assert room is not None
    assert room.members == ["c1"]
    assert [line.text for line in room.chat_history] == ["early"]
