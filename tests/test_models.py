"""Tests for the JSON wire format of protocol messages."""

from __future__ import annotations

import orjson

from aiowatchparty.models import ClientMessage, ServerMessage
from aiowatchparty.models.control import (
    ControlClientMessage,
    ControlServerMessage,
    PlaybackEvent,
    SendStateToClientMessage,
)
from aiowatchparty.models.queue import EnqueueClientMessage, QueueItem, ReorderQueueClientMessage
from aiowatchparty.models.room import (
    ChatEntryPayload,
    ChatMessageServerMessage,
    CreateRoomClientMessage,
    JoinFailedPayload,
    JoinFailedServerMessage,
    ParticipantPayload,
    ParticipantsPayload,
    ParticipantsServerMessage,
    UpdateSettingsClientMessage,
    YouAreHostServerMessage,
)
from aiowatchparty.models.types import (
    AuthFailureReason,
    ControlType,
    UndefinedField,
    UploadPolicy,
)


def test_control_message_uses_camel_case() -> None:
    raw = orjson.dumps(
        {
            "type": "control",
            "payload": {"roomId": "abc123", "msg": {"type": "seek", "at": 42.5, "sentAt": 99.0}},
        }
    )

    message = ClientMessage.from_json(raw)

    assert isinstance(message, ControlClientMessage)
    assert message.payload.room_id == "abc123"
    assert message.payload.msg == PlaybackEvent(type=ControlType.SEEK, at=42.5, sent_at=99.0)


def test_relayed_control_payload_is_the_event() -> None:
    message = ControlServerMessage(PlaybackEvent(type=ControlType.PAUSE, at=3.0, sent_at=7.0))

    assert orjson.loads(message.to_json()) == {
        "type": "control",
        "payload": {"type": "pause", "at": 3.0, "sentAt": 7.0},
    }


def test_message_without_payload() -> None:
    assert orjson.loads(YouAreHostServerMessage().to_json()) == {"type": "you_are_host"}
    assert isinstance(ServerMessage.from_json('{"type": "you_are_host"}'), YouAreHostServerMessage)


def test_create_room_defaults() -> None:
    message = ClientMessage.from_json('{"type": "create_room", "payload": {"roomId": "abc123"}}')

    assert isinstance(message, CreateRoomClientMessage)
    assert message.payload.settings.password is None
    assert message.payload.settings.allow_upload is UploadPolicy.HOST


def test_update_settings_distinguishes_missing_from_null() -> None:
    only_upload = ClientMessage.from_json(
        '{"type": "update_settings", "payload": {"roomId": "r", "settings": {"allowUpload": "all"}}}'
    )
    clear_password = ClientMessage.from_json(
        '{"type": "update_settings", "payload": {"roomId": "r", "settings": {"password": null}}}'
    )

    assert isinstance(only_upload, UpdateSettingsClientMessage)
    assert isinstance(only_upload.payload.settings.password, UndefinedField)
    assert only_upload.payload.settings.allow_upload is UploadPolicy.ALL
    assert isinstance(clear_password, UpdateSettingsClientMessage)
    assert clear_password.payload.settings.password is None
    assert isinstance(clear_password.payload.settings.allow_upload, UndefinedField)


def test_participants_list_field() -> None:
    message = ParticipantsServerMessage(
        ParticipantsPayload(count=2, participants=[ParticipantPayload(id="c1", name="Sam")])
    )

    assert orjson.loads(message.to_json()) == {
        "type": "participants",
        "payload": {"count": 2, "list": [{"id": "c1", "name": "Sam", "avatar": None}]},
    }


def test_chat_entry_from_field() -> None:
    message = ChatMessageServerMessage(
        ChatEntryPayload(text="hi", name="Sam", at=1.0, from_="c1")
    )

    payload = orjson.loads(message.to_json())["payload"]

    assert payload["from"] == "c1"
    assert "from_" not in payload


def test_enqueue_item_aliases() -> None:
    message = ClientMessage.from_json(
        '{"type": "enqueue", "payload": {"roomId": "r", "item": {"url": "u", "uploadedBy": "Kim"}}}'
    )

    assert isinstance(message, EnqueueClientMessage)
    assert message.payload.item.url == "u"
    assert message.payload.item.uploaded_by == "Kim"
    assert message.payload.item.title is None


def test_reorder_queue_items() -> None:
    message = ClientMessage.from_json(
        '{"type": "reorder_queue", "payload": {"roomId": "r", '
        '"newOrder": [{"url": "b", "uploadedBy": "x", "at": 2.0}, {"url": "a"}]}}'
    )

    assert isinstance(message, ReorderQueueClientMessage)
    assert message.payload.new_order == [
        QueueItem(url="b", uploaded_by="x", at=2.0),
        QueueItem(url="a"),
    ]


def test_send_state_to() -> None:
    message = ClientMessage.from_json(
        '{"type": "send_state_to", "payload": {"to": "c2", "state": {"type": "play", "at": 1.5}}}'
    )

    assert isinstance(message, SendStateToClientMessage)
    assert message.payload.to == "c2"
    assert message.payload.state == PlaybackEvent(type=ControlType.PLAY, at=1.5)


def test_join_failed_reason() -> None:
    message = JoinFailedServerMessage(JoinFailedPayload(reason=AuthFailureReason.INCORRECT_PASSWORD))

    assert orjson.loads(message.to_json()) == {
        "type": "join_failed",
        "payload": {"reason": "incorrect_password"},
    }
