"""Tests for the WebSocket wire events."""

from datetime import datetime, timezone

import orjson
import pytest

from caption_room.schemas import CaptionPayload, ClientEvent, ClientEventType, ServerEvent
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class TestServerEvent:
    def test_participants_update_is_bare_list(self):
        assert ServerEvent.participants_update(["Alice", "Bob"]).to_wire() == {
            "type": "PARTICIPANTS_UPDATE",
            "payload": ["Alice", "Bob"],
        }

    def test_caption_uses_camel_case(self):
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        event = ServerEvent.new_caption(
            CaptionPayload(seq=3, sender="Alice", sender_id="pa_1", text="hello", created_at=created)
        )

        decoded = orjson.loads(event.encode())

        assert decoded["type"] == "NEW_CAPTION"
        assert decoded["payload"] == {
            "seq": 3,
            "sender": "Alice",
            "senderId": "pa_1",
            "text": "hello",
            "createdAt": "2024-05-01T12:00:00Z",
        }

    def test_speaker_status(self):
        payload = ServerEvent.speaker_status("Alice", True, "pa_1").to_wire()["payload"]

        assert payload == {"nickname": "Alice", "isSpeaking": True, "participantId": "pa_1"}

    def test_error_from_app_error(self):
        exc = AppError(
            errcode=AppErrorCode.E_LOCK_HELD,
            errmesg="Alice is speaking",
            status_code=HttpStatusCode.CONFLICT,
        )

        assert ServerEvent.from_app_error(exc).to_wire() == {
            "type": "ERROR",
            "payload": {"code": "LOCK_HELD", "message": "Alice is speaking"},
        }


class TestClientEvent:
    def test_top_level_nickname(self):
        event = ClientEvent.parse('{"type": "SPEAKER_START", "nickname": "Alice"}')

        assert event.type == ClientEventType.SPEAKER_START
        assert event.value("nickname") == "Alice"

    def test_payload_fields(self):
        event = ClientEvent.parse(b'{"type": "JOIN", "payload": {"nickname": "Bob"}}')

        assert event.type == ClientEventType.JOIN
        assert event.value("nickname") == "Bob"

    def test_extra_top_level_fields(self):
        event = ClientEvent.parse('{"type": "SPEAKER_STOP", "turnId": "tu_1"}')

        assert event.value("turnId") == "tu_1"
        assert event.value("missing", "default") == "default"

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[1, 2]", '{"type": "DANCE"}', '{"nickname": "Alice"}'],
    )
    def test_invalid_frames(self, raw: str):
        with pytest.raises(AppError) as exc_info:
            ClientEvent.parse(raw)

        assert exc_info.value.is_code(AppErrorCode.E_INVALID_PARAMS)
