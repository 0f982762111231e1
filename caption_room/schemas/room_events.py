"""WebSocket wire events exchanged between the gateway and room clients.

Every frame is a JSON object ``{"type": <TYPE>, "payload": ...}``. Payload keys
are camelCase on the wire (``isSpeaking``, ``createdAt``) to match the browser
client, while Python code uses snake_case field names.
"""

from datetime import datetime
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class ServerEventType(str, Enum):
    PARTICIPANTS_UPDATE = "PARTICIPANTS_UPDATE"
    NEW_CAPTION = "NEW_CAPTION"
    SPEAKER_STATUS = "SPEAKER_STATUS"
    ROOM_SNAPSHOT = "ROOM_SNAPSHOT"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    ERROR = "ERROR"
    PONG = "PONG"


class ClientEventType(str, Enum):
    JOIN = "JOIN"
    SPEAKER_START = "SPEAKER_START"
    SPEAKER_STOP = "SPEAKER_STOP"
    LEAVE = "LEAVE"
    PING = "PING"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ParticipantPayload(WireModel):
    id: str
    nickname: str


class CaptionPayload(WireModel):
    seq: int
    sender: str
    sender_id: str
    text: str
    created_at: datetime


class SpeakerStatusPayload(WireModel):
    nickname: str | None = None
    is_speaking: bool
    participant_id: str | None = None


class TranscriptionFailedPayload(WireModel):
    nickname: str
    reason: str


class ErrorPayload(WireModel):
    code: str
    message: str


class RoomSnapshotPayload(WireModel):
    room_id: str
    capacity: int
    you: ParticipantPayload | None = None
    participants: list[ParticipantPayload] = Field(default_factory=list)
    speaker: SpeakerStatusPayload
    captions: list[CaptionPayload] = Field(default_factory=list)


class ServerEvent(BaseModel):
    """Outbound event produced by a room session and fanned out by the gateway."""

    model_config = ConfigDict(frozen=True)

    type: ServerEventType
    payload: Any = None

    @classmethod
    def participants_update(cls, names: list[str]) -> "ServerEvent":
        # The browser client maps over the payload directly, so it stays a bare list.
        return cls(type=ServerEventType.PARTICIPANTS_UPDATE, payload=list(names))

    @classmethod
    def new_caption(cls, caption: CaptionPayload) -> "ServerEvent":
        return cls(type=ServerEventType.NEW_CAPTION, payload=caption)

    @classmethod
    def speaker_status(
        cls, nickname: str | None, is_speaking: bool, participant_id: str | None = None
    ) -> "ServerEvent":
        return cls(
            type=ServerEventType.SPEAKER_STATUS,
            payload=SpeakerStatusPayload(
                nickname=nickname, is_speaking=is_speaking, participant_id=participant_id
            ),
        )

    @classmethod
    def transcription_failed(cls, nickname: str, reason: str) -> "ServerEvent":
        return cls(
            type=ServerEventType.TRANSCRIPTION_FAILED,
            payload=TranscriptionFailedPayload(nickname=nickname, reason=reason),
        )

    @classmethod
    def error(cls, code: str, message: str) -> "ServerEvent":
        return cls(type=ServerEventType.ERROR, payload=ErrorPayload(code=code, message=message))

    @classmethod
    def from_app_error(cls, exc: AppError) -> "ServerEvent":
        return cls.error(exc.errcode, exc.errmesg)

    @classmethod
    def snapshot(cls, snapshot: RoomSnapshotPayload) -> "ServerEvent":
        return cls(type=ServerEventType.ROOM_SNAPSHOT, payload=snapshot)

    @classmethod
    def pong(cls) -> "ServerEvent":
        return cls(type=ServerEventType.PONG)

    def to_wire(self) -> dict[str, Any]:
        payload = self.payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True, mode="json")
        return {"type": self.type.value, "payload": payload}

    def encode(self) -> str:
        return orjson.dumps(self.to_wire()).decode("utf-8")


class ClientEvent(BaseModel):
    """Inbound event sent by a room client.

    Fields may arrive at the top level (``{"type": "SPEAKER_START", "nickname": "Alice"}``)
    or nested under ``payload``; `value()` looks in both places.
    """

    model_config = ConfigDict(extra="allow")

    type: ClientEventType
    nickname: str | None = None
    payload: dict[str, Any] | None = None

    def value(self, key: str, default: Any = None) -> Any:
        if self.payload and key in self.payload:
            return self.payload[key]
        if key == "nickname":
            return self.nickname if self.nickname is not None else default
        extra = self.model_extra or {}
        return extra.get(key, default)

    @classmethod
    def parse(cls, raw: str | bytes) -> "ClientEvent":
        """Decode a raw text frame.

        Raises:
            AppError: INVALID_PARAMS if the frame is not a known event
        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg=f"Malformed event: {exc}",
                status_code=HttpStatusCode.BAD_REQUEST,
            ) from exc

        if not isinstance(data, dict):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg="Event must be a JSON object",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg=f"Unsupported event: {data.get('type')!r}",
                status_code=HttpStatusCode.BAD_REQUEST,
            ) from exc


__all__ = [
    "CaptionPayload",
    "ClientEvent",
    "ClientEventType",
    "ErrorPayload",
    "ParticipantPayload",
    "RoomSnapshotPayload",
    "ServerEvent",
    "ServerEventType",
    "SpeakerStatusPayload",
    "TranscriptionFailedPayload",
]
