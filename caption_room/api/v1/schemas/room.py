from datetime import datetime

from pydantic import BaseModel, Field

from caption_room.domain.room.room_models import AudioTurn, RoomSnapshot
from caption_room.schemas import CaptionPayload, ParticipantPayload, RoomState, SpeakerStatusPayload, TurnState


class CreateRoomIn(BaseModel):
    """Request to allocate a new room code."""

    capacity: int | None = Field(
        default=None,
        ge=1,
        description="Maximum participants; defaults to ROOM_DEFAULT_CAPACITY",
    )


class RoomOut(BaseModel):
    """Current view of a room."""

    room_id: str = Field(description="Room code shared with participants")
    state: RoomState
    capacity: int
    participants: list[ParticipantPayload] = Field(description="Members in join order")
    speaker: SpeakerStatusPayload
    captions: list[CaptionPayload] = Field(description="Most recent captions, oldest first")
    next_seq: int = Field(description="Sequence number the next caption will receive")

    @classmethod
    def from_snapshot(cls, snapshot: RoomSnapshot) -> "RoomOut":
        return cls.model_validate(snapshot.model_dump())


class RoomSummaryOut(BaseModel):
    room_id: str
    state: RoomState
    capacity: int
    participant_count: int
    speaking: str | None = Field(default=None, description="Nickname of the current speaker")

    @classmethod
    def from_snapshot(cls, snapshot: RoomSnapshot) -> "RoomSummaryOut":
        return cls(
            room_id=snapshot.room_id,
            state=snapshot.state,
            capacity=snapshot.capacity,
            participant_count=len(snapshot.participants),
            speaking=snapshot.speaker.nickname if snapshot.speaker.is_speaking else None,
        )


class AudioAcceptedOut(BaseModel):
    """Response after a recording was accepted for transcription."""

    room_id: str
    turn_id: str
    participant_id: str
    speaker_name: str
    state: TurnState
    submitted_at: datetime | None = None

    @classmethod
    def from_turn(cls, room_id: str, turn: AudioTurn) -> "AudioAcceptedOut":
        return cls(
            room_id=room_id,
            turn_id=turn.turn_id,
            participant_id=turn.participant_id,
            speaker_name=turn.nickname,
            state=turn.state,
            submitted_at=turn.submitted_at,
        )
