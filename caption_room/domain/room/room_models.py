"""Room domain models."""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from caption_room.domain.utils.idgen import new_participant_id, new_turn_id
from caption_room.schemas import (
    CaptionPayload,
    ParticipantPayload,
    ParticipantState,
    RoomSnapshotPayload,
    RoomState,
    ServerEvent,
    SpeakerStatusPayload,
    TurnState,
)

from .room_state_machine import TurnStateMachine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class EventSink(Protocol):
    """Outbound side of a participant channel, as seen by a room.

    `deliver` must never block: it queues the event and returns False when the
    channel is dead or cannot take more events.
    """

    @property
    def closed(self) -> bool: ...

    def deliver(self, event: ServerEvent) -> bool: ...


@dataclass(eq=False)
class Participant:
    """A connected room member.

    The nickname is a display name only and may collide with other
    participants; `participant_id` is the identity used for every check.
    """

    nickname: str
    participant_id: str = field(default_factory=new_participant_id)
    joined_at: datetime = field(default_factory=utcnow)
    state: ParticipantState = ParticipantState.JOINED
    _channel_ref: weakref.ref | None = field(default=None, repr=False)

    @classmethod
    def create(cls, nickname: str, channel: EventSink | None = None) -> Participant:
        participant = cls(nickname=nickname)
        if channel is not None:
            participant.attach(channel)
        return participant

    def attach(self, channel: EventSink) -> None:
        # The gateway owns the channel; rooms only hold a weak reference.
        self._channel_ref = weakref.ref(channel)

    @property
    def channel(self) -> EventSink | None:
        if self._channel_ref is None:
            return None
        return self._channel_ref()

    def to_payload(self) -> ParticipantPayload:
        return ParticipantPayload(id=self.participant_id, nickname=self.nickname)


class Caption(BaseModel):
    """A sequenced, attributed unit of transcribed text. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    seq: int = Field(..., ge=1)
    room_id: str
    sender_id: str
    sender: str
    text: str
    turn_id: str
    created_at: datetime = Field(default_factory=utcnow)

    def to_payload(self) -> CaptionPayload:
        return CaptionPayload(
            seq=self.seq,
            sender=self.sender,
            sender_id=self.sender_id,
            text=self.text,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class SpeakerLock:
    """Exclusive right to produce the next caption in a room.

    `turn_id` doubles as a fencing token: every check against the lock compares
    it, so work belonging to an older acquisition can never act on a newer one.
    """

    participant_id: str
    nickname: str
    turn_id: str
    acquired_at: datetime = field(default_factory=utcnow)


@dataclass(eq=False)
class AudioTurn:
    """Pending work item linking one lock acquisition to one recording submission."""

    participant_id: str
    nickname: str
    turn_id: str = field(default_factory=new_turn_id)
    state: TurnState = TurnState.RECORDING
    started_at: datetime = field(default_factory=utcnow)
    submitted_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return not TurnStateMachine.is_terminal(self.state)


class RoomSnapshot(BaseModel):
    """Point-in-time view of a room, returned on join and by the room endpoints."""

    room_id: str
    state: RoomState
    capacity: int
    participants: list[ParticipantPayload] = Field(default_factory=list)
    speaker: SpeakerStatusPayload
    captions: list[CaptionPayload] = Field(default_factory=list)
    next_seq: int = 1

    def to_payload(self, you: Participant | None = None) -> RoomSnapshotPayload:
        return RoomSnapshotPayload(
            room_id=self.room_id,
            capacity=self.capacity,
            you=you.to_payload() if you else None,
            participants=self.participants,
            speaker=self.speaker,
            captions=self.captions,
        )
