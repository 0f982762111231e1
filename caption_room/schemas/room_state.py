"""Common enums used across room schemas."""

from enum import Enum


class RoomState(str, Enum):
    """Room lifecycle states.

    State Transition Flow:

    EMPTY → ACTIVE → EMPTY → CLOSED

    State Descriptions:
    - EMPTY: Room exists but has no participants. Set on creation and when the last participant leaves.
    - ACTIVE: At least one participant is connected.
    - CLOSED: Room was evicted from the registry. Terminal; joins are redirected to a fresh room.
    """

    EMPTY = "empty"
    ACTIVE = "active"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class ParticipantState(str, Enum):
    """Per-participant sub-state inside a room."""

    JOINED = "joined"
    SPEAKING = "speaking"
    LEFT = "left"

    def __str__(self) -> str:
        return self.value


class TurnState(str, Enum):
    """Audio turn lifecycle.

    RECORDING → TRANSCRIBING → PUBLISHED | FAILED
        ↓             ↓
    ABANDONED     ABANDONED

    - RECORDING: Lock granted, client is recording locally.
    - TRANSCRIBING: Recording accepted, transcription in flight.
    - PUBLISHED: Caption broadcast, lock released.
    - FAILED: Transcription failed or timed out, lock released without a caption.
    - ABANDONED: Explicit stop, disconnect, or recording timeout.
    """

    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    PUBLISHED = "published"
    FAILED = "failed"
    ABANDONED = "abandoned"

    def __str__(self) -> str:
        return self.value


__all__ = ["ParticipantState", "RoomState", "TurnState"]
