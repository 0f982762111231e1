"""Wire schemas and shared enums."""

from .room_events import (
    CaptionPayload,
    ClientEvent,
    ClientEventType,
    ParticipantPayload,
    RoomSnapshotPayload,
    ServerEvent,
    ServerEventType,
    SpeakerStatusPayload,
)
from .room_state import ParticipantState, RoomState, TurnState

__all__ = [
    "CaptionPayload",
    "ClientEvent",
    "ClientEventType",
    "ParticipantPayload",
    "ParticipantState",
    "RoomSnapshotPayload",
    "RoomState",
    "ServerEvent",
    "ServerEventType",
    "SpeakerStatusPayload",
    "TurnState",
]
