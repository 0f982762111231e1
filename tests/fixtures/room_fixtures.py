"""Shared fixtures for room tests: in-memory channels, configs and rooms."""

from collections.abc import Callable

import pytest
from loguru import logger

from caption_room.app_config import AppEnvironConfig, get_app_environ_config
from caption_room.domain.room.room_models import Participant
from caption_room.domain.room.room_registry import RoomRegistry
from caption_room.domain.room.room_session import RoomSession
from caption_room.schemas import ServerEvent, ServerEventType


class FakeChannel:
    """EventSink that records delivered events."""

    def __init__(self, *, accepting: bool = True):
        self.events: list[ServerEvent] = []
        self.accepting = accepting
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def deliver(self, event: ServerEvent) -> bool:
        if self._closed or not self.accepting:
            return False
        self.events.append(event)
        return True

    def types(self) -> list[ServerEventType]:
        return [event.type for event in self.events]

    def of_type(self, event_type: ServerEventType) -> list[ServerEvent]:
        return [event for event in self.events if event.type == event_type]

    def wire(self) -> list[dict]:
        return [event.to_wire() for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def test_config() -> AppEnvironConfig:
    """App config with demo transcription and short timeouts."""
    return get_app_environ_config().model_copy(
        update={
            "DEMO_MODE": True,
            "ROOM_DEFAULT_CAPACITY": 2,
            "ROOM_MAX_CAPACITY": 16,
            "ROOM_EVICTION_GRACE_SECONDS": 0.0,
            "ROOM_UNCLAIMED_TTL_SECONDS": 300.0,
            "AUDIO_TURN_TIMEOUT_SECONDS": 30.0,
            "TRANSCRIPTION_TIMEOUT_SECONDS": 5.0,
            "AUDIO_MAX_UPLOAD_BYTES": 1024,
            "CHANNEL_SEND_QUEUE_SIZE": 64,
            "CAPTION_HISTORY_LIMIT": 50,
            "UPLOAD_RATE_LIMIT": "1000/minute",
        }
    )


@pytest.fixture
def make_participant() -> Callable[..., tuple[Participant, FakeChannel]]:
    """Factory for participants wired to a FakeChannel.

    Channels are kept alive by the fixture since participants only hold a weak
    reference to them.
    """
    channels: list[FakeChannel] = []

    def _make(nickname: str, **channel_kwargs) -> tuple[Participant, FakeChannel]:
        channel = FakeChannel(**channel_kwargs)
        channels.append(channel)
        return Participant.create(nickname, channel), channel

    return _make


@pytest.fixture
async def room() -> RoomSession:
    session = RoomSession("1234", capacity=2, turn_timeout=30.0)
    yield session
    await session.aclose()


@pytest.fixture
async def registry() -> RoomRegistry:
    reg = RoomRegistry(default_capacity=2, max_capacity=16, turn_timeout=30.0)
    yield reg
    await reg.aclose()


@pytest.fixture
def log_messages() -> list[str]:
    """Messages logged through loguru while the test runs."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
