"""Tests for AudioIngest submission and background transcription."""

import asyncio

import pytest

from caption_room.domain.room.audio_ingest import AudioIngest
from caption_room.domain.room.room_registry import RoomRegistry
from caption_room.schemas import ServerEventType, TurnState
from caption_room.services.integrations.transcriber_service import (
    AudioPayload,
    DemoTranscriber,
    TranscriptionPort,
    transcription_failed,
)
from caption_room.utils.app_errors import AppError, AppErrorCode

RECORDING = AudioPayload(data=b"RIFF0000WAVEfmt ", filename="recording.wav", content_type="audio/wav")


class GatedTranscriber(TranscriptionPort):
    """Blocks until released, then returns `text` or raises `error`."""

    def __init__(self, text: str = "hello", error: Exception | None = None):
        self.text = text
        self.error = error
        self.gate = asyncio.Event()
        self.calls = 0

    async def transcribe(self, audio: AudioPayload) -> str:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.text


class SlowTranscriber(TranscriptionPort):
    async def transcribe(self, audio: AudioPayload) -> str:
        await asyncio.sleep(10)
        return "never"


@pytest.fixture
async def alice_and_bob(registry: RoomRegistry, make_participant):
    room = registry.get_or_create("1234")
    alice, alice_ch = make_participant("Alice")
    bob, bob_ch = make_participant("Bob")
    await room.join(alice)
    await room.join(bob)
    return room, (alice, alice_ch), (bob, bob_ch)


def make_ingest(registry: RoomRegistry, transcriber: TranscriptionPort, **kwargs) -> AudioIngest:
    kwargs.setdefault("transcription_timeout", 5.0)
    kwargs.setdefault("max_upload_bytes", 1024)
    return AudioIngest(registry, transcriber, **kwargs)


class TestSubmitRecording:
    """Tests for AudioIngest.submit_recording validation."""

    async def test_scenario_hello_published(self, registry: RoomRegistry, alice_and_bob):
        """Alice holds the floor, uploads, and everyone sees "hello"."""
        room, (alice, alice_ch), (_, bob_ch) = alice_and_bob
        ingest = make_ingest(registry, DemoTranscriber(text="hello"))
        await room.acquire_speaker_lock(alice.participant_id)
        bob_ch.clear()

        turn = await ingest.submit_recording("1234", RECORDING, "Alice")
        assert turn.state == TurnState.TRANSCRIBING
        await ingest.drain()

        assert bob_ch.types() == [ServerEventType.NEW_CAPTION, ServerEventType.SPEAKER_STATUS]
        caption = bob_ch.wire()[0]["payload"]
        assert caption["sender"] == "Alice"
        assert caption["text"] == "hello"
        assert caption["seq"] == 1
        assert room.speaker is None

    async def test_match_by_participant_id(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        ingest = make_ingest(registry, DemoTranscriber(text="hi"))
        lock = await room.acquire_speaker_lock(alice.participant_id)

        turn = await ingest.submit_recording(
            "1234", RECORDING, None, participant_id=alice.participant_id, turn_id=lock.turn_id
        )
        await ingest.drain()

        assert turn.turn_id == lock.turn_id
        assert [c.text for c in room.captions] == ["hi"]

    async def test_non_holder_rejected(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        transcriber = GatedTranscriber()
        ingest = make_ingest(registry, transcriber)
        await room.acquire_speaker_lock(alice.participant_id)

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", RECORDING, "Bob")

        assert exc_info.value.is_code(AppErrorCode.E_NOT_HOLDER)
        assert transcriber.calls == 0
        assert room.speaker.nickname == "Alice"

    async def test_no_holder_rejected(self, registry: RoomRegistry, alice_and_bob):
        ingest = make_ingest(registry, DemoTranscriber())

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", RECORDING, "Alice")

        assert exc_info.value.is_code(AppErrorCode.E_NOT_HOLDER)

    async def test_unknown_room(self, registry: RoomRegistry):
        ingest = make_ingest(registry, DemoTranscriber())

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("0000", RECORDING, "Alice")

        assert exc_info.value.is_code(AppErrorCode.E_ROOM_NOT_FOUND)

    async def test_empty_payload(self, registry: RoomRegistry, alice_and_bob):
        ingest = make_ingest(registry, DemoTranscriber())

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", AudioPayload(data=b""), "Alice")

        assert exc_info.value.is_code(AppErrorCode.E_INVALID_PARAMS)

    async def test_payload_too_large(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        ingest = make_ingest(registry, DemoTranscriber(), max_upload_bytes=8)
        await room.acquire_speaker_lock(alice.participant_id)

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", RECORDING, "Alice")

        assert exc_info.value.is_code(AppErrorCode.E_PAYLOAD_TOO_LARGE)
        assert exc_info.value.status_code == 413
        assert room.current_turn.state == TurnState.RECORDING

    async def test_missing_identity(self, registry: RoomRegistry, alice_and_bob):
        ingest = make_ingest(registry, DemoTranscriber())

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", RECORDING, None)

        assert exc_info.value.is_code(AppErrorCode.E_INVALID_PARAMS)

    async def test_duplicate_upload_rejected(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        transcriber = GatedTranscriber()
        ingest = make_ingest(registry, transcriber)
        await room.acquire_speaker_lock(alice.participant_id)
        await ingest.submit_recording("1234", RECORDING, "Alice")

        with pytest.raises(AppError) as exc_info:
            await ingest.submit_recording("1234", RECORDING, "Alice")

        assert exc_info.value.is_code(AppErrorCode.E_NOT_HOLDER)
        transcriber.gate.set()
        await ingest.drain()
        assert len(room.captions) == 1


class TestTranscriptionOutcome:
    """Tests for the background transcription task."""

    async def test_backend_failure_frees_floor(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), (bob, bob_ch) = alice_and_bob
        transcriber = GatedTranscriber(error=transcription_failed("Transcriber returned HTTP 500"))
        transcriber.gate.set()
        ingest = make_ingest(registry, transcriber)
        await room.acquire_speaker_lock(alice.participant_id)
        bob_ch.clear()

        await ingest.submit_recording("1234", RECORDING, "Alice")
        await ingest.drain()

        assert bob_ch.types() == [
            ServerEventType.TRANSCRIPTION_FAILED,
            ServerEventType.SPEAKER_STATUS,
        ]
        assert bob_ch.wire()[0]["payload"]["nickname"] == "Alice"
        assert room.speaker is None
        assert room.captions == ()
        await room.acquire_speaker_lock(bob.participant_id)

    async def test_unexpected_exception_frees_floor(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        transcriber = GatedTranscriber(error=RuntimeError("boom"))
        transcriber.gate.set()
        ingest = make_ingest(registry, transcriber)
        await room.acquire_speaker_lock(alice.participant_id)

        await ingest.submit_recording("1234", RECORDING, "Alice")
        await ingest.drain()

        assert room.speaker is None

    async def test_timeout_frees_floor(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, alice_ch), _ = alice_and_bob
        ingest = make_ingest(registry, SlowTranscriber(), transcription_timeout=0.05)
        await room.acquire_speaker_lock(alice.participant_id)
        alice_ch.clear()

        await ingest.submit_recording("1234", RECORDING, "Alice")
        await ingest.drain()

        failed = alice_ch.of_type(ServerEventType.TRANSCRIPTION_FAILED)
        assert len(failed) == 1
        assert failed[0].to_wire()["payload"]["reason"] == "timeout"
        assert room.speaker is None

    async def test_empty_transcript_counts_as_failure(
        self, registry: RoomRegistry, alice_and_bob
    ):
        room, (alice, alice_ch), _ = alice_and_bob
        ingest = make_ingest(registry, DemoTranscriber(text="   "))
        await room.acquire_speaker_lock(alice.participant_id)
        alice_ch.clear()

        await ingest.submit_recording("1234", RECORDING, "Alice")
        await ingest.drain()

        assert alice_ch.types() == [
            ServerEventType.TRANSCRIPTION_FAILED,
            ServerEventType.SPEAKER_STATUS,
        ]
        assert room.captions == ()

    async def test_late_result_after_holder_left_is_dropped(
        self, registry: RoomRegistry, alice_and_bob
    ):
        room, (alice, _), (bob, bob_ch) = alice_and_bob
        transcriber = GatedTranscriber(text="too late")
        ingest = make_ingest(registry, transcriber)
        await room.acquire_speaker_lock(alice.participant_id)
        await ingest.submit_recording("1234", RECORDING, "Alice")

        await room.leave(alice.participant_id)
        await room.acquire_speaker_lock(bob.participant_id)
        bob_ch.clear()
        transcriber.gate.set()
        await ingest.drain()

        assert bob_ch.of_type(ServerEventType.NEW_CAPTION) == []
        assert room.captions == ()
        assert room.speaker.participant_id == bob.participant_id

    async def test_aclose_cancels_pending(self, registry: RoomRegistry, alice_and_bob):
        room, (alice, _), _ = alice_and_bob
        ingest = make_ingest(registry, GatedTranscriber())
        await room.acquire_speaker_lock(alice.participant_id)
        await ingest.submit_recording("1234", RECORDING, "Alice")
        assert ingest.pending == 1

        await ingest.aclose()

        assert ingest.pending == 0
        assert room.captions == ()
