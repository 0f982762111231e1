"""Recording uploads: holder validation and background transcription."""

from __future__ import annotations

import asyncio

from loguru import logger

from caption_room.services.integrations.transcriber_service import AudioPayload, TranscriptionPort
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .room_models import AudioTurn
from .room_registry import RoomRegistry
from .room_session import RoomSession

# Extra time the room's own turn timer allows beyond the transcription timeout.
TURN_TIMER_GRACE_SECONDS = 5.0


class AudioIngest:
    """Accepts a finished recording and turns it into a caption.

    `submit_recording` only validates and marks the turn TRANSCRIBING; the
    transcriber runs in a background task outside the room lock and re-enters
    the room through `publish_caption` or `fail_turn`.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        transcriber: TranscriptionPort,
        *,
        transcription_timeout: float = 60.0,
        max_upload_bytes: int = 25 * 1024 * 1024,
    ):
        self.registry = registry
        self.transcriber = transcriber
        self.transcription_timeout = transcription_timeout
        self.max_upload_bytes = max_upload_bytes
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _validate_payload(self, audio: AudioPayload) -> None:
        if audio.size == 0:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg="Recording is empty",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        if audio.size > self.max_upload_bytes:
            raise AppError(
                errcode=AppErrorCode.E_PAYLOAD_TOO_LARGE,
                errmesg=f"Recording is {audio.size} bytes, limit is {self.max_upload_bytes}",
                status_code=HttpStatusCode.PAYLOAD_TOO_LARGE,
            )

    async def submit_recording(
        self,
        room_id: str,
        audio: AudioPayload,
        speaker_name: str | None,
        participant_id: str | None = None,
        turn_id: str | None = None,
    ) -> AudioTurn:
        """Accept a recording from the current lock holder.

        Returns:
            The turn now in TRANSCRIBING

        Raises:
            AppError: INVALID_PARAMS, PAYLOAD_TOO_LARGE, ROOM_NOT_FOUND or NOT_HOLDER
        """
        if not participant_id and not speaker_name:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg="speaker_name or participant_id is required",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        self._validate_payload(audio)

        room = self.registry.get(room_id)
        turn = await room.begin_transcription(
            participant_id=participant_id or None,
            nickname=speaker_name,
            turn_id=turn_id or None,
            timeout=self.transcription_timeout + TURN_TIMER_GRACE_SECONDS,
        )

        logger.info(
            "Room {} accepted {} bytes from {} turn={}",
            room_id,
            audio.size,
            turn.nickname,
            turn.turn_id,
        )
        task = asyncio.create_task(
            self._transcribe(room, turn, audio),
            name=f"transcribe:{room_id}:{turn.turn_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return turn

    async def _transcribe(self, room: RoomSession, turn: AudioTurn, audio: AudioPayload) -> None:
        try:
            text = await asyncio.wait_for(
                self.transcriber.transcribe(audio),
                timeout=self.transcription_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Room {} turn {} transcription timed out", room.room_id, turn.turn_id)
            await room.fail_turn(turn.turn_id, "timeout")
            return
        except AppError as exc:
            logger.warning(
                "Room {} turn {} transcription failed: {} {}",
                room.room_id,
                turn.turn_id,
                exc.errcode,
                exc.errmesg,
            )
            await room.fail_turn(turn.turn_id, exc.errmesg)
            return
        except Exception:
            logger.exception("Room {} turn {} transcriber crashed", room.room_id, turn.turn_id)
            await room.fail_turn(turn.turn_id, "transcription error")
            return

        text = (text or "").strip()
        if not text:
            logger.warning("Room {} turn {} produced an empty transcript", room.room_id, turn.turn_id)
            await room.fail_turn(turn.turn_id, "empty transcript")
            return

        try:
            await room.publish_caption(turn.participant_id, turn.turn_id, text)
        except AppError as exc:
            if not exc.is_code(AppErrorCode.E_NOT_HOLDER):
                raise
            logger.info(
                "Room {} dropped late transcript for turn {}: {}",
                room.room_id,
                turn.turn_id,
                exc.errmesg,
            )

    async def drain(self) -> None:
        """Wait for all in-flight transcriptions to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self.transcriber.aclose()
