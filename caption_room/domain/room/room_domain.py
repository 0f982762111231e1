"""Room domain service - facade over the registry, gateway and audio ingest."""

from __future__ import annotations

from fastapi import WebSocket

from caption_room.app_config import AppEnvironConfig, get_app_environ_config
from caption_room.services.integrations.transcriber_service import (
    AudioPayload,
    TranscriptionPort,
    create_transcriber,
)

from .audio_ingest import AudioIngest
from .connection_gateway import ConnectionGateway
from .room_models import AudioTurn, RoomSnapshot
from .room_registry import RoomRegistry


class RoomService:
    """Entry point used by the HTTP and WebSocket routers."""

    def __init__(
        self,
        cfg: AppEnvironConfig | None = None,
        *,
        transcriber: TranscriptionPort | None = None,
    ):
        self.cfg = cfg or get_app_environ_config()
        self.registry = RoomRegistry(
            default_capacity=self.cfg.ROOM_DEFAULT_CAPACITY,
            max_capacity=self.cfg.ROOM_MAX_CAPACITY,
            eviction_grace=self.cfg.ROOM_EVICTION_GRACE_SECONDS,
            turn_timeout=self.cfg.AUDIO_TURN_TIMEOUT_SECONDS,
            history_limit=self.cfg.CAPTION_HISTORY_LIMIT,
        )
        self.gateway = ConnectionGateway(self.registry, queue_size=self.cfg.CHANNEL_SEND_QUEUE_SIZE)
        self.ingest = AudioIngest(
            self.registry,
            transcriber or create_transcriber(self.cfg),
            transcription_timeout=self.cfg.TRANSCRIPTION_TIMEOUT_SECONDS,
            max_upload_bytes=self.cfg.AUDIO_MAX_UPLOAD_BYTES,
        )

    # ==================== ROOMS ====================

    async def create_room(self, capacity: int | None = None) -> RoomSnapshot:
        """Allocate a room code.

        The room is evicted if nobody joins within ROOM_UNCLAIMED_TTL_SECONDS.
        """
        room = self.registry.create_room(capacity)
        room.schedule_eviction(self.cfg.ROOM_UNCLAIMED_TTL_SECONDS)
        return await room.snapshot()

    async def get_room(self, room_id: str) -> RoomSnapshot:
        """Raises AppError if the room does not exist."""
        return await self.registry.get(room_id).snapshot()

    async def list_rooms(self) -> list[RoomSnapshot]:
        return [await room.snapshot() for room in self.registry.list_rooms()]

    @property
    def room_count(self) -> int:
        return len(self.registry)

    # ==================== CONNECTIONS ====================

    async def serve_connection(self, websocket: WebSocket, room_id: str, nickname: str | None) -> None:
        await self.gateway.serve(websocket, room_id, nickname)

    # ==================== AUDIO ====================

    async def submit_recording(
        self,
        room_id: str,
        audio: AudioPayload,
        speaker_name: str | None,
        participant_id: str | None = None,
        turn_id: str | None = None,
    ) -> AudioTurn:
        """Accept a recording for transcription.

        Raises AppError if the room is missing, the speaker does not hold the
        floor, or the payload is empty or too large.
        """
        return await self.ingest.submit_recording(
            room_id,
            audio,
            speaker_name,
            participant_id=participant_id,
            turn_id=turn_id,
        )

    async def aclose(self) -> None:
        await self.ingest.aclose()
        await self.gateway.aclose()
        await self.registry.aclose()


_room_service: RoomService | None = None


def get_room_service() -> RoomService:
    """Get the singleton RoomService instance, building it on first use."""
    global _room_service
    if _room_service is None:
        _room_service = RoomService()
    return _room_service
