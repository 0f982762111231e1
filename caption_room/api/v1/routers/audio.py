"""Recording upload endpoint.

Mounted twice: at `/upload-audio/{room_id}` for the browser client and at
`/api/v1/rooms/{room_id}/audio`.
"""

from fastapi import APIRouter, File, Form, Request, UploadFile
from loguru import logger

from caption_room.api.v1.dependency import RoomServiceDep
from caption_room.api.v1.schemas.base import ApiOut
from caption_room.api.v1.schemas.room import AudioAcceptedOut
from caption_room.services.api_rate_limiter import upload_rate_limit
from caption_room.services.integrations.transcriber_service import AudioPayload
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

router = APIRouter(prefix="/rooms", tags=["Audio"])
legacy_router = APIRouter(tags=["Audio"])


@upload_rate_limit()
async def upload_audio(
    request: Request,
    room_id: str,
    service: RoomServiceDep,
    file: UploadFile = File(..., description="Finished recording"),
    speaker_name: str | None = Form(default=None, description="Nickname of the speaker"),
    form_room_id: str | None = Form(default=None, alias="room_id"),
    participant_id: str | None = Form(default=None, description="Speaker id from ROOM_SNAPSHOT"),
    turn_id: str | None = Form(default=None, description="Turn id, if the client tracks it"),
) -> ApiOut[AudioAcceptedOut]:
    """Submit the speaker's recording for transcription.

    The speaker must hold the room's floor. The caption is broadcast to the
    room over WebSocket once transcription finishes; this call only confirms
    the recording was accepted.
    """
    if form_room_id and form_room_id.strip() != room_id.strip():
        raise AppError(
            errcode=AppErrorCode.E_INVALID_PARAMS,
            errmesg=f"room_id {form_room_id!r} does not match path {room_id!r}",
            status_code=HttpStatusCode.BAD_REQUEST,
        )

    limit = service.cfg.AUDIO_MAX_UPLOAD_BYTES
    if file.size is not None and file.size > limit:
        raise AppError(
            errcode=AppErrorCode.E_PAYLOAD_TOO_LARGE,
            errmesg=f"Recording is {file.size} bytes, limit is {limit}",
            status_code=HttpStatusCode.PAYLOAD_TOO_LARGE,
        )

    data = await file.read()
    audio = AudioPayload(
        data=data,
        filename=file.filename or "recording.webm",
        content_type=file.content_type or "application/octet-stream",
    )
    logger.debug(
        "Upload for room {}: speaker={} participant={} bytes={}",
        room_id,
        speaker_name,
        participant_id,
        audio.size,
    )

    turn = await service.submit_recording(
        room_id,
        audio,
        speaker_name,
        participant_id=participant_id,
        turn_id=turn_id,
    )
    return ApiOut[AudioAcceptedOut](results=AudioAcceptedOut.from_turn(room_id, turn))


router.add_api_route(
    "/{room_id}/audio",
    upload_audio,
    methods=["POST"],
    response_model=ApiOut[AudioAcceptedOut],
    status_code=HttpStatusCode.ACCEPTED,
)
legacy_router.add_api_route(
    "/upload-audio/{room_id}",
    upload_audio,
    methods=["POST"],
    response_model=ApiOut[AudioAcceptedOut],
    status_code=HttpStatusCode.ACCEPTED,
)
