from fastapi import APIRouter

from caption_room.api.v1.dependency import RoomServiceDep

from .utils import ApiSuccess

router = APIRouter()


@router.get('/health', response_model=ApiSuccess)
async def health(service: RoomServiceDep):
    return ApiSuccess(
        results={
            "status": "OK",
            "rooms": service.room_count,
            "connections": service.gateway.connection_count,
            "pending_transcriptions": service.ingest.pending,
        }
    )
