"""Room endpoints: allocate a room code and inspect live rooms."""

from fastapi import APIRouter

from caption_room.api.v1.dependency import RoomServiceDep
from caption_room.api.v1.schemas.base import ApiOut
from caption_room.api.v1.schemas.room import CreateRoomIn, RoomOut, RoomSummaryOut
from caption_room.utils.app_errors import HttpStatusCode

router = APIRouter(prefix="/rooms", tags=["Rooms"])


@router.post("", response_model=ApiOut[RoomOut], status_code=HttpStatusCode.CREATED)
async def create_room(
    service: RoomServiceDep,
    params: CreateRoomIn | None = None,
) -> ApiOut[RoomOut]:
    """Allocate a fresh 4-digit room code.

    Clients then connect to `/ws/{room_id}`. A room nobody joins is evicted
    after ROOM_UNCLAIMED_TTL_SECONDS.
    """
    snapshot = await service.create_room(capacity=params.capacity if params else None)
    return ApiOut[RoomOut](results=RoomOut.from_snapshot(snapshot))


@router.get("", response_model=ApiOut[list[RoomSummaryOut]])
async def list_rooms(service: RoomServiceDep) -> ApiOut[list[RoomSummaryOut]]:
    snapshots = await service.list_rooms()
    return ApiOut[list[RoomSummaryOut]](
        results=[RoomSummaryOut.from_snapshot(snapshot) for snapshot in snapshots]
    )


@router.get("/{room_id}", response_model=ApiOut[RoomOut])
async def get_room(room_id: str, service: RoomServiceDep) -> ApiOut[RoomOut]:
    """Roster, current speaker and recent captions of a live room."""
    snapshot = await service.get_room(room_id)
    return ApiOut[RoomOut](results=RoomOut.from_snapshot(snapshot))
