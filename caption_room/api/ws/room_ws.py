from fastapi import APIRouter, WebSocket

from caption_room.api.v1.dependency import RoomServiceDep

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws/{room_id}")
async def room_socket(
    websocket: WebSocket,
    room_id: str,
    service: RoomServiceDep,
    nickname: str | None = None,
):
    """Room channel. Joins immediately when `nickname` is given, else waits for JOIN."""
    await service.serve_connection(websocket, room_id, nickname)
