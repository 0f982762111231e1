from typing import Annotated

from fastapi import Depends

from caption_room.domain.room.room_domain import RoomService, get_room_service

RoomServiceDep = Annotated[RoomService, Depends(get_room_service)]
