"""Process-wide map from room id to live `RoomSession`."""

from __future__ import annotations

import threading

from loguru import logger

from caption_room.domain.utils.idgen import new_room_code
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode, room_not_found

from .room_session import DEFAULT_TURN_TIMEOUT_SECONDS, RoomSession

ROOM_ID_MAX_LENGTH = 64
_ROOM_CODE_ATTEMPTS = 100


def normalize_room_id(room_id: str | None) -> str:
    """Strip surrounding whitespace and check the length of a client-supplied room id."""
    room_id = (room_id or "").strip()
    if not room_id or len(room_id) > ROOM_ID_MAX_LENGTH:
        raise AppError(
            errcode=AppErrorCode.E_INVALID_PARAMS,
            errmesg=f"room_id must be 1-{ROOM_ID_MAX_LENGTH} characters",
            status_code=HttpStatusCode.BAD_REQUEST,
        )
    return room_id


class RoomRegistry:
    """Creates, finds and evicts rooms.

    The map is guarded by a `threading.Lock` that is never held across an
    await, so lookups stay cheap and two concurrent `get_or_create` calls for
    the same id always converge on one room.
    """

    def __init__(
        self,
        *,
        default_capacity: int = 2,
        max_capacity: int = 16,
        eviction_grace: float = 0.0,
        turn_timeout: float = DEFAULT_TURN_TIMEOUT_SECONDS,
        history_limit: int = 200,
    ):
        self.default_capacity = default_capacity
        self.max_capacity = max(max_capacity, default_capacity)
        self.eviction_grace = eviction_grace
        self.turn_timeout = turn_timeout
        self.history_limit = history_limit

        self._rooms: dict[str, RoomSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def _resolve_capacity(self, capacity: int | None) -> int:
        if capacity is None:
            return self.default_capacity
        if not 1 <= capacity <= self.max_capacity:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg=f"capacity must be between 1 and {self.max_capacity}",
                status_code=HttpStatusCode.UNPROCESSABLE_ENTITY,
            )
        return capacity

    def _new_room(self, room_id: str, capacity: int) -> RoomSession:
        return RoomSession(
            room_id,
            capacity,
            on_empty=self._on_room_empty,
            eviction_grace=self.eviction_grace,
            turn_timeout=self.turn_timeout,
            history_limit=self.history_limit,
        )

    def get_or_create(self, room_id: str, capacity: int | None = None) -> RoomSession:
        """Return the live room for `room_id`, creating it on first use.

        `capacity` only applies when this call creates the room.
        """
        room_id = normalize_room_id(room_id)
        resolved = self._resolve_capacity(capacity)

        with self._lock:
            room = self._rooms.get(room_id)
            if room is not None and not room.is_closed:
                return room
            room = self._new_room(room_id, resolved)
            self._rooms[room_id] = room

        logger.info("Room {} created (capacity={})", room_id, resolved)
        return room

    def get(self, room_id: str) -> RoomSession:
        """
        Raises:
            AppError: ROOM_NOT_FOUND if no live room has this id
        """
        room_id = normalize_room_id(room_id)
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None or room.is_closed:
            raise room_not_found(room_id)
        return room

    def create_room(self, capacity: int | None = None) -> RoomSession:
        """Allocate a room under a fresh 4-digit code."""
        resolved = self._resolve_capacity(capacity)

        with self._lock:
            for _ in range(_ROOM_CODE_ATTEMPTS):
                room_id = new_room_code()
                if room_id not in self._rooms:
                    break
            else:
                raise AppError(
                    errcode=AppErrorCode.E_INTERNAL_ERROR,
                    errmesg="No free room code available",
                    status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
                )
            room = self._new_room(room_id, resolved)
            self._rooms[room_id] = room

        logger.info("Room {} allocated (capacity={})", room_id, resolved)
        return room

    def remove(self, room_id: str, room: RoomSession) -> bool:
        """Evict `room` if it is still the registered, empty room for `room_id`."""
        with self._lock:
            if self._rooms.get(room_id) is not room:
                return False
            if not room.is_empty:
                return False
            del self._rooms[room_id]
            room.mark_closed()

        logger.info("Room {} evicted", room_id)
        return True

    def list_rooms(self) -> list[RoomSession]:
        with self._lock:
            return list(self._rooms.values())

    def _on_room_empty(self, room: RoomSession) -> None:
        self.remove(room.room_id, room)

    async def aclose(self) -> None:
        with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()

        for room in rooms:
            room.mark_closed()
            await room.aclose()
