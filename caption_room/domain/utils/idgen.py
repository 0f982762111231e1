import secrets

from ulid import ULID

ROOM_CODE_MIN = 1000
ROOM_CODE_MAX = 9999


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_participant_id() -> str:
    return new_ulid("pa_")


def new_turn_id() -> str:
    return new_ulid("tu_")


def new_room_code() -> str:
    """Random 4-digit room code, the format clients display and type in."""
    return str(ROOM_CODE_MIN + secrets.randbelow(ROOM_CODE_MAX - ROOM_CODE_MIN + 1))
