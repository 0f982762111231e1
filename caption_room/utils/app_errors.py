"""Application error taxonomy.

Every recoverable failure in the coordinator is raised as an `AppError`. HTTP
routes render it with the `ApiFailure` envelope, the WebSocket gateway sends
it to the triggering participant as an `ERROR` event.
"""

import sys
from enum import Enum, IntEnum
from uuid import uuid4


class HttpStatusCode(IntEnum):
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    PAYLOAD_TOO_LARGE = 413
    UNPROCESSABLE_ENTITY = 422
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


class AppErrorCode(str, Enum):
    # Room membership
    E_ROOM_FULL = "ROOM_FULL"
    E_ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    E_NOT_PARTICIPANT = "NOT_PARTICIPANT"

    # Speaker lock / audio turns
    E_LOCK_HELD = "LOCK_HELD"
    E_NOT_HOLDER = "NOT_HOLDER"
    E_TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"

    # Channels
    E_CHANNEL_CLOSED = "CHANNEL_CLOSED"

    # Generic
    E_INVALID_PARAMS = "INVALID_PARAMS"
    E_PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    E_RATE_LIMITED = "RATE_LIMITED"
    E_INTERNAL_ERROR = "INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Recoverable application error carrying an error code and HTTP status.

    The caller location is captured at construction time so log lines point at
    the code that raised, not at the exception handler. Helpers that build an
    error for their caller pass `stacklevel=2`.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
        status_code: int = HttpStatusCode.BAD_REQUEST,
        *,
        stacklevel: int = 1,
    ):
        self.errcode = str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]

        frame = sys._getframe(stacklevel)
        module_name = frame.f_globals.get("__name__") or frame.f_code.co_filename
        self.caller_info = f"{module_name}:{frame.f_code.co_name}:{frame.f_lineno}"

        super().__init__(f"{self.errcode}: {errmesg}")

    def is_code(self, errcode: AppErrorCode) -> bool:
        return self.errcode == errcode.value


def room_not_found(room_id: str) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_ROOM_NOT_FOUND,
        errmesg=f"Room {room_id} not found",
        status_code=HttpStatusCode.NOT_FOUND,
        stacklevel=2,
    )


def not_holder(room_id: str, detail: str = "Speaker does not hold the floor") -> AppError:
    return AppError(
        errcode=AppErrorCode.E_NOT_HOLDER,
        errmesg=f"{detail} (room {room_id})",
        status_code=HttpStatusCode.CONFLICT,
        stacklevel=2,
    )
