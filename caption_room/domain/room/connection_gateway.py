"""WebSocket channels: one per participant, bridging wire events to room commands."""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger
from starlette.websockets import WebSocketState

from caption_room.schemas import ClientEvent, ClientEventType, ServerEvent
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .room_models import Participant
from .room_registry import RoomRegistry
from .room_session import RoomClosedError, RoomSession

# Application close codes (4000-4999 are free for application use)
CLOSE_ROOM_FULL = 4003
CLOSE_SLOW_CONSUMER = 4008
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008

_JOIN_ATTEMPTS = 3


class ChannelHandle:
    """Outbound side of one participant connection.

    Events are queued by `deliver` and written by a single writer task, so a
    participant sees events in the order the room produced them. A channel that
    overflows its queue or fails a write is marked closed and never reopens.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = 256, label: str = ""):
        self.websocket = websocket
        self.label = label
        self._queue: asyncio.Queue[ServerEvent | None] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._close_code: int | None = None
        self._writer: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"ChannelHandle({self.label!r}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_code(self) -> int | None:
        return self._close_code

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"channel-writer:{self.label}")

    def deliver(self, event: ServerEvent) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Channel {} send queue full; closing", self.label)
            self._mark_dead(CLOSE_SLOW_CONSUMER)
            return False
        return True

    async def _write_loop(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self.websocket.send_text(event.encode())
            except Exception as exc:
                logger.info("Channel {} write failed: {!r}", self.label, exc)
                self._closed = True
                return

    def _mark_dead(self, code: int) -> None:
        self._closed = True
        self._close_code = code
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        # Wake the reader so the gateway runs its leave path.
        asyncio.create_task(self._close_socket(code), name=f"channel-close:{self.label}")

    async def _close_socket(self, code: int) -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except Exception as exc:
            logger.debug("Channel {} close failed: {!r}", self.label, exc)

    async def aclose(self, code: int = CLOSE_NORMAL, *, flush_timeout: float = 1.0) -> None:
        """Flush queued events, stop the writer and close the socket."""
        if self._writer is not None and not self._writer.done():
            if not self._closed:
                self._closed = True
                with contextlib.suppress(asyncio.QueueFull):
                    self._queue.put_nowait(None)
                try:
                    await asyncio.wait_for(asyncio.shield(self._writer), timeout=flush_timeout)
                except asyncio.TimeoutError:
                    self._writer.cancel()
            else:
                self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
        self._closed = True
        await self._close_socket(self._close_code or code)


class ConnectionGateway:
    """Runs the read loop for each WebSocket and dispatches client events.

    Example:
        ```python
        @router.websocket("/ws/{room_id}")
        async def room_ws(websocket: WebSocket, room_id: str, nickname: str | None = None):
            await gateway.serve(websocket, room_id, nickname)
        ```
    """

    def __init__(self, registry: RoomRegistry, *, queue_size: int = 256):
        self.registry = registry
        self.queue_size = queue_size
        self._channels: set[ChannelHandle] = set()

    @property
    def connection_count(self) -> int:
        return len(self._channels)

    async def serve(self, websocket: WebSocket, room_id: str, nickname: str | None = None) -> None:
        await websocket.accept()
        channel = ChannelHandle(websocket, self.queue_size, label=f"{room_id}:{nickname or '?'}")
        channel.start()
        self._channels.add(channel)

        room: RoomSession | None = None
        participant: Participant | None = None
        close_code = CLOSE_NORMAL
        try:
            if nickname:
                try:
                    joined = await self._join(channel, room_id, self._clean_nickname(nickname))
                except AppError as exc:
                    logger.info(
                        "Channel {} rejected on connect: {} {}", channel.label, exc.errcode, exc.errmesg
                    )
                    channel.deliver(ServerEvent.from_app_error(exc))
                    close_code = CLOSE_POLICY_VIOLATION
                    return
                if joined is None:
                    close_code = CLOSE_ROOM_FULL
                    return
                room, participant = joined

            while not channel.closed:
                raw = await self._receive_frame(websocket)
                try:
                    event = ClientEvent.parse(raw)
                    if event.type == ClientEventType.LEAVE:
                        logger.debug("Channel {} sent LEAVE", channel.label)
                        break
                    if event.type == ClientEventType.JOIN and participant is None:
                        requested = self._clean_nickname(event.value("nickname"))
                        joined = await self._join(channel, room_id, requested)
                        if joined is None:
                            close_code = CLOSE_ROOM_FULL
                            return
                        room, participant = joined
                        continue
                    await self._dispatch(channel, event, room, participant)
                except AppError as exc:
                    logger.debug("Channel {} rejected: {} {}", channel.label, exc.errcode, exc.errmesg)
                    channel.deliver(ServerEvent.from_app_error(exc))
        except WebSocketDisconnect as exc:
            logger.info("Channel {} disconnected (code={})", channel.label, exc.code)
        except RuntimeError as exc:
            # Starlette raises RuntimeError when reading from a socket we already closed.
            logger.debug("Channel {} read after close: {}", channel.label, exc)
        finally:
            if room is not None and participant is not None:
                await room.leave(participant.participant_id)
            self._channels.discard(channel)
            await channel.aclose(close_code)

    @staticmethod
    async def _receive_frame(websocket: WebSocket) -> str | bytes:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    @staticmethod
    def _clean_nickname(nickname: object) -> str:
        if not isinstance(nickname, str) or not nickname.strip():
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg="A non-blank nickname is required to join",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        return nickname.strip()

    async def _join(
        self, channel: ChannelHandle, room_id: str, nickname: str
    ) -> tuple[RoomSession, Participant] | None:
        """Admit a new participant, retrying if the room is evicted under us.

        Returns None when the room is full; the channel has then been sent the
        ERROR event and should be closed.
        """
        participant = Participant.create(nickname, channel)
        channel.label = f"{room_id}:{nickname}:{participant.participant_id[-6:]}"

        for _ in range(_JOIN_ATTEMPTS):
            room = self.registry.get_or_create(room_id)
            try:
                await room.join(participant)
            except RoomClosedError:
                logger.debug("Room {} closed during join; retrying", room_id)
                continue
            except AppError as exc:
                if not exc.is_code(AppErrorCode.E_ROOM_FULL):
                    raise
                logger.info("Room {} full; rejecting {}", room_id, nickname)
                channel.deliver(ServerEvent.from_app_error(exc))
                return None
            return room, participant

        raise AppError(
            errcode=AppErrorCode.E_INTERNAL_ERROR,
            errmesg=f"Could not join room {room_id}",
            status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
        )

    async def _dispatch(
        self,
        channel: ChannelHandle,
        event: ClientEvent,
        room: RoomSession | None,
        participant: Participant | None,
    ) -> None:
        if event.type == ClientEventType.PING:
            channel.deliver(ServerEvent.pong())
            return

        if room is None or participant is None:
            raise AppError(
                errcode=AppErrorCode.E_NOT_PARTICIPANT,
                errmesg="Send JOIN before any other event",
                status_code=HttpStatusCode.FORBIDDEN,
            )

        if event.type == ClientEventType.JOIN:
            # Already joined: resend the current view.
            snapshot = await room.snapshot()
            channel.deliver(ServerEvent.snapshot(snapshot.to_payload(you=participant)))
        elif event.type == ClientEventType.SPEAKER_START:
            claimed = event.value("nickname")
            if claimed and claimed != participant.nickname:
                logger.debug(
                    "Channel {} SPEAKER_START names {!r}; using connection identity",
                    channel.label,
                    claimed,
                )
            await room.acquire_speaker_lock(participant.participant_id)
        elif event.type == ClientEventType.SPEAKER_STOP:
            await room.release_speaker_lock(
                participant.participant_id, event.value("turnId") or event.value("turn_id")
            )

    async def aclose(self) -> None:
        channels = list(self._channels)
        self._channels.clear()
        for channel in channels:
            await channel.aclose(1001)
