"""Per-room session: membership, speaker lock, caption log and broadcast fan-out.

Every state-mutating operation runs under the room's `asyncio.Lock`, so one
room processes one command at a time while different rooms run independently.
Broadcasting only enqueues onto each participant's channel (see `EventSink`),
which keeps per-participant delivery order equal to generation order without
letting a slow socket stall the room.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from caption_room.schemas import (
    ParticipantState,
    RoomState,
    ServerEvent,
    SpeakerStatusPayload,
    TurnState,
)
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode, not_holder

from .room_models import AudioTurn, Caption, Participant, RoomSnapshot, SpeakerLock, utcnow
from .room_state_machine import RoomStateMachine, TurnStateMachine

DEFAULT_TURN_TIMEOUT_SECONDS = 120.0


class RoomClosedError(Exception):
    """Raised when an operation reaches a room the registry already evicted."""

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} is closed")


class RoomSession:
    """The state machine for one room.

    Args:
        room_id: Room identifier (the short code clients share)
        capacity: Maximum number of participants
        on_empty: Called under the room lock once the room is empty and its
            eviction grace period (if any) has elapsed; the registry uses it to
            evict the room
        eviction_grace: Seconds an empty room is kept before `on_empty` fires
        turn_timeout: Seconds a granted turn may stay in RECORDING
        history_limit: Number of most recent captions included in snapshots
    """

    def __init__(
        self,
        room_id: str,
        capacity: int = 2,
        *,
        on_empty: Callable[[RoomSession], object] | None = None,
        eviction_grace: float = 0.0,
        turn_timeout: float = DEFAULT_TURN_TIMEOUT_SECONDS,
        history_limit: int = 200,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self.room_id = room_id
        self.capacity = capacity
        self.created_at = utcnow()

        self._on_empty = on_empty
        self._eviction_grace = eviction_grace
        self._turn_timeout = turn_timeout
        self._history_limit = history_limit

        self._lock = asyncio.Lock()
        self._state = RoomState.EMPTY
        self._participants: dict[str, Participant] = {}
        self._speaker: SpeakerLock | None = None
        self._turn: AudioTurn | None = None
        self._captions: list[Caption] = []
        self._next_seq = 1

        self._turn_timer: asyncio.Task | None = None
        self._eviction_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return (
            f"RoomSession(room_id={self.room_id!r}, state={self._state}, "
            f"participants={len(self._participants)}/{self.capacity})"
        )

    # ==================== READ-ONLY VIEW ====================

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def is_empty(self) -> bool:
        return not self._participants

    @property
    def is_closed(self) -> bool:
        return RoomStateMachine.is_terminal(self._state)

    @property
    def participant_count(self) -> int:
        return len(self._participants)

    @property
    def speaker(self) -> SpeakerLock | None:
        return self._speaker

    @property
    def current_turn(self) -> AudioTurn | None:
        return self._turn

    @property
    def captions(self) -> tuple[Caption, ...]:
        return tuple(self._captions)

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    # ==================== MEMBERSHIP ====================

    async def join(self, participant: Participant) -> RoomSnapshot:
        """Admit a participant.

        The joiner receives a ROOM_SNAPSHOT first, then every member (joiner
        included) receives the updated roster.

        Raises:
            AppError: ROOM_FULL when the room is at capacity
            RoomClosedError: if the room was evicted while the caller waited
        """
        async with self._lock:
            if self.is_closed:
                raise RoomClosedError(self.room_id)

            if participant.participant_id in self._participants:
                return self._snapshot()

            if len(self._participants) >= self.capacity:
                raise AppError(
                    errcode=AppErrorCode.E_ROOM_FULL,
                    errmesg=f"Room {self.room_id} is full ({self.capacity}/{self.capacity})",
                    status_code=HttpStatusCode.CONFLICT,
                )

            if any(p.nickname == participant.nickname for p in self._participants.values()):
                logger.warning(
                    "Room {} already has a participant named {!r}; admitting {} anyway",
                    self.room_id,
                    participant.nickname,
                    participant.participant_id,
                )

            self._cancel_eviction()
            participant.state = ParticipantState.JOINED
            self._participants[participant.participant_id] = participant
            if self._state == RoomState.EMPTY:
                self._transition(RoomState.ACTIVE)

            logger.info(
                "Room {} join: {} ({}) [{}/{}]",
                self.room_id,
                participant.nickname,
                participant.participant_id,
                len(self._participants),
                self.capacity,
            )

            snapshot = self._snapshot()
            self._send(participant, ServerEvent.snapshot(snapshot.to_payload(you=participant)))
            self._broadcast_roster()
            return snapshot

    async def leave(self, participant_id: str) -> bool:
        """Remove a participant. Idempotent.

        Releases the speaker lock if the participant held it, broadcasts the
        roster, and starts eviction once the room is empty.

        Returns:
            True if the participant was a member, False otherwise
        """
        async with self._lock:
            participant = self._participants.pop(participant_id, None)
            if participant is None:
                return False

            participant.state = ParticipantState.LEFT
            logger.info(
                "Room {} leave: {} ({}) [{}/{}]",
                self.room_id,
                participant.nickname,
                participant_id,
                len(self._participants),
                self.capacity,
            )

            if self._speaker and self._speaker.participant_id == participant_id:
                self._finish_turn(TurnState.ABANDONED, reason="speaker left")

            self._broadcast_roster()

            if not self._participants:
                self._transition(RoomState.EMPTY)
                self._schedule_eviction(self._eviction_grace)
            return True

    # ==================== SPEAKER LOCK ====================

    async def acquire_speaker_lock(self, participant_id: str) -> SpeakerLock:
        """Grant the floor to a participant.

        Exactly one caller wins while the lock is free; a repeated request from
        the current holder during RECORDING returns the existing grant.

        Raises:
            AppError: LOCK_HELD if another participant (or a pending turn) holds the floor
        """
        async with self._lock:
            participant = self._require_participant(participant_id)

            if self._speaker is not None:
                if (
                    self._speaker.participant_id == participant_id
                    and self._turn is not None
                    and self._turn.state == TurnState.RECORDING
                ):
                    return self._speaker
                raise AppError(
                    errcode=AppErrorCode.E_LOCK_HELD,
                    errmesg=f"{self._speaker.nickname} is speaking in room {self.room_id}",
                    status_code=HttpStatusCode.CONFLICT,
                )

            turn = AudioTurn(participant_id=participant_id, nickname=participant.nickname)
            lock = SpeakerLock(
                participant_id=participant_id,
                nickname=participant.nickname,
                turn_id=turn.turn_id,
                acquired_at=turn.started_at,
            )
            self._turn = turn
            self._speaker = lock
            participant.state = ParticipantState.SPEAKING
            self._arm_turn_timer(turn.turn_id, self._turn_timeout)

            logger.info(
                "Room {} floor granted to {} ({}) turn={}",
                self.room_id,
                participant.nickname,
                participant_id,
                turn.turn_id,
            )
            self._broadcast(ServerEvent.speaker_status(participant.nickname, True, participant_id))
            return lock

    async def release_speaker_lock(self, participant_id: str, turn_id: str | None = None) -> SpeakerLock:
        """Abandon the current turn on behalf of its holder.

        Raises:
            AppError: NOT_HOLDER if the caller does not hold the lock, or holds
                a newer acquisition than `turn_id`
        """
        async with self._lock:
            lock = self._speaker
            if lock is None or lock.participant_id != participant_id:
                raise not_holder(self.room_id, "Release requested by a non-holder")
            if turn_id is not None and lock.turn_id != turn_id:
                raise not_holder(self.room_id, "Release refers to a stale turn")

            self._finish_turn(TurnState.ABANDONED, reason="released")
            return lock

    # ==================== AUDIO TURNS ====================

    async def begin_transcription(
        self,
        *,
        participant_id: str | None = None,
        nickname: str | None = None,
        turn_id: str | None = None,
        timeout: float | None = None,
    ) -> AudioTurn:
        """Mark the current turn as submitted for transcription.

        The speaker is matched by participant id when given, else by nickname
        against the current holder.

        Raises:
            AppError: NOT_HOLDER if the speaker does not hold the lock, the turn
                id is stale, or the turn was already submitted
        """
        async with self._lock:
            lock, turn = self._speaker, self._turn
            if lock is None or turn is None:
                raise not_holder(self.room_id, "Nobody holds the floor")

            if participant_id is not None:
                matches = lock.participant_id == participant_id
            else:
                matches = nickname is not None and lock.nickname == nickname
            if not matches:
                raise not_holder(self.room_id)
            if turn_id is not None and turn.turn_id != turn_id:
                raise not_holder(self.room_id, "Recording belongs to a stale turn")
            if turn.state != TurnState.RECORDING:
                raise not_holder(self.room_id, "Recording for this turn was already submitted")

            self._set_turn_state(turn, TurnState.TRANSCRIBING)
            turn.submitted_at = utcnow()
            if timeout is not None:
                self._arm_turn_timer(turn.turn_id, timeout)
            logger.debug("Room {} turn {} submitted for transcription", self.room_id, turn.turn_id)
            return turn

    async def publish_caption(self, participant_id: str, turn_id: str | None, text: str) -> Caption:
        """Append and broadcast a caption, then release the floor.

        Raises:
            AppError: NOT_HOLDER if the sender no longer holds the lock for that
                turn, e.g. a late transcription of an abandoned turn
        """
        async with self._lock:
            lock, turn = self._speaker, self._turn
            if lock is None or turn is None or lock.participant_id != participant_id:
                raise not_holder(self.room_id, "Caption sender no longer holds the floor")
            if turn_id is not None and turn.turn_id != turn_id:
                raise not_holder(self.room_id, "Caption belongs to a stale turn")

            caption = Caption(
                seq=self._next_seq,
                room_id=self.room_id,
                sender_id=lock.participant_id,
                sender=lock.nickname,
                text=text,
                turn_id=turn.turn_id,
            )
            self._next_seq += 1
            self._captions.append(caption)

            logger.info(
                "Room {} caption #{} from {}: {!r}",
                self.room_id,
                caption.seq,
                caption.sender,
                caption.text,
            )
            self._broadcast(ServerEvent.new_caption(caption.to_payload()))
            self._finish_turn(TurnState.PUBLISHED)
            return caption

    async def fail_turn(self, turn_id: str, reason: str) -> bool:
        """Free the floor after a failed transcription, without a caption.

        Returns:
            True if `turn_id` was still the pending turn, False if it had
            already ended (abandoned, timed out, or replaced)
        """
        async with self._lock:
            turn = self._turn
            if turn is None or turn.turn_id != turn_id or not turn.is_pending:
                return False

            self._broadcast(ServerEvent.transcription_failed(turn.nickname, reason))
            self._finish_turn(TurnState.FAILED, reason=reason)
            return True

    async def expire_turn(self, turn_id: str) -> bool:
        """Timeout path: abandon `turn_id` if it is still pending."""
        async with self._lock:
            turn = self._turn
            if turn is None or turn.turn_id != turn_id or not turn.is_pending:
                return False

            logger.warning(
                "Room {} turn {} of {} timed out in state {}",
                self.room_id,
                turn_id,
                turn.nickname,
                turn.state,
            )
            if turn.state == TurnState.TRANSCRIBING:
                self._broadcast(ServerEvent.transcription_failed(turn.nickname, "timeout"))
            self._finish_turn(TurnState.ABANDONED, reason="timeout")
            return True

    # ==================== SNAPSHOT / LIFECYCLE ====================

    async def snapshot(self) -> RoomSnapshot:
        async with self._lock:
            return self._snapshot()

    async def evict_if_empty(self) -> bool:
        """Run the empty-room callback now if the room is still empty."""
        async with self._lock:
            if self._participants or self.is_closed:
                return False
            self._notify_empty()
            return self.is_closed

    def mark_closed(self) -> None:
        """Called by the registry when it evicts this room."""
        if self.is_closed:
            return
        self._transition(RoomState.CLOSED)
        self._cancel_turn_timer()
        self._cancel_eviction()
        logger.info("Room {} closed", self.room_id)

    def schedule_eviction(self, delay: float) -> None:
        """Evict the room after `delay` seconds unless someone joins first."""
        self._schedule_eviction(delay)

    async def aclose(self) -> None:
        self._cancel_turn_timer()
        self._cancel_eviction()

    # ==================== INTERNALS (call with the lock held) ====================

    def _require_participant(self, participant_id: str) -> Participant:
        participant = self._participants.get(participant_id)
        if participant is None:
            raise AppError(
                errcode=AppErrorCode.E_NOT_PARTICIPANT,
                errmesg=f"{participant_id} is not a member of room {self.room_id}",
                status_code=HttpStatusCode.FORBIDDEN,
            )
        return participant

    def _transition(self, new: RoomState) -> None:
        if not RoomStateMachine.can_transition(self._state, new):
            raise AppError(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg=(
                    f"Invalid room state transition {self._state} -> {new}, "
                    f"allowed: {sorted(RoomStateMachine.get_valid_transitions(self._state))}"
                ),
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            )
        logger.debug("Room {} state {} -> {}", self.room_id, self._state, new)
        self._state = new

    @staticmethod
    def _set_turn_state(turn: AudioTurn, new: TurnState) -> None:
        if not TurnStateMachine.can_transition(turn.state, new):
            raise AppError(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg=(
                    f"Invalid turn state transition {turn.state} -> {new}, "
                    f"allowed: {sorted(TurnStateMachine.get_valid_transitions(turn.state))}"
                ),
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            )
        turn.state = new

    def _finish_turn(self, state: TurnState, reason: str | None = None) -> None:
        """End the current turn, clear the lock and broadcast the cleared status."""
        lock, turn = self._speaker, self._turn
        if lock is None or turn is None:
            return

        self._set_turn_state(turn, state)
        turn.finished_at = utcnow()
        self._speaker = None
        self._turn = None
        self._cancel_turn_timer()

        holder = self._participants.get(lock.participant_id)
        if holder is not None:
            holder.state = ParticipantState.JOINED

        logger.info(
            "Room {} floor released by {} turn={} state={}{}",
            self.room_id,
            lock.nickname,
            turn.turn_id,
            state,
            f" reason={reason}" if reason else "",
        )
        self._broadcast(ServerEvent.speaker_status(lock.nickname, False, lock.participant_id))

    def _snapshot(self) -> RoomSnapshot:
        lock = self._speaker
        speaker = SpeakerStatusPayload(
            nickname=lock.nickname if lock else None,
            is_speaking=lock is not None,
            participant_id=lock.participant_id if lock else None,
        )
        history = self._captions[-self._history_limit:] if self._history_limit else []
        return RoomSnapshot(
            room_id=self.room_id,
            state=self._state,
            capacity=self.capacity,
            participants=[p.to_payload() for p in self._participants.values()],
            speaker=speaker,
            captions=[c.to_payload() for c in history],
            next_seq=self._next_seq,
        )

    def _broadcast_roster(self) -> None:
        names = [p.nickname for p in self._participants.values()]
        self._broadcast(ServerEvent.participants_update(names))

    def _broadcast(self, event: ServerEvent) -> None:
        for participant in list(self._participants.values()):
            self._send(participant, event)

    def _send(self, participant: Participant, event: ServerEvent) -> bool:
        channel = participant.channel
        if channel is None or channel.closed:
            logger.debug(
                "Room {} skipping {} for {}: {}",
                self.room_id,
                event.type.value,
                participant.participant_id,
                AppErrorCode.E_CHANNEL_CLOSED.value,
            )
            return False
        if not channel.deliver(event):
            logger.warning(
                "Room {} dropped {} for {}: {} (channel rejected event)",
                self.room_id,
                event.type.value,
                participant.participant_id,
                AppErrorCode.E_CHANNEL_CLOSED.value,
            )
            return False
        return True

    def _arm_turn_timer(self, turn_id: str, timeout: float) -> None:
        self._cancel_turn_timer()
        self._turn_timer = asyncio.create_task(
            self._expire_after(turn_id, timeout),
            name=f"turn-timeout:{self.room_id}:{turn_id}",
        )

    async def _expire_after(self, turn_id: str, timeout: float) -> None:
        await asyncio.sleep(timeout)
        await self.expire_turn(turn_id)

    def _cancel_turn_timer(self) -> None:
        task, self._turn_timer = self._turn_timer, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _notify_empty(self) -> None:
        if self._on_empty is not None:
            self._on_empty(self)

    def _schedule_eviction(self, delay: float) -> None:
        self._cancel_eviction()
        if delay <= 0:
            self._notify_empty()
            return
        self._eviction_task = asyncio.create_task(
            self._evict_after(delay),
            name=f"room-eviction:{self.room_id}",
        )

    async def _evict_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.evict_if_empty()

    def _cancel_eviction(self) -> None:
        task, self._eviction_task = self._eviction_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
