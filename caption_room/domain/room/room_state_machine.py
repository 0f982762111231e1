"""Room and audio turn state machines."""

from caption_room.schemas import RoomState, TurnState


class RoomStateMachine:
    """State machine for room lifecycle transitions.

    State flow with triggers:
    - EMPTY (room created) -> ACTIVE (first participant joined) | CLOSED (evicted)
    - ACTIVE -> EMPTY (last participant left) | CLOSED (server shutdown)
    - CLOSED is terminal

    Detailed triggers:
    1. EMPTY: Set when the registry creates the room, and when the roster drains
    2. ACTIVE: Set by join() when the first participant is admitted
    3. CLOSED: Set by the registry when it evicts an empty room, or on shutdown
    """

    TRANSITIONS: dict[RoomState, set[RoomState]] = {
        RoomState.EMPTY: {RoomState.ACTIVE, RoomState.CLOSED},
        RoomState.ACTIVE: {RoomState.EMPTY, RoomState.CLOSED},
        RoomState.CLOSED: set(),
    }

    TERMINAL_STATES: set[RoomState] = {RoomState.CLOSED}

    @classmethod
    def can_transition(cls, current: RoomState, new: RoomState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current room state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: RoomState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: RoomState) -> set[RoomState]:
        return cls.TRANSITIONS.get(state, set())


class TurnStateMachine:
    """State machine for audio turns.

    State flow with triggers:
    - RECORDING (lock granted) -> TRANSCRIBING (recording uploaded) | ABANDONED
    - TRANSCRIBING -> PUBLISHED (caption broadcast) | FAILED (transcriber error/timeout) | ABANDONED
    - PUBLISHED, FAILED and ABANDONED are terminal

    ABANDONED covers explicit SPEAKER_STOP, holder disconnect and turn timeout.
    """

    TRANSITIONS: dict[TurnState, set[TurnState]] = {
        TurnState.RECORDING: {
            TurnState.TRANSCRIBING,
            TurnState.PUBLISHED,
            TurnState.ABANDONED,
        },
        TurnState.TRANSCRIBING: {
            TurnState.PUBLISHED,
            TurnState.FAILED,
            TurnState.ABANDONED,
        },
        TurnState.PUBLISHED: set(),
        TurnState.FAILED: set(),
        TurnState.ABANDONED: set(),
    }

    TERMINAL_STATES: set[TurnState] = {
        TurnState.PUBLISHED,
        TurnState.FAILED,
        TurnState.ABANDONED,
    }

    @classmethod
    def can_transition(cls, current: TurnState, new: TurnState) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: TurnState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: TurnState) -> set[TurnState]:
        return cls.TRANSITIONS.get(state, set())
