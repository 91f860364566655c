# auditorium/domain/state_machine.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Set

from auditorium.domain.entities import ReservationRecord
from auditorium.domain.exceptions import InvalidStateTransitionError, ReservationError


class ArbitrationState(str, Enum):
    VALIDATING = "VALIDATING"
    TRANSACTING = "TRANSACTING"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"
    RETRYABLE_FAILURE = "RETRYABLE_FAILURE"
    EXHAUSTED = "EXHAUSTED"


class ArbitrationStateMachine:
    """
    Lifecycle of a single reservation attempt.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[ArbitrationState, Set[ArbitrationState]] = {
        ArbitrationState.VALIDATING: {
            ArbitrationState.TRANSACTING,
            ArbitrationState.REJECTED,
        },
        ArbitrationState.TRANSACTING: {
            ArbitrationState.COMMITTED,
            ArbitrationState.REJECTED,
            ArbitrationState.RETRYABLE_FAILURE,
        },
        ArbitrationState.RETRYABLE_FAILURE: {
            ArbitrationState.TRANSACTING,
            ArbitrationState.EXHAUSTED,
        },
        ArbitrationState.COMMITTED: set(),
        ArbitrationState.REJECTED: set(),
        ArbitrationState.EXHAUSTED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_state: ArbitrationState,
        to_state: ArbitrationState,
    ) -> bool:
        cls._ensure_valid_state(from_state)
        cls._ensure_valid_state(to_state)

        return to_state in cls._ALLOWED_TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(
        cls,
        from_state: ArbitrationState,
        to_state: ArbitrationState,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(
                from_state=from_state.value,
                to_state=to_state.value,
            )

    @classmethod
    def is_terminal(cls, state: ArbitrationState) -> bool:
        cls._ensure_valid_state(state)
        return len(cls._ALLOWED_TRANSITIONS.get(state, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, state: ArbitrationState
    ) -> Set[ArbitrationState]:
        cls._ensure_valid_state(state)
        return cls._ALLOWED_TRANSITIONS.get(state, set())

    @staticmethod
    def _ensure_valid_state(state: ArbitrationState) -> None:
        if not isinstance(state, ArbitrationState):
            raise TypeError(
                f"Expected ArbitrationState, got {type(state)}"
            )


@dataclass(frozen=True)
class ReservationOutcome:
    """Typed result of an arbitration run. Exactly one of reservation/error is set."""

    state: ArbitrationState
    reservation: ReservationRecord | None = None
    error: ReservationError | None = None
    attempts: int = 0
    history: tuple[ArbitrationState, ...] = ()

    @property
    def committed(self) -> bool:
        return self.state is ArbitrationState.COMMITTED


@dataclass
class ArbitrationAttempt:
    """Walks one request through the state machine and records its path."""

    state: ArbitrationState = ArbitrationState.VALIDATING
    transactions: int = 0
    history: list[ArbitrationState] = field(
        default_factory=lambda: [ArbitrationState.VALIDATING]
    )

    def advance(self, to_state: ArbitrationState) -> None:
        ArbitrationStateMachine.validate_transition(self.state, to_state)
        if to_state is ArbitrationState.TRANSACTING:
            self.transactions += 1
        self.state = to_state
        self.history.append(to_state)

    def commit(self, reservation: ReservationRecord) -> ReservationOutcome:
        self.advance(ArbitrationState.COMMITTED)
        return self._outcome(reservation=reservation)

    def reject(self, error: ReservationError) -> ReservationOutcome:
        self.advance(ArbitrationState.REJECTED)
        return self._outcome(error=error)

    def exhaust(self, error: ReservationError) -> ReservationOutcome:
        self.advance(ArbitrationState.EXHAUSTED)
        return self._outcome(error=error)

    def _outcome(
        self,
        reservation: ReservationRecord | None = None,
        error: ReservationError | None = None,
    ) -> ReservationOutcome:
        return ReservationOutcome(
            state=self.state,
            reservation=reservation,
            error=error,
            attempts=self.transactions,
            history=tuple(self.history),
        )
