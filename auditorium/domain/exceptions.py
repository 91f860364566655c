from enum import Enum
from typing import Iterable


class ErrorKind(str, Enum):
    INVALID_SEAT = "InvalidSeat"
    CUTOFF_PASSED = "CutoffPassed"
    SEAT_BLOCKED = "SeatBlocked"
    CATEGORY_NOT_ALLOWED = "CategoryNotAllowed"
    SEAT_LIMIT_EXCEEDED = "SeatLimitExceeded"
    DUPLICATE_RESERVATION = "DuplicateReservation"
    SEAT_CONFLICT = "SeatConflict"
    RETRYABLE_FAILURE = "RetryableFailure"
    NOT_FOUND = "NotFound"
    NOT_AUTHORIZED = "NotAuthorized"
    ACCOUNT_DISABLED = "AccountDisabled"


class AuditoriumError(Exception):
    """
    Base exception for all domain-level errors
    inside the auditorium reservation engine.
    """


class InvalidStateTransitionError(AuditoriumError):
    """
    Raised when an illegal arbitration state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ReservationError(AuditoriumError):
    """
    A reservation request was refused.

    Every subclass carries a distinct ``kind`` and a message that can be
    shown to the user as-is.
    """

    kind: ErrorKind
    default_message = "The reservation could not be completed."

    def __init__(self, message: str | None = None, seats: Iterable[str] = ()):
        self.seats = list(seats)
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidSeatError(ReservationError):
    kind = ErrorKind.INVALID_SEAT
    default_message = "One or more selected seats do not exist in this auditorium."


class CutoffPassedError(ReservationError):
    kind = ErrorKind.CUTOFF_PASSED
    default_message = "Online reservations close 30 minutes before the show starts."


class SeatBlockedError(ReservationError):
    kind = ErrorKind.SEAT_BLOCKED
    default_message = "One or more selected seats are not available for this show."


class CategoryNotAllowedError(ReservationError):
    kind = ErrorKind.CATEGORY_NOT_ALLOWED
    default_message = "Your account category cannot book these seats for this show."


class SeatLimitExceededError(ReservationError):
    kind = ErrorKind.SEAT_LIMIT_EXCEEDED
    default_message = "You selected more seats than your account allows."


class DuplicateReservationError(ReservationError):
    kind = ErrorKind.DUPLICATE_RESERVATION
    default_message = "You already have a reservation for this show."


class SeatConflictError(ReservationError):
    """Raised inside the commit transaction when a seat was taken meanwhile."""

    kind = ErrorKind.SEAT_CONFLICT
    default_message = "These seats were just taken - please choose different seats."


class RetryableFailureError(ReservationError):
    kind = ErrorKind.RETRYABLE_FAILURE
    default_message = "The booking system is busy right now. Please try again."


class NotFoundError(ReservationError):
    kind = ErrorKind.NOT_FOUND
    default_message = "The requested item was not found."


class NotAuthorizedError(ReservationError):
    kind = ErrorKind.NOT_AUTHORIZED
    default_message = "You are not allowed to change this reservation."


class AccountDisabledError(ReservationError):
    kind = ErrorKind.ACCOUNT_DISABLED
    default_message = "Your account is disabled."
