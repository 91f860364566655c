# auditorium/domain/eligibility.py

from datetime import datetime

from auditorium import config
from auditorium.domain.entities import ReservationRecord, ShowSnapshot, UserSnapshot
from auditorium.domain.exceptions import (
    AccountDisabledError,
    CategoryNotAllowedError,
    CutoffPassedError,
    DuplicateReservationError,
    InvalidSeatError,
    NotFoundError,
    SeatBlockedError,
    SeatLimitExceededError,
)
from auditorium.domain.seat_layout import is_valid_seat, parse_seat_id


class EligibilityEvaluator:
    """
    Decides whether a reservation request is legal before anything is written.

    Rules are checked in a fixed order and the first failure is raised.
    The result is advisory: seat conflicts with other users can only be
    decided inside the commit transaction.
    """

    def __init__(self, cutoff_minutes: int | None = None):
        self.cutoff_minutes = (
            config.BOOKING_CUTOFF_MINUTES if cutoff_minutes is None else cutoff_minutes
        )

    def evaluate(
        self,
        show: ShowSnapshot | None,
        user: UserSnapshot | None,
        seat_numbers: list[str],
        now: datetime,
        held_reservation: ReservationRecord | None = None,
    ) -> None:
        if show is None:
            raise NotFoundError("Show not found")
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_enabled:
            raise AccountDisabledError()

        self._check_seats_exist(show, seat_numbers)
        self._check_cutoff(show, now)
        self._check_not_blocked(show, seat_numbers)

        if not user.is_admin:
            self._check_exclusive_rows(show, user, seat_numbers)
            if user.category not in show.allowed_categories:
                raise CategoryNotAllowedError(
                    f"Reservations for this show are not open to "
                    f"'{user.category.value}' accounts."
                )

        limit = user.effective_seat_limit
        if limit is not None and len(seat_numbers) > limit:
            raise SeatLimitExceededError(f"You can only reserve up to {limit} seats.")

        if held_reservation is not None:
            raise DuplicateReservationError()

    def evaluate_admin_edit(
        self,
        show: ShowSnapshot | None,
        seat_numbers: list[str],
        now: datetime,
    ) -> None:
        """Administrative edits skip the cutoff, category and limit rules."""
        if show is None:
            raise NotFoundError("Show not found")

        self._check_seats_exist(show, seat_numbers)
        if now >= show.date:
            raise CutoffPassedError("Reservations for past shows cannot be modified.")
        self._check_not_blocked(show, seat_numbers)

    @staticmethod
    def _check_seats_exist(show: ShowSnapshot, seat_numbers: list[str]) -> None:
        if not seat_numbers:
            raise InvalidSeatError("Select at least one seat.")
        invalid = [seat for seat in seat_numbers if not is_valid_seat(show.layout, seat)]
        if invalid:
            raise InvalidSeatError(
                f"Invalid seat selection: {', '.join(invalid)}",
                seats=invalid,
            )

    def _check_cutoff(self, show: ShowSnapshot, now: datetime) -> None:
        if now >= show.cutoff(self.cutoff_minutes):
            raise CutoffPassedError(
                f"Online reservations close {self.cutoff_minutes} minutes "
                f"before the show starts."
            )

    @staticmethod
    def _check_not_blocked(show: ShowSnapshot, seat_numbers: list[str]) -> None:
        blocked = [seat for seat in seat_numbers if seat in show.blocked_seats]
        if blocked:
            raise SeatBlockedError(seats=blocked)

    @staticmethod
    def _check_exclusive_rows(
        show: ShowSnapshot,
        user: UserSnapshot,
        seat_numbers: list[str],
    ) -> None:
        if not show.exclusive_rows or user.category == show.exclusive_category:
            return

        restricted = []
        for seat in seat_numbers:
            ref = parse_seat_id(seat, show.layout)
            if show.is_exclusive_row(ref.prefix, ref.row):
                restricted.append(seat)

        if restricted:
            raise CategoryNotAllowedError(
                f"Seats {', '.join(restricted)} are reserved for "
                f"'{show.exclusive_category.value}' accounts.",
                seats=restricted,
            )
