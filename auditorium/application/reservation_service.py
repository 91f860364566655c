# auditorium/application/reservation_service.py

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from auditorium import config
from auditorium.domain.eligibility import EligibilityEvaluator
from auditorium.domain.entities import ReservationRecord
from auditorium.domain.exceptions import (
    CutoffPassedError,
    DuplicateReservationError,
    NotAuthorizedError,
    NotFoundError,
    ReservationError,
    RetryableFailureError,
    SeatConflictError,
)
from auditorium.domain.seat_codec import normalize_seat_numbers
from auditorium.domain.state_machine import (
    ArbitrationAttempt,
    ArbitrationState,
    ReservationOutcome,
)
from auditorium.infrastructure.db.session import begin_serializable, is_transient_db_error
from auditorium.infrastructure.repositories.reservation_repository import (
    ReservationLedger,
    is_duplicate_reservation,
)
from auditorium.infrastructure.repositories.show_repository import ShowRepository
from auditorium.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReservationArbiter:
    """
    Serializes reservation attempts for a show so that the seat-conflict
    check and the insert happen as one unit.

    Mutual exclusion comes from the database transaction (SERIALIZABLE plus
    a row lock on the show, or BEGIN IMMEDIATE on SQLite), so it holds across
    server processes. Lock contention reported by the database is retried
    with exponential backoff; logical rejections never are.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        evaluator: EligibilityEvaluator | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator or EligibilityEvaluator()
        self.max_attempts = max_attempts or config.RESERVATION_MAX_ATTEMPTS
        self.base_delay = (
            config.RESERVATION_RETRY_BASE_DELAY if base_delay is None else base_delay
        )
        self.clock = clock
        self.sleep = sleep

    # -----------------------------
    # Reserve
    # -----------------------------
    def reserve(
        self,
        show_id: int,
        user_id: int,
        seat_numbers: Iterable[str],
        now: datetime | None = None,
    ) -> ReservationOutcome:
        seats = normalize_seat_numbers(seat_numbers)
        attempt = ArbitrationAttempt()

        logger.info(
            "Reservation requested. show_id=%s user_id=%s seats=%s",
            show_id,
            user_id,
            seats,
        )

        def validate(db: Session) -> None:
            show = ShowRepository(db).get_snapshot(show_id)
            user = UserRepository(db).get_snapshot(user_id)
            held = ReservationLedger(db).find_for_user_and_show(user_id, show_id)
            self.evaluator.evaluate(show, user, seats, self._now(now), held)

        rejected = self._validate(attempt, validate)
        if rejected:
            return rejected

        def commit(db: Session) -> ReservationRecord:
            show = ShowRepository(db).get_snapshot(show_id, lock=True)
            user = UserRepository(db).get_snapshot(user_id)
            ledger = ReservationLedger(db)
            held = ledger.find_for_user_and_show(user_id, show_id)
            self.evaluator.evaluate(show, user, seats, self._now(now), held)

            reserved = ledger.reserved_seats_for_show(show_id)
            conflict = [seat for seat in seats if seat in reserved]
            if conflict:
                raise SeatConflictError(seats=conflict)

            return ledger.insert(user_id=user_id, show_id=show_id, seat_numbers=seats)

        return self._arbitrate(attempt, commit)

    # -----------------------------
    # Administrative edit
    # -----------------------------
    def modify(
        self,
        reservation_id: int,
        seat_numbers: Iterable[str],
        requesting_is_admin: bool,
        now: datetime | None = None,
    ) -> ReservationOutcome:
        seats = normalize_seat_numbers(seat_numbers)
        attempt = ArbitrationAttempt()

        if not requesting_is_admin:
            return attempt.reject(NotAuthorizedError("Admin access required."))

        def load(db: Session, lock: bool) -> ReservationRecord:
            record = ReservationLedger(db).get(reservation_id)
            if record is None:
                raise NotFoundError("Reservation not found")
            show = ShowRepository(db).get_snapshot(record.show_id, lock=lock)
            self.evaluator.evaluate_admin_edit(show, seats, self._now(now))
            return record

        rejected = self._validate(attempt, lambda db: load(db, lock=False))
        if rejected:
            return rejected

        def commit(db: Session) -> ReservationRecord:
            record = load(db, lock=True)
            ledger = ReservationLedger(db)
            reserved = ledger.reserved_seats_for_show(
                record.show_id,
                exclude_reservation_id=record.id,
            )
            conflict = [seat for seat in seats if seat in reserved]
            if conflict:
                raise SeatConflictError(seats=conflict)
            return ledger.update_seats(record.id, seats)

        return self._arbitrate(attempt, commit)

    # -----------------------------
    # Cancel
    # -----------------------------
    def cancel(
        self,
        reservation_id: int,
        requesting_user_id: int,
        requesting_is_admin: bool,
        now: datetime | None = None,
    ) -> ReservationRecord:
        """
        Owners may cancel until the booking cutoff, admins until the show
        starts. Raises ReservationError subclasses; lock contention is
        retried like a reservation and ends in RetryableFailureError.
        """

        def delete(db: Session) -> ReservationRecord:
            ledger = ReservationLedger(db)
            record = ledger.get(reservation_id)
            if record is None:
                raise NotFoundError("Reservation not found")
            if not requesting_is_admin and record.user_id != requesting_user_id:
                raise NotAuthorizedError()

            show = ShowRepository(db).get_snapshot(record.show_id)
            if show is not None:
                if requesting_is_admin:
                    deadline = show.date
                else:
                    deadline = show.cutoff(self.evaluator.cutoff_minutes)
                if self._now(now) >= deadline:
                    raise CutoffPassedError(
                        "This reservation can no longer be cancelled online."
                    )

            ledger.delete(reservation_id)
            return record

        tries = 0
        while True:
            tries += 1
            try:
                record = self._run_transaction(delete)
                break
            except DBAPIError as exc:
                if not is_transient_db_error(exc):
                    raise
                if tries >= self.max_attempts:
                    logger.error(
                        "Cancellation gave up after %s attempts. reservation_id=%s: %s",
                        tries,
                        reservation_id,
                        exc.orig,
                    )
                    raise RetryableFailureError() from exc
                delay = self._backoff(tries)
                logger.warning(
                    "Transient contention cancelling reservation %s (attempt %s/%s). "
                    "Retrying in %.2f seconds...",
                    reservation_id,
                    tries,
                    self.max_attempts,
                    delay,
                )
                self.sleep(delay)

        logger.info(
            "Reservation cancelled. reservation_id=%s show_id=%s by_user=%s admin=%s",
            reservation_id,
            record.show_id,
            requesting_user_id,
            requesting_is_admin,
        )
        return record

    # -----------------------------
    # State machine driver
    # -----------------------------
    def _now(self, now: datetime | None) -> datetime:
        # Without a fixed timestamp every phase reads the clock again.
        return now or self.clock()

    def _backoff(self, attempt_number: int) -> float:
        return self.base_delay * (2 ** (attempt_number - 1))

    def _validate(
        self,
        attempt: ArbitrationAttempt,
        check: Callable[[Session], object],
    ) -> ReservationOutcome | None:
        """
        Read-only eligibility pass. Returns an outcome only on rejection.

        Contention here is not a verdict: the commit transaction repeats
        every check, so the request moves on to it and its retry loop.
        """
        try:
            with self.session_factory() as db:
                check(db)
        except ReservationError as exc:
            logger.info("Reservation rejected during validation: %s (%s)", exc.kind.value, exc)
            return attempt.reject(exc)
        except DBAPIError as exc:
            if not is_transient_db_error(exc):
                raise
            logger.warning(
                "Database busy while validating reservation, deferring to the transaction: %s",
                exc.orig,
            )
        return None

    def _arbitrate(
        self,
        attempt: ArbitrationAttempt,
        work: Callable[[Session], ReservationRecord],
    ) -> ReservationOutcome:
        while True:
            attempt.advance(ArbitrationState.TRANSACTING)

            try:
                record = self._run_transaction(work)
            except ReservationError as exc:
                logger.info(
                    "Reservation rejected in transaction %s: %s (%s)",
                    attempt.transactions,
                    exc.kind.value,
                    exc,
                )
                return attempt.reject(exc)
            except IntegrityError as exc:
                if not is_duplicate_reservation(exc):
                    raise
                logger.info("Unique constraint hit; user already holds a reservation for this show.")
                return attempt.reject(DuplicateReservationError())
            except DBAPIError as exc:
                if not is_transient_db_error(exc):
                    raise
                attempt.advance(ArbitrationState.RETRYABLE_FAILURE)
                if attempt.transactions >= self.max_attempts:
                    logger.error(
                        "Reservation gave up after %s attempts: %s",
                        attempt.transactions,
                        exc.orig,
                    )
                    return attempt.exhaust(RetryableFailureError())

                delay = self._backoff(attempt.transactions)
                logger.warning(
                    "Transient contention (attempt %s/%s). Retrying in %.2f seconds...",
                    attempt.transactions,
                    self.max_attempts,
                    delay,
                )
                self.sleep(delay)
                continue

            logger.info(
                "Reservation committed. reservation_id=%s show_id=%s seats=%s attempts=%s",
                record.id,
                record.show_id,
                list(record.seat_numbers),
                attempt.transactions,
            )
            return attempt.commit(record)

    def _run_transaction(self, work: Callable[[Session], T]) -> T:
        with self.session_factory() as db:
            with db.begin():
                begin_serializable(db)
                return work(db)
