# tests/integration/test_arbiter.py

import sqlite3
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from auditorium.application.reservation_service import ReservationArbiter
from auditorium.domain.entities import UserCategory
from auditorium.domain.exceptions import (
    CutoffPassedError,
    ErrorKind,
    NotAuthorizedError,
    NotFoundError,
    RetryableFailureError,
)
from auditorium.domain.seat_codec import encode_seats
from auditorium.domain.state_machine import ArbitrationState
from auditorium.infrastructure.db.models import Show
from auditorium.infrastructure.db.session import get_db_session
from auditorium.infrastructure.repositories.reservation_repository import ReservationLedger
from auditorium.infrastructure.repositories.show_repository import ShowRepository


def _locked() -> OperationalError:
    return OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))


def _reservations(session_factory, show_id):
    with session_factory() as db:
        return ReservationLedger(db).reservations_for_show(show_id)


def _flaky(arbiter, monkeypatch, failures, error_factory=_locked):
    real = arbiter._run_transaction
    calls = {"n": 0}

    def run(work):
        calls["n"] += 1
        if failures is None or calls["n"] <= failures:
            raise error_factory()
        return real(work)

    monkeypatch.setattr(arbiter, "_run_transaction", run)
    return calls


# ---------------------
# BOOKING SCENARIO
# ---------------------

def test_conflict_then_cancel_then_blocked(arbiter, make_show, make_user, session_factory):
    show = make_show(blocked_seats=["FA1"])
    first_user = make_user()
    second_user = make_user()

    first = arbiter.reserve(show.id, first_user.id, ["FA2", "FA3"])
    assert first.committed
    assert first.reservation.seat_numbers == ("FA2", "FA3")
    assert first.attempts == 1

    second = arbiter.reserve(show.id, second_user.id, ["FA2"])
    assert second.state is ArbitrationState.REJECTED
    assert second.error.kind is ErrorKind.SEAT_CONFLICT
    assert second.error.seats == ["FA2"]
    assert second.history == (
        ArbitrationState.VALIDATING,
        ArbitrationState.TRANSACTING,
        ArbitrationState.REJECTED,
    )

    cancelled = arbiter.cancel(first.reservation.id, first_user.id, requesting_is_admin=False)
    assert cancelled.id == first.reservation.id
    assert _reservations(session_factory, show.id) == []

    blocked = arbiter.reserve(show.id, first_user.id, ["FA1"])
    assert blocked.error.kind is ErrorKind.SEAT_BLOCKED
    assert blocked.attempts == 0


def test_second_reservation_for_same_show_is_duplicate(arbiter, make_show, make_user):
    show = make_show()
    user = make_user()

    assert arbiter.reserve(show.id, user.id, ["FB1"]).committed
    outcome = arbiter.reserve(show.id, user.id, ["FB5"])

    assert outcome.error.kind is ErrorKind.DUPLICATE_RESERVATION


def test_same_user_may_book_different_shows(arbiter, make_show, make_user):
    user = make_user()

    assert arbiter.reserve(make_show(title="One").id, user.id, ["FB1"]).committed
    assert arbiter.reserve(make_show(title="Two").id, user.id, ["FB1"]).committed


def test_rejections_from_eligibility(arbiter, make_show, make_user):
    show = make_show(
        allowed_categories=[UserCategory.SINGLE, UserCategory.FAFA],
        exclusive_rows=["A"],
    )

    cases = [
        (make_user(), ["RN6"], ErrorKind.INVALID_SEAT),
        (make_user(), ["FA4"], ErrorKind.CATEGORY_NOT_ALLOWED),
        (make_user(category=UserCategory.FAMILY), ["FB4"], ErrorKind.CATEGORY_NOT_ALLOWED),
        (make_user(), ["FB1", "FB2", "FB3", "FB4", "FB5"], ErrorKind.SEAT_LIMIT_EXCEEDED),
        (make_user(is_enabled=False), ["FB1"], ErrorKind.ACCOUNT_DISABLED),
    ]
    for user, seats, kind in cases:
        outcome = arbiter.reserve(show.id, user.id, seats)
        assert outcome.error.kind is kind, seats

    assert arbiter.reserve(show.id, make_user(category=UserCategory.FAFA).id, ["FA4"]).committed


def test_unknown_show_or_user(arbiter, make_show, make_user):
    show = make_show()

    assert arbiter.reserve(999, make_user().id, ["FA1"]).error.kind is ErrorKind.NOT_FOUND
    assert arbiter.reserve(show.id, 999, ["FA1"]).error.kind is ErrorKind.NOT_FOUND


def test_cutoff_closes_online_booking(arbiter, make_show, make_user):
    show = make_show()
    user = make_user()

    late = arbiter.reserve(show.id, user.id, ["FA1"], now=show.date - timedelta(minutes=30))
    assert late.error.kind is ErrorKind.CUTOFF_PASSED

    on_time = arbiter.reserve(show.id, user.id, ["FA1"], now=show.date - timedelta(minutes=31))
    assert on_time.committed


def test_admin_has_no_seat_limit(arbiter, make_show, make_user):
    show = make_show()
    admin = make_user(is_admin=True)
    seats = [f"FC{n}" for n in range(1, 19)] + ["FD1", "FD2"]

    outcome = arbiter.reserve(show.id, admin.id, seats)

    assert outcome.committed
    assert len(outcome.reservation.seat_numbers) == 20


def test_duplicate_seats_in_request_are_collapsed(arbiter, make_show, make_user):
    outcome = arbiter.reserve(make_show().id, make_user().id, ["FA2", " FA2", "FA3"])

    assert outcome.reservation.seat_numbers == ("FA2", "FA3")


# ---------------------
# CANCELLATION
# ---------------------

def test_cancel_rules(arbiter, make_show, make_user):
    show = make_show()
    owner = make_user()
    stranger = make_user()
    admin = make_user(is_admin=True)
    reservation = arbiter.reserve(show.id, owner.id, ["FA2"]).reservation
    inside_cutoff = show.date - timedelta(minutes=10)

    with pytest.raises(NotAuthorizedError):
        arbiter.cancel(reservation.id, stranger.id, requesting_is_admin=False)

    with pytest.raises(CutoffPassedError):
        arbiter.cancel(reservation.id, owner.id, requesting_is_admin=False, now=inside_cutoff)

    arbiter.cancel(reservation.id, admin.id, requesting_is_admin=True, now=inside_cutoff)

    with pytest.raises(NotFoundError):
        arbiter.cancel(reservation.id, owner.id, requesting_is_admin=False)


# ---------------------
# ADMIN EDITS
# ---------------------

def test_modify_requires_admin(arbiter, make_show, make_user):
    reservation = arbiter.reserve(make_show().id, make_user().id, ["FA2"]).reservation

    outcome = arbiter.modify(reservation.id, ["FA5"], requesting_is_admin=False)

    assert outcome.error.kind is ErrorKind.NOT_AUTHORIZED


def test_modify_checks_other_reservations_only(arbiter, make_show, make_user, session_factory):
    show = make_show(blocked_seats=["FA1"])
    mine = arbiter.reserve(show.id, make_user().id, ["FA2", "FA3"]).reservation
    arbiter.reserve(show.id, make_user().id, ["FA4"])

    conflict = arbiter.modify(mine.id, ["FA3", "FA4"], requesting_is_admin=True)
    assert conflict.error.kind is ErrorKind.SEAT_CONFLICT
    assert conflict.error.seats == ["FA4"]

    blocked = arbiter.modify(mine.id, ["FA1"], requesting_is_admin=True)
    assert blocked.error.kind is ErrorKind.SEAT_BLOCKED

    moved = arbiter.modify(mine.id, ["FA3", "FA5"], requesting_is_admin=True)
    assert moved.committed
    assert moved.reservation.seat_numbers == ("FA3", "FA5")

    stored = {r.id: r.seat_numbers for r in _reservations(session_factory, show.id)}
    assert stored[mine.id] == ("FA3", "FA5")


def test_modify_after_show_start(arbiter, make_show, make_user):
    show = make_show()
    reservation = arbiter.reserve(show.id, make_user().id, ["FA2"]).reservation

    outcome = arbiter.modify(
        reservation.id,
        ["FA5"],
        requesting_is_admin=True,
        now=show.date + timedelta(minutes=1),
    )

    assert outcome.error.kind is ErrorKind.CUTOFF_PASSED


def test_modify_unknown_reservation(arbiter):
    outcome = arbiter.modify(999, ["FA5"], requesting_is_admin=True)

    assert outcome.error.kind is ErrorKind.NOT_FOUND


# ---------------------
# RETRIES
# ---------------------

def test_transient_failures_are_retried_with_backoff(
    make_show, make_user, session_factory, monkeypatch
):
    delays = []
    arbiter = ReservationArbiter(session_factory, max_attempts=3, base_delay=0.1, sleep=delays.append)
    calls = _flaky(arbiter, monkeypatch, failures=2)

    outcome = arbiter.reserve(make_show().id, make_user().id, ["FA2"])

    assert outcome.committed
    assert outcome.attempts == 3
    assert calls["n"] == 3
    assert delays == pytest.approx([0.1, 0.2])
    assert outcome.history.count(ArbitrationState.RETRYABLE_FAILURE) == 2


def test_retries_exhausted(make_show, make_user, session_factory, monkeypatch):
    delays = []
    arbiter = ReservationArbiter(session_factory, max_attempts=3, base_delay=0.1, sleep=delays.append)
    _flaky(arbiter, monkeypatch, failures=None)
    show = make_show()

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2"])

    assert outcome.state is ArbitrationState.EXHAUSTED
    assert outcome.error.kind is ErrorKind.RETRYABLE_FAILURE
    assert outcome.attempts == 3
    assert delays == pytest.approx([0.1, 0.2])
    assert outcome.history[-2:] == (
        ArbitrationState.RETRYABLE_FAILURE,
        ArbitrationState.EXHAUSTED,
    )
    assert _reservations(session_factory, show.id) == []


def test_logical_rejection_is_not_retried(arbiter, make_show, make_user, monkeypatch):
    show = make_show()
    arbiter.reserve(show.id, make_user().id, ["FA2"])
    calls = _flaky(arbiter, monkeypatch, failures=0)

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2"])

    assert outcome.error.kind is ErrorKind.SEAT_CONFLICT
    assert calls["n"] == 1


def test_unique_constraint_maps_to_duplicate(arbiter, make_show, make_user, monkeypatch):
    show = make_show()
    user = make_user()
    assert arbiter.reserve(show.id, user.id, ["FA2"]).committed
    # Hide the held reservation from both checks so the insert reaches the constraint.
    monkeypatch.setattr(ReservationLedger, "find_for_user_and_show", lambda self, u, s: None)

    outcome = arbiter.reserve(show.id, user.id, ["FB2"])

    assert outcome.error.kind is ErrorKind.DUPLICATE_RESERVATION
    assert outcome.history[-2:] == (ArbitrationState.TRANSACTING, ArbitrationState.REJECTED)


def test_named_unique_constraint_maps_to_duplicate(arbiter, make_show, make_user, monkeypatch):
    _flaky(
        arbiter,
        monkeypatch,
        failures=1,
        error_factory=lambda: IntegrityError(
            "INSERT INTO reservations",
            {},
            Exception('duplicate key value violates unique constraint "uq_reservation_user_show"'),
        ),
    )

    outcome = arbiter.reserve(make_show().id, make_user().id, ["FA2"])

    assert outcome.error.kind is ErrorKind.DUPLICATE_RESERVATION


def test_other_integrity_errors_propagate(arbiter, make_show, make_user, monkeypatch):
    _flaky(
        arbiter,
        monkeypatch,
        failures=1,
        error_factory=lambda: IntegrityError(
            "INSERT INTO reservations", {}, sqlite3.IntegrityError("FOREIGN KEY constraint failed")
        ),
    )

    with pytest.raises(IntegrityError):
        arbiter.reserve(make_show().id, make_user().id, ["FA2"])


def test_other_database_errors_propagate(arbiter, make_show, make_user, monkeypatch):
    _flaky(
        arbiter,
        monkeypatch,
        failures=1,
        error_factory=lambda: OperationalError(
            "SELECT", {}, sqlite3.OperationalError("no such table: reservations")
        ),
    )

    with pytest.raises(OperationalError):
        arbiter.reserve(make_show().id, make_user().id, ["FA2"])


def test_contention_while_validating_moves_on_to_the_transaction(
    arbiter, make_show, make_user, monkeypatch
):
    show = make_show()
    real = ShowRepository.get_snapshot
    calls = {"n": 0}

    def locked_once(self, show_id, lock=False):
        calls["n"] += 1
        if calls["n"] == 1:
            raise _locked()
        return real(self, show_id, lock=lock)

    monkeypatch.setattr(ShowRepository, "get_snapshot", locked_once)

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2"])

    assert outcome.committed
    assert outcome.history == (
        ArbitrationState.VALIDATING,
        ArbitrationState.TRANSACTING,
        ArbitrationState.COMMITTED,
    )


# ---------------------
# CHANGES BETWEEN VALIDATION AND COMMIT
# ---------------------

def _before_commit(arbiter, monkeypatch, change):
    real = arbiter._run_transaction

    def run(work):
        change()
        return real(work)

    monkeypatch.setattr(arbiter, "_run_transaction", run)


def _assert_rejected_in_transaction(outcome, kind):
    assert outcome.error.kind is kind
    assert outcome.attempts == 1
    assert outcome.history == (
        ArbitrationState.VALIDATING,
        ArbitrationState.TRANSACTING,
        ArbitrationState.REJECTED,
    )


def test_show_deleted_before_commit(arbiter, make_show, make_user, session_factory, monkeypatch):
    show = make_show()

    def delete_show():
        with get_db_session(session_factory) as db:
            db.delete(db.get(Show, show.id))

    _before_commit(arbiter, monkeypatch, delete_show)

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2"])

    _assert_rejected_in_transaction(outcome, ErrorKind.NOT_FOUND)


def test_seat_blocked_before_commit(arbiter, make_show, make_user, session_factory, monkeypatch):
    show = make_show()

    def block_seat():
        with get_db_session(session_factory) as db:
            db.get(Show, show.id).blocked_seats = encode_seats(["FA2"])

    _before_commit(arbiter, monkeypatch, block_seat)

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2", "FA3"])

    _assert_rejected_in_transaction(outcome, ErrorKind.SEAT_BLOCKED)
    assert outcome.error.seats == ["FA2"]


def test_cutoff_passes_before_commit(make_show, make_user, session_factory):
    show = make_show()
    readings = iter([show.date - timedelta(minutes=31), show.date - timedelta(minutes=29)])
    arbiter = ReservationArbiter(session_factory, clock=lambda: next(readings), sleep=lambda _: None)

    outcome = arbiter.reserve(show.id, make_user().id, ["FA2"])

    _assert_rejected_in_transaction(outcome, ErrorKind.CUTOFF_PASSED)
    assert _reservations(session_factory, show.id) == []


# ---------------------
# CANCELLATION RETRIES
# ---------------------

def test_cancel_retries_contention(make_show, make_user, session_factory, monkeypatch):
    delays = []
    arbiter = ReservationArbiter(session_factory, max_attempts=3, base_delay=0.1, sleep=delays.append)
    show = make_show()
    owner = make_user()
    reservation = arbiter.reserve(show.id, owner.id, ["FA2"]).reservation
    calls = _flaky(arbiter, monkeypatch, failures=1)

    cancelled = arbiter.cancel(reservation.id, owner.id, requesting_is_admin=False)

    assert cancelled.id == reservation.id
    assert calls["n"] == 2
    assert delays == pytest.approx([0.1])
    assert _reservations(session_factory, show.id) == []


def test_cancel_gives_up_with_retryable_failure(make_show, make_user, session_factory, monkeypatch):
    delays = []
    arbiter = ReservationArbiter(session_factory, max_attempts=3, base_delay=0.1, sleep=delays.append)
    show = make_show()
    owner = make_user()
    reservation = arbiter.reserve(show.id, owner.id, ["FA2"]).reservation
    _flaky(arbiter, monkeypatch, failures=None)

    with pytest.raises(RetryableFailureError):
        arbiter.cancel(reservation.id, owner.id, requesting_is_admin=False)

    assert delays == pytest.approx([0.1, 0.2])
    assert len(_reservations(session_factory, show.id)) == 1
