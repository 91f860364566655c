# auditorium/infrastructure/repositories/reservation_repository.py

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditorium.domain.entities import ReservationRecord
from auditorium.domain.seat_codec import decode_seats, encode_seats
from auditorium.infrastructure.db.models import RESERVATION_USER_SHOW_UNIQUE, Reservation
from auditorium.infrastructure.db.session import is_unique_violation


def is_duplicate_reservation(exc: IntegrityError) -> bool:
    return is_unique_violation(exc, Reservation.__table__, RESERVATION_USER_SHOW_UNIQUE)


def to_record(reservation: Reservation) -> ReservationRecord:
    return ReservationRecord(
        id=reservation.id,
        show_id=reservation.show_id,
        user_id=reservation.user_id,
        seat_numbers=tuple(decode_seats(reservation.seat_numbers)),
        created_at=reservation.created_at,
    )


class ReservationLedger:
    """
    Persisted reservation records.

    The ledger stores seat sets as given. It never checks for or repairs
    overlapping seats; that is the arbitration engine's job.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, reservation_id: int) -> ReservationRecord | None:
        reservation = self.db.get(Reservation, reservation_id)
        return to_record(reservation) if reservation else None

    def all_reservations(self) -> list[ReservationRecord]:
        stmt = select(Reservation).order_by(Reservation.show_id, Reservation.id)
        return [to_record(r) for r in self.db.execute(stmt).scalars().all()]

    def reservations_for_show(self, show_id: int) -> list[ReservationRecord]:
        stmt = (
            select(Reservation)
            .where(Reservation.show_id == show_id)
            .order_by(Reservation.id)
        )
        return [to_record(r) for r in self.db.execute(stmt).scalars().all()]

    def reservations_for_user(self, user_id: int) -> list[ReservationRecord]:
        stmt = (
            select(Reservation)
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.id)
        )
        return [to_record(r) for r in self.db.execute(stmt).scalars().all()]

    def find_for_user_and_show(
        self,
        user_id: int,
        show_id: int,
    ) -> ReservationRecord | None:
        stmt = (
            select(Reservation)
            .where(Reservation.user_id == user_id)
            .where(Reservation.show_id == show_id)
        )
        reservation = self.db.execute(stmt).scalars().first()
        return to_record(reservation) if reservation else None

    def reserved_seats_for_show(
        self,
        show_id: int,
        exclude_reservation_id: int | None = None,
    ) -> set[str]:
        seats: set[str] = set()
        for record in self.reservations_for_show(show_id):
            if record.id == exclude_reservation_id:
                continue
            seats.update(record.seat_numbers)
        return seats

    def insert(
        self,
        user_id: int,
        show_id: int,
        seat_numbers: Iterable[str],
    ) -> ReservationRecord:
        reservation = Reservation(
            user_id=user_id,
            show_id=show_id,
            seat_numbers=encode_seats(seat_numbers),
        )
        self.db.add(reservation)
        self.db.flush()
        self.db.refresh(reservation)
        return to_record(reservation)

    def update_seats(
        self,
        reservation_id: int,
        seat_numbers: Iterable[str],
    ) -> ReservationRecord | None:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            return None
        reservation.seat_numbers = encode_seats(seat_numbers)
        self.db.flush()
        return to_record(reservation)

    def delete(self, reservation_id: int) -> None:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is not None:
            self.db.delete(reservation)
            self.db.flush()
