# auditorium/application/seat_map_service.py

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from auditorium.domain.entities import ShowSnapshot
from auditorium.domain.exceptions import NotFoundError
from auditorium.domain.seat_layout import iter_seat_ids, total_seats
from auditorium.infrastructure.repositories.reservation_repository import ReservationLedger
from auditorium.infrastructure.repositories.show_repository import ShowRepository


class SeatStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    BLOCKED = "blocked"
    MINE = "mine"


@dataclass(frozen=True)
class SeatCell:
    seat_id: str
    number: int
    status: SeatStatus
    exclusive: bool


@dataclass(frozen=True)
class SeatRowView:
    label: str
    seats: list[SeatCell]


@dataclass(frozen=True)
class SectionView:
    name: str
    prefix: str
    rows: list[SeatRowView]


@dataclass(frozen=True)
class SeatMap:
    show: ShowSnapshot
    sections: list[SectionView]
    total: int
    available: int
    reserved: int
    blocked: int


class SeatMapService:
    """
    Seat-by-seat availability for rendering. Reads outside the arbitration
    transaction, so the result is a snapshot that may already be stale.
    """

    def __init__(self, db: Session):
        self.shows = ShowRepository(db)
        self.ledger = ReservationLedger(db)

    def seat_map(self, show_id: int, viewer_id: int | None = None) -> SeatMap:
        show = self.shows.get_snapshot(show_id)
        if show is None:
            raise NotFoundError("Show not found")

        owner_by_seat: dict[str, int] = {}
        for record in self.ledger.reservations_for_show(show_id):
            for seat in record.seat_numbers:
                owner_by_seat[seat] = record.user_id

        sections: dict[str, SectionView] = {}
        rows: dict[tuple[str, str], SeatRowView] = {}
        counts = {status: 0 for status in SeatStatus}

        for section, row, seat_id in iter_seat_ids(show.layout):
            if seat_id in show.blocked_seats:
                status = SeatStatus.BLOCKED
            elif seat_id in owner_by_seat:
                mine = viewer_id is not None and owner_by_seat[seat_id] == viewer_id
                status = SeatStatus.MINE if mine else SeatStatus.RESERVED
            else:
                status = SeatStatus.AVAILABLE
            counts[status] += 1

            if section.name not in sections:
                sections[section.name] = SectionView(section.name, section.prefix, [])
            key = (section.name, row.label)
            if key not in rows:
                rows[key] = SeatRowView(row.label, [])
                sections[section.name].rows.append(rows[key])

            rows[key].seats.append(
                SeatCell(
                    seat_id=seat_id,
                    number=int(seat_id[len(section.prefix) + len(row.label):]),
                    status=status,
                    exclusive=show.is_exclusive_row(section.prefix, row.label),
                )
            )

        return SeatMap(
            show=show,
            sections=list(sections.values()),
            total=total_seats(show.layout),
            available=counts[SeatStatus.AVAILABLE],
            reserved=counts[SeatStatus.RESERVED] + counts[SeatStatus.MINE],
            blocked=counts[SeatStatus.BLOCKED],
        )
