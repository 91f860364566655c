# auditorium/infrastructure/repositories/show_repository.py

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from auditorium.domain.entities import ALL_CATEGORIES, ShowSnapshot, UserCategory
from auditorium.domain.seat_codec import decode_seats, encode_seats
from auditorium.domain.seat_layout import DEFAULT_LAYOUT, SeatLayout
from auditorium.infrastructure.db.models import Show

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _decode_categories(raw: str) -> frozenset[UserCategory]:
    categories = set()
    for token in decode_seats(raw):
        try:
            categories.add(UserCategory(token))
        except ValueError:
            logger.warning("Ignoring unknown user category %r on show.", token)
    return frozenset(categories)


def to_snapshot(show: Show) -> ShowSnapshot:
    return ShowSnapshot(
        id=show.id,
        title=show.title,
        date=as_utc(show.date),
        layout=SeatLayout.from_json(show.seat_layout) if show.seat_layout else DEFAULT_LAYOUT,
        blocked_seats=frozenset(decode_seats(show.blocked_seats)),
        allowed_categories=_decode_categories(show.allowed_categories),
        exclusive_rows=frozenset(decode_seats(show.exclusive_rows)),
        exclusive_category=UserCategory(show.exclusive_category),
        price=show.price,
    )


class ShowRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, show_id: int, lock: bool = False) -> Show | None:
        """
        With lock=True this is SELECT ... FOR UPDATE, which queues concurrent
        reservation transactions for the same show behind each other.
        """
        stmt = select(Show).where(Show.id == show_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_snapshot(self, show_id: int, lock: bool = False) -> ShowSnapshot | None:
        show = self.get_by_id(show_id, lock=lock)
        return to_snapshot(show) if show else None

    def list_shows(self) -> list[Show]:
        stmt = select(Show).order_by(Show.date)
        return list(self.db.execute(stmt).scalars().all())

    def create_show(
        self,
        title: str,
        date: datetime,
        layout: SeatLayout = DEFAULT_LAYOUT,
        blocked_seats: Iterable[str] = (),
        allowed_categories: Iterable[UserCategory] = ALL_CATEGORIES,
        exclusive_rows: Iterable[str] = (),
        exclusive_category: UserCategory = UserCategory.FAFA,
        price: int = 0,
        description: str | None = None,
    ) -> Show:
        show = Show(
            title=title,
            date=as_utc(date),
            description=description,
            price=price,
            seat_layout=layout.to_json(),
            blocked_seats=encode_seats(blocked_seats),
            allowed_categories=encode_seats(
                sorted(UserCategory(c).value for c in allowed_categories)
            ),
            exclusive_rows=encode_seats(exclusive_rows),
            exclusive_category=UserCategory(exclusive_category).value,
        )
        self.db.add(show)
        self.db.flush()
        return show
