# auditorium/domain/entities.py

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from auditorium.domain.seat_layout import DEFAULT_LAYOUT, SeatLayout


class UserCategory(str, Enum):
    SINGLE = "single"
    FAMILY = "family"
    FAFA = "fafa"


ALL_CATEGORIES = frozenset(UserCategory)


@dataclass(frozen=True)
class ShowSnapshot:
    """
    Read-only view of a show as the booking rules see it.
    Built by the show repository from the persisted row.
    """

    id: int
    title: str
    date: datetime
    layout: SeatLayout = DEFAULT_LAYOUT
    blocked_seats: frozenset[str] = frozenset()
    allowed_categories: frozenset[UserCategory] = ALL_CATEGORIES
    exclusive_rows: frozenset[str] = frozenset()
    exclusive_category: UserCategory = UserCategory.FAFA
    price: int = 0

    def cutoff(self, minutes: int) -> datetime:
        return self.date - timedelta(minutes=minutes)

    def is_exclusive_row(self, prefix: str, row: str) -> bool:
        return row in self.exclusive_rows or f"{prefix}{row}" in self.exclusive_rows


@dataclass(frozen=True)
class UserSnapshot:
    id: int
    username: str
    category: UserCategory = UserCategory.SINGLE
    seat_limit: int | None = 4
    is_admin: bool = False
    is_enabled: bool = True

    @property
    def effective_seat_limit(self) -> int | None:
        """None means unlimited."""
        return None if self.is_admin else self.seat_limit


@dataclass(frozen=True)
class ReservationRecord:
    id: int
    show_id: int
    user_id: int
    seat_numbers: tuple[str, ...]
    created_at: datetime | None = field(default=None, compare=False)
