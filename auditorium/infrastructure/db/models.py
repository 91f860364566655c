# auditorium/infrastructure/db/models.py

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime

from auditorium import config
from auditorium.domain.entities import UserCategory
from auditorium.domain.seat_layout import DEFAULT_LAYOUT
from auditorium.infrastructure.db.session import Base

_ALL_CATEGORIES_JSON = '["single", "family", "fafa"]'
RESERVATION_USER_SHOW_UNIQUE = "uq_reservation_user_show"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    category: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=UserCategory.SINGLE.value,
    )
    seat_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=config.DEFAULT_SEAT_LIMIT,
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("seat_limit > 0", name="ck_user_seat_limit_positive"),
    )


class Show(Base):
    """
    Seat collections (blocked seats, categories, exclusive rows) are stored
    as JSON array strings; see auditorium.domain.seat_codec.
    """

    __tablename__ = "shows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seat_layout: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=lambda: DEFAULT_LAYOUT.to_json(),
    )
    blocked_seats: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    allowed_categories: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=_ALL_CATEGORIES_JSON,
    )
    exclusive_rows: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    exclusive_category: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=UserCategory.FAFA.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_show_price_nonnegative"),
    )


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
    )
    show_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("shows.id"),
        nullable=False,
    )
    seat_numbers: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "show_id",
            name=RESERVATION_USER_SHOW_UNIQUE,
        ),
    )
