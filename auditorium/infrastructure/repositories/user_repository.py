# auditorium/infrastructure/repositories/user_repository.py

from sqlalchemy import select
from sqlalchemy.orm import Session

from auditorium import config
from auditorium.domain.entities import UserCategory, UserSnapshot
from auditorium.infrastructure.db.models import User


def to_snapshot(user: User) -> UserSnapshot:
    return UserSnapshot(
        id=user.id,
        username=user.username,
        category=UserCategory(user.category),
        seat_limit=user.seat_limit,
        is_admin=user.is_admin,
        is_enabled=user.is_enabled,
    )


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_username(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_snapshot(self, user_id: int) -> UserSnapshot | None:
        user = self.get_by_id(user_id)
        return to_snapshot(user) if user else None

    def create_user(
        self,
        username: str,
        category: UserCategory = UserCategory.SINGLE,
        seat_limit: int | None = None,
        is_admin: bool = False,
        is_enabled: bool = True,
        name: str | None = None,
    ) -> User:
        user = User(
            username=username,
            name=name,
            category=UserCategory(category).value,
            seat_limit=seat_limit or config.DEFAULT_SEAT_LIMIT,
            is_admin=is_admin,
            is_enabled=is_enabled,
        )
        self.db.add(user)
        self.db.flush()
        return user
