from datetime import datetime, timedelta, timezone

from auditorium import config
from auditorium.domain.entities import UserCategory
from auditorium.infrastructure.db.models import Base
from auditorium.infrastructure.db.session import SessionLocal, engine
from auditorium.infrastructure.repositories.show_repository import ShowRepository
from auditorium.infrastructure.repositories.user_repository import UserRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_users(db) -> None:
    users = UserRepository(db)
    user_defs = [
        {"username": config.ADMIN_USERNAME, "name": "System Administrator", "is_admin": True},
        {"username": "single_demo", "name": "Single Demo", "category": UserCategory.SINGLE},
        {"username": "family_demo", "name": "Family Demo", "category": UserCategory.FAMILY, "seat_limit": 6},
        {"username": "fafa_demo", "name": "FAFA Demo", "category": UserCategory.FAFA},
    ]

    for item in user_defs:
        existing = users.get_by_username(item["username"])
        if existing:
            existing.name = item["name"]
            existing.is_enabled = True
            continue
        users.create_user(**item)


def seed_shows(db) -> None:
    shows = ShowRepository(db)
    existing_titles = {show.title for show in shows.list_shows()}
    show_defs = [
        {
            "title": "Friday Night Classic",
            "date": _dt(days_from_now=3, hour=19, minute=30),
            "blocked_seats": ["FA1", "FA18"],
            "price": 0,
        },
        {
            "title": "Family Matinee",
            "date": _dt(days_from_now=5, hour=15, minute=0),
            "allowed_categories": [UserCategory.FAMILY, UserCategory.FAFA],
            "exclusive_rows": ["A", "B"],
            "price": 50,
        },
    ]

    for item in show_defs:
        if item["title"] in existing_titles:
            continue
        shows.create_show(**item)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_users(db)
        seed_shows(db)
        db.commit()
        print("Seed complete: admin, demo users and two demo shows added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
