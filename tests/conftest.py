import os
import tempfile
from datetime import datetime, timedelta, timezone

_DB_DIR = tempfile.mkdtemp(prefix="auditorium-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["DB_CONNECT_MAX_RETRIES"] = "1"

import pytest
from fastapi.testclient import TestClient

from auditorium.application.reservation_service import ReservationArbiter
from auditorium.domain.entities import ShowSnapshot, UserSnapshot
from auditorium.infrastructure.db.models import Base
from auditorium.infrastructure.db.session import SessionLocal, engine, get_db_session
from auditorium.infrastructure.repositories import show_repository, user_repository
from auditorium.infrastructure.repositories.show_repository import ShowRepository
from auditorium.infrastructure.repositories.user_repository import UserRepository
from auditorium.main import app


@pytest.fixture
def database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(database):
    return SessionLocal


@pytest.fixture
def client(database):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    def _make(username: str | None = None, **kwargs) -> UserSnapshot:
        counter["n"] += 1
        with get_db_session(session_factory) as db:
            user = UserRepository(db).create_user(
                username or f"user{counter['n']}",
                **kwargs,
            )
            return user_repository.to_snapshot(user)

    return _make


@pytest.fixture
def make_show(session_factory):
    def _make(
        title: str = "Evening Show",
        date: datetime | None = None,
        **kwargs,
    ) -> ShowSnapshot:
        date = date or datetime.now(timezone.utc) + timedelta(days=1)
        with get_db_session(session_factory) as db:
            show = ShowRepository(db).create_show(title=title, date=date, **kwargs)
            return show_repository.to_snapshot(show)

    return _make


@pytest.fixture
def arbiter(session_factory):
    return ReservationArbiter(session_factory, sleep=lambda _: None)
