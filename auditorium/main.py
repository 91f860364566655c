import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from auditorium import config
from auditorium.api.routes.routes import router
from auditorium.infrastructure.db.session import engine
from auditorium.infrastructure.db.models import Base

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def wait_for_database(
    db_engine: Engine,
    attempts: int = config.DB_CONNECT_MAX_RETRIES,
    delay: float = config.DB_CONNECT_RETRY_DELAY,
    sleep=time.sleep,
) -> None:
    """Block until ``SELECT 1`` succeeds; re-raise after the last attempt."""
    for attempt in range(1, attempts + 1):
        try:
            with db_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            if attempt == attempts:
                logger.error(
                    "Database %s unreachable after %s attempts: %s",
                    db_engine.url.render_as_string(hide_password=True),
                    attempts,
                    exc.orig,
                )
                raise
            logger.warning(
                "Waiting for database (attempt %s/%s), next try in %.1f seconds...",
                attempt,
                attempts,
                delay,
            )
            sleep(delay)
        else:
            logger.info("Database is reachable.")
            return


@asynccontextmanager
async def lifespan(app: FastAPI):
    wait_for_database(engine)
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


app = FastAPI(title="Auditorium Reservation Engine", lifespan=lifespan)
app.include_router(router)
