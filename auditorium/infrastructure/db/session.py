# auditorium/infrastructure/db/session.py

from contextlib import contextmanager

from sqlalchemy import Table, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from auditorium import config

# SQLSTATEs PostgreSQL uses for serialization failure, deadlock and NOWAIT lock miss.
TRANSIENT_PG_CODES = frozenset({"40001", "40P01", "55P03"})
TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "could not serialize access",
    "deadlock detected",
)
SQLITE_BEGIN_OPTION = "sqlite_begin"


# -----------------------------
# Base Class for Models
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Engine
# -----------------------------
def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={
                "check_same_thread": False,
                "timeout": config.SQLITE_BUSY_TIMEOUT,
            },
        )
        _emit_own_begin(engine)
        return engine

    return create_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,
    )


def _emit_own_begin(engine: Engine) -> None:
    """
    pysqlite defers BEGIN until the first write, so reads would run outside
    the transaction. Emit BEGIN ourselves: DEFERRED by default, so plain
    reads never wait on a writer, or the mode named by the ``sqlite_begin``
    execution option. With IMMEDIATE the write lock is taken up front and
    concurrent writers wait on the busy timeout, then fail with
    "database is locked".
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def begin_serializable(db: Session) -> None:
    """
    Pin the session's transaction to SERIALIZABLE isolation, or to
    BEGIN IMMEDIATE on SQLite. Must run before the first statement of the
    transaction.
    """
    if db.get_bind().dialect.name == "sqlite":
        db.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})
        return
    db.connection(execution_options={"isolation_level": "SERIALIZABLE"})


def is_transient_db_error(exc: BaseException) -> bool:
    """True for lock contention / serialization failures worth retrying."""
    if not isinstance(exc, (OperationalError, DBAPIError)):
        return False

    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if pgcode in TRANSIENT_PG_CODES:
        return True

    message = str(exc.orig).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def is_unique_violation(exc: IntegrityError, table: Table, constraint_name: str) -> bool:
    """True when ``exc`` was raised by the named unique constraint of ``table``."""
    diag = getattr(exc.orig, "diag", None)
    reported = getattr(diag, "constraint_name", None)
    if reported:
        return reported == constraint_name

    message = str(exc.orig)
    if constraint_name in message:
        return True

    # SQLite reports the columns instead of the constraint name.
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint) and constraint.name == constraint_name:
            columns = ", ".join(f"{table.name}.{column.name}" for column in constraint.columns)
            return message.startswith("UNIQUE constraint failed") and columns in message
    return False


engine: Engine = create_db_engine(config.DATABASE_URL)


# -----------------------------
# Session Factory
# -----------------------------
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


# -----------------------------
# Context Manager (Non-FastAPI usage)
# -----------------------------
@contextmanager
def get_db_session(session_factory=SessionLocal):
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
