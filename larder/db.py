import logging
from collections.abc import Callable, Generator
from typing import TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from larder.config import settings
from larder.errors import WriteConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def install_sqlite_pragmas(target: Engine) -> None:
    """SQLite ships with foreign keys off; recipe/product deletes rely on them."""
    @event.listens_for(target, "connect")
    def _fk_on(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        eng = create_engine(url, connect_args={"check_same_thread": False}, pool_pre_ping=True)
        install_sqlite_pragmas(eng)
        return eng
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


engine = make_engine(settings.DB_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_in_transaction(db: Session, work: Callable[[Session], T], *, retries: int | None = None) -> T:
    """Run ``work(db)`` and commit, as one transaction.

    On a write conflict the transaction is rolled back and the whole
    read-compute-write cycle runs again, up to ``retries`` extra times.
    Anything else rolls back and propagates.
    """
    attempts = 1 + (settings.CONFLICT_RETRIES if retries is None else retries)
    for attempt in range(1, attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except (WriteConflict, StaleDataError) as e:
            db.rollback()
            if attempt == attempts:
                logger.warning("write conflict not resolved after %d attempts: %s", attempts, e)
                if isinstance(e, WriteConflict):
                    raise
                raise WriteConflict("Concurrent update, please retry") from e
            logger.info("write conflict on attempt %d/%d, retrying: %s", attempt, attempts, e)
        except Exception:
            db.rollback()
            raise
    raise AssertionError("unreachable")
