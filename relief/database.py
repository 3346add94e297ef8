import logging
import sqlite3
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.orm.exc import StaleDataError

from relief import config
from relief.errors import ConcurrencyError, ConflictError

logger = logging.getLogger(__name__)

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # sqlite ignores ON DELETE RESTRICT/CASCADE unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_size=config.DB_POOL_SIZE,
        pool_timeout=config.DB_POOL_TIMEOUT,
    )


engine = build_engine(config.SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, conflict_message: str = "The change conflicts with existing records"):
    """
    Run a unit of work: commit when the block finishes, roll back otherwise.

    Store errors with a known meaning are converted into the service error
    taxonomy; anything else is re-raised untouched after the rollback.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Optimistic version check failed: {e}")
        raise ConcurrencyError(
            "This record was changed by someone else. Reload it and try again."
        ) from e
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity violation: {e.orig}")
        raise ConflictError(conflict_message) from e
    except Exception:
        db.rollback()
        raise
