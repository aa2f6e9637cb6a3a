# overlay_plane/database/session.py
"""
Database Session Management
"""

from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Iterator, Optional
import logging

from overlay_plane.config import Settings, get_settings
from overlay_plane.exceptions import StorageError, StorageUnavailableError
from .models import Base

logger = logging.getLogger(__name__)

_LOCKED_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def _is_in_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_sqlite_engine(database_url: str, lock_timeout: float, echo: bool = False) -> Engine:
    """
    Create an engine whose transactions take the SQLite write lock up front

    Every transaction starts with BEGIN IMMEDIATE, so check-then-write
    sequences (uniqueness checks, version numbering) cannot interleave,
    and a writer waits at most `lock_timeout` seconds for the lock.
    """
    connect_args = {"check_same_thread": False, "timeout": lock_timeout}
    if _is_in_memory(database_url):
        engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo,
        )
    else:
        engine = create_engine(database_url, connect_args=connect_args, echo=echo)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy's "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class Database:
    """
    Owns the engine and session factory for one database file
    """

    def __init__(self, database_url: Optional[str] = None, lock_timeout: Optional[float] = None,
                 config: Optional[Settings] = None):
        config = config or get_settings()
        self.database_url = database_url or config.DATABASE_URL
        self.lock_timeout = config.DB_LOCK_TIMEOUT if lock_timeout is None else lock_timeout

        if not self.database_url.startswith("sqlite"):
            raise ValueError(f"Only SQLite databases are supported, got {self.database_url!r}")

        self.engine = create_sqlite_engine(self.database_url, self.lock_timeout, echo=config.DEBUG)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

    def init_db(self) -> None:
        """
        Initialize database tables
        Call this on application startup
        """
        logger.info("Initializing database...")
        try:
            Base.metadata.create_all(bind=self.engine)
        except OperationalError as e:
            raise _translate(e) from e
        logger.info("Database initialized successfully")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Transactional scope: commit on success, roll back on any error

        SQLAlchemy failures surface as StorageError (StorageUnavailableError
        when the lock wait timed out); domain errors pass through unchanged.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            error = _translate(e)
            logger.error(f"Database operation failed: {error}")
            raise error from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """Check if database connection is healthy"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def get_table_stats(self) -> dict:
        """Get row counts for all tables"""
        with self.session_scope() as db:
            stats = {}
            for table in Base.metadata.tables.keys():
                count = db.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
                stats[table] = count
            return stats

    def dispose(self) -> None:
        """Close pooled connections"""
        self.engine.dispose()


def _translate(error: SQLAlchemyError) -> StorageError:
    if isinstance(error, OperationalError):
        message = str(error.orig).lower() if error.orig is not None else str(error).lower()
        if any(m in message for m in _LOCKED_MESSAGES):
            return StorageUnavailableError(f"Database is locked: {error.orig}")
    return StorageError(f"Database error: {error}")
