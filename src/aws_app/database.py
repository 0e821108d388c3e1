"""Cache Store: pooled engine and scoped sessions over the cached tables."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from .exceptions import CacheIOError
from .logger import logger
from .tables import tables


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class CacheStore:
    """Relational store of instance families, types and price observations.

    Each session checks out a connection from the engine's pool and
    returns it on exit, including error paths.

    Args:
        connection_string: SQLAlchemy database URL.
        busy_timeout: Seconds to wait for a locked SQLite database.
    """

    def __init__(self, connection_string: str, busy_timeout: float = 30):
        self.connection_string = connection_string
        connect_args = {}
        if connection_string.startswith("sqlite"):
            # sessions are handed over to worker threads
            connect_args = {"timeout": busy_timeout, "check_same_thread": False}
        self.engine: Engine = create_engine(
            connection_string, connect_args=connect_args
        )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    def create_tables(self):
        """Create the missing Cache Store tables."""
        SQLModel.metadata.create_all(
            self.engine, tables=[t.__table__ for t in tables]
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only session, closed on exit.

        Raises:
            CacheIOError: A database error happened while reading.
        """
        with Session(self.engine) as session:
            try:
                yield session
            except SQLAlchemyError as e:
                logger.error("Cache Store read failed: %s", e)
                raise CacheIOError(f"Cache Store read failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session committed on success and rolled back on any error.

        Raises:
            CacheIOError: A database error happened within the transaction.
        """
        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Cache Store transaction rolled back: %s", e)
                raise CacheIOError(f"Cache Store transaction failed: {e}") from e
            except Exception:
                session.rollback()
                raise

    def dispose(self):
        """Close all pooled connections."""
        self.engine.dispose()
