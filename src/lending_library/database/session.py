"""
Database session management for the Lending Library.

Sessions are short-lived: one per tool call or resource read, opened with a
context manager and closed when the handler returns.

SQLite file databases get a busy timeout and start every transaction with
``BEGIN IMMEDIATE``. Writers therefore queue on the database lock instead of
failing with a lock upgrade deadlock, which is what lets concurrent borrows
and returns settle through the guarded updates in the repositories.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from anyio import to_thread
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import RepositoryException
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def _build_engine(database_url: str) -> Engine:
    """
    Create the SQLite engine for ``database_url``.

    In-memory databases share one connection (StaticPool) so every session
    sees the same data. File databases use a normal pool so threads get
    their own connections, each waiting up to the busy timeout for the
    write lock.
    """
    if _is_memory_url(database_url):
        engine = create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        if not _is_memory_url(database_url):
            # BEGIN is emitted by the "begin" listener instead of the driver
            dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class DatabaseManager:
    """
    Owns one engine and its session factory.

    The engine is built on first use, so a manager can be created for a
    URL before the database file exists.
    """

    def __init__(self, database_url: str | None = None):
        # Configured path is already absolute, with its directory created
        if database_url is None:
            database_url = get_config().get_database_url()
            logger.info("Using database %s", database_url)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = _build_engine(self.database_url)
            logger.info("Database engine created: %s", self._engine.url)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """
        Create a new database session.

        Callers own the session and must close it, normally with ``with``.
        """
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            BookRepository(session).reserve_copy(book_id)
        # committed on success, rolled back on error
        ```
        """
        with self.create_session() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                logger.warning("Rolled back session after error", exc_info=True)
                raise

    def init_database(self, drop_existing: bool = False) -> None:
        """Create any missing tables and indexes, optionally dropping all first."""
        if drop_existing:
            logger.warning("Dropping all tables in %s", self.database_url)
            Base.metadata.drop_all(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)
        logger.info("Schema ready: %s", ", ".join(sorted(Base.metadata.tables)))

    def verify_connection(self) -> bool:
        """Health check: True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine. Called on server shutdown."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of the global manager so the next call builds a fresh one."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Get a new database session.

    Prefer ``with get_session() as session:`` so the session is closed.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience wrapper around the global manager's ``session_scope``."""
    with get_db_manager().session_scope() as session:
        yield session


async def run_blocking(unit: Callable[[], T]) -> T:
    """
    Run a synchronous unit of database work on a worker thread.

    Async tool and resource handlers call this so a session waiting on the
    SQLite write lock never stalls the event loop.
    """
    return await to_thread.run_sync(unit)


# === Error-wrapping helpers ===


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit, turning database failures into ``RepositoryException``.

    Integrity violations and lock failures are re-raised untouched so
    callers can map them to a uniqueness failure or retry.

    Args:
        session: The database session
        operation: Description of the operation (for error messages)
    """
    try:
        session.commit()
    except (IntegrityError, OperationalError):
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Commit failed during %s", operation)
        raise RepositoryException(f"Database operation '{operation}' failed: {e!s}") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Run a read, turning database failures into ``RepositoryException``.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Message prefix for the raised error
    """
    try:
        return query_func(session)
    except OperationalError:
        # Lock and serialization failures propagate so callers can retry
        raise
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise RepositoryException(f"{error_msg}: Database query failed") from e
