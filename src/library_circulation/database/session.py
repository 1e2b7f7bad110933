"""
Database session management for the library circulation core.

Each circulation operation runs in its own short-lived session, so sessions
are cheap to create and never shared between threads.

SQLite notes:

- File databases use a normal connection pool. Every transaction starts with
  ``BEGIN IMMEDIATE``, which takes the database write lock up front. Two
  operations racing on the same rows therefore run one after the other, and
  the second one reads what the first committed.
- In-memory databases use ``StaticPool`` so every session sees the same data.
  That single connection gets no ``BEGIN IMMEDIATE`` and no locking, so an
  in-memory database must only be used from one thread at a time (tests and
  scratch work). ``DatabaseManager.single_connection`` reports this mode.
- Foreign key enforcement is switched on for every connection.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from .schema import Base

logger = logging.getLogger(__name__)


def _is_memory_database(database_url: str) -> bool:
    return database_url in {"sqlite://", "sqlite:///:memory:"} or "mode=memory" in database_url


class DatabaseManager:
    """
    Manages the engine and session factory for circulation operations.

    This class provides:
    - Engine creation tuned for SQLite or a server database
    - A session factory with explicit transactions
    - Schema creation and a connection health check
    """

    def __init__(self, database_url: str | None = None, timeout_seconds: float | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured one.
            timeout_seconds: How long SQLite waits on a locked database.
        """
        config = get_config()
        if database_url is None:
            database_url = config.database_url
        if database_url is None:
            db_path = config.database_path

            if not db_path.is_absolute():
                db_path = Path.cwd() / db_path

            db_path.parent.mkdir(exist_ok=True, parents=True)

            database_url = f"sqlite:///{db_path}"
            logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self.single_connection = _is_memory_database(database_url)
        self.timeout_seconds = timeout_seconds or config.db_timeout_seconds
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.database_url.startswith("sqlite"):
                self._engine = self._create_sqlite_engine()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    pool_timeout=self.timeout_seconds,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    def _create_sqlite_engine(self) -> Engine:
        in_memory = self.single_connection
        if in_memory:
            logger.warning(
                "In-memory database shares one connection; use it from a single thread only"
            )
            engine = create_engine(
                self.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=False,
            )
        else:
            engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False, "timeout": self.timeout_seconds},
                echo=False,
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            if not in_memory:
                # Let SQLAlchemy emit BEGIN itself (see the "begin" hook below)
                dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        if not in_memory:

            @event.listens_for(engine, "begin")
            def begin_immediate(conn):
                conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """
        Create a new database session.

        Sessions should be closed by the caller; the circulation desk does this
        after every operation.
        """
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            session.add(AuditLog(...))
        # committed, or rolled back if the block raised
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except Exception:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
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
    """Dispose of the global manager so the next access builds a fresh one."""
    global _db_manager  # noqa: PLW0603
    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """Get a new database session from the global manager."""
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience context manager for database sessions."""
    with get_db_manager().session_scope() as session:
        yield session
