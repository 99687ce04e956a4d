"""
Database session management for the circulation engine.

Every circulation operation runs inside one ``session_scope()``:

1. Thread Safety: callers on different threads each get their own session
2. Transaction Management: the whole operation commits or rolls back together
3. Lock Discipline: SQLite transactions start with ``BEGIN IMMEDIATE`` so
   writers queue on the busy timeout instead of deadlocking; other databases
   rely on ``SELECT ... FOR UPDATE`` issued by the repositories
4. Error Recovery: driver failures and timeouts surface as ``StoreUnavailable``
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import CirculationConfig, get_config
from ..errors import CirculationError, StoreUnavailable
from .schema import Base

logger = logging.getLogger(__name__)


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


class DatabaseManager:
    """
    Manages database connections and sessions for the circulation engine.

    This class provides:
    - Lazy engine creation with per-dialect locking setup
    - Session factory with explicit transactions
    - Schema initialization and connection health checks
    """

    def __init__(self, database_url: str | None = None, config: CirculationConfig | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, taken from configuration.
            config: Configuration to read the URL and store timeout from.
        """
        self.config = config or get_config()

        if database_url is None:
            if self.config.database_url:
                database_url = self.config.database_url
            else:
                db_path = self.config.database_path
                if not db_path.is_absolute():
                    db_path = Path.cwd() / db_path
                db_path.parent.mkdir(exist_ok=True, parents=True)
                database_url = f"sqlite:///{db_path}"
                logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """
        Get or create the database engine.

        SQLite engines hand each thread its own connection (a shared
        in-memory database is the only exception) and open every transaction
        with ``BEGIN IMMEDIATE``.
        """
        if self._engine is None:
            timeout = self.config.store_timeout_seconds

            if self.is_sqlite:
                engine_kwargs = {
                    "connect_args": {"check_same_thread": False, "timeout": timeout},
                    "echo": False,
                }
                if _is_memory_sqlite(self.database_url):
                    # A private in-memory database only exists on one connection
                    engine_kwargs["poolclass"] = StaticPool

                self._engine = create_engine(self.database_url, **engine_kwargs)
                self._install_sqlite_hooks(self._engine)
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_timeout=timeout,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @staticmethod
    def _install_sqlite_hooks(engine: Engine) -> None:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                # Keep returned objects usable after commit
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new database session. Prefer ``session_scope()``."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for one circulation operation.

        ```python
        with db_manager.session_scope() as session:
            copy = CopyRepository(session).lock(copy_id)
            ...
        # committed here, or rolled back if anything raised
        ```

        Raises:
            CirculationError: business rejections, re-raised unchanged
            StoreUnavailable: any SQLAlchemy failure, after rollback
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except CirculationError as e:
            logger.debug("Rolling back after %s: %s", e.reason, e.message)
            session.rollback()
            raise
        except SQLAlchemyError as e:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise StoreUnavailable() from e
        except Exception:
            logger.exception("Unexpected error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Initialize the database schema.

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
        """Return True if the store answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
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
    Get the process-wide database manager.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of and forget the process-wide manager (useful for testing)."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None
