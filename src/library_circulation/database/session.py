"""
Database session management for the Library Circulation Service.

Engine construction, pooled sessions and transaction scopes for the service.

1. Thread Safety: FastAPI runs sync handlers in a thread pool, so every
   request gets its own short-lived session
2. Transaction Management: borrow/return run as one atomic unit
3. Connection Pooling: one shared pool with a bounded checkout timeout
4. Error Recovery: infrastructure failures surface as InfrastructureError

Sessions should be used through ``session_scope()`` which commits on success,
rolls back on any exception and always returns the connection to the pool.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import ServerConfig, get_config
from .exceptions import InfrastructureError, RepositoryException
from .schema import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseManager:
    """
    Manages database connections and sessions for the service.

    This class provides:
    - Lazy engine creation with dialect-specific pooling
    - Session factory with explicit transactions
    - Database initialization and health checks
    """

    def __init__(self, database_url: str | None = None, config: ServerConfig | None = None):
        """
        Hold the database URL and pool limits; nothing connects until first use.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured URL.
            config: Configuration used for pool limits. If None, uses the global config.
        """
        self.config = config or get_config()
        self.database_url = database_url or self.config.database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        """
        Lazily create the engine for ``database_url``.

        - SQLite in memory: a single shared connection (StaticPool)
        - SQLite on disk: a connection per thread, foreign keys on, busy timeout
        - Other databases: sized QueuePool with pre-ping and checkout timeout
        """
        if self._engine is None:
            if self.database_url.startswith("sqlite"):
                in_memory = ":memory:" in self.database_url or self.database_url == "sqlite://"
                options: dict = {
                    "connect_args": {
                        "check_same_thread": False,
                        # Seconds to wait for another transaction's write lock
                        "timeout": self.config.sqlite_busy_timeout_seconds,
                    },
                    "echo": False,
                }
                if in_memory:
                    options["poolclass"] = StaticPool
                else:
                    options["pool_size"] = self.config.pool_size
                    options["max_overflow"] = self.config.max_overflow
                    options["pool_timeout"] = self.config.pool_timeout_seconds
                self._engine = create_engine(self.database_url, **options)

                @event.listens_for(self._engine, "connect")
                def enable_foreign_keys(dbapi_connection, connection_record):  # noqa: ARG001
                    cursor = dbapi_connection.cursor()
                    try:
                        cursor.execute("PRAGMA foreign_keys = ON")
                    finally:
                        cursor.close()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=self.config.pool_size,
                    max_overflow=self.config.max_overflow,
                    pool_timeout=self.config.pool_timeout_seconds,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url.render_as_string())

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Lazily built ``sessionmaker`` bound to the engine."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                # Statements are emitted in the order the repositories issue them
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """
        Open a session that is not bound to any transaction scope.

        Returns:
            A new SQLAlchemy session

        Note:
            Prefer ``session_scope()``; a bare session must be closed by the caller.
        """
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        One transaction: commit on success, roll back on any error, always close.

        ```python
        with db_manager.session_scope() as session:
            loan = CirculationRepository(session).borrow_book(7, 3)
        # Session is committed, or rolled back if anything raised
        ```

        Domain errors (NotFound, Conflict, ...) roll back quietly and propagate.
        Database errors are logged, rolled back and re-raised as InfrastructureError.
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Transaction committed")
        except RepositoryException:
            session.rollback()
            raise
        except (PoolTimeoutError, OperationalError) as e:
            logger.exception("Database unavailable, rolling back")
            session.rollback()
            raise InfrastructureError("Database temporarily unavailable") from e
        except Exception:
            logger.exception("Unexpected error inside transaction, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create every table and index that does not exist yet.

        Args:
            drop_existing: Drop the tables first (seeding with --reset)
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all tables before recreating the schema")
            Base.metadata.drop_all(bind=engine)

        logger.info("Ensuring schema on %s", engine.url.render_as_string())
        Base.metadata.create_all(bind=engine)
        logger.info("Schema ready")

    def verify_connection(self) -> bool:
        """
        Round-trip ``SELECT 1`` through a pooled connection.

        Returns:
            Whether the database answered
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Connection pool disposed")
        self._engine = None
        self._session_factory = None


# Process-wide database manager
_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Return the process-wide manager, creating it on first use.

    Args:
        database_url: Overrides the configured URL when the manager is created
    """
    global _db_manager  # noqa: PLW0603

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def set_db_manager(manager: DatabaseManager | None) -> None:
    """Replace the global database manager (app startup and tests)."""
    global _db_manager  # noqa: PLW0603

    _db_manager = manager


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transaction scope on the process-wide manager.

    Example:
        ```python
        with session_scope() as session:
            page = LoanRepository(session).search(LoanSearchParams(status="overdue"))
        ```
    """
    with get_db_manager().session_scope() as session:
        yield session


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, translating database failures into repository errors.

    Args:
        session: The database session
        operation: What was being committed, for the log and error message

    Raises:
        InfrastructureError: If the commit fails
    """
    try:
        session.commit()
    except DBAPIError as e:
        session.rollback()
        logger.exception("Commit failed during %s", operation)
        raise InfrastructureError(f"Database operation '{operation}' failed") from e


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating database failures into repository errors.

    Args:
        session: The database session
        query_func: Callable running the statement against the session
        error_msg: Error message for the caller

    Raises:
        InfrastructureError: If the query fails at the database level
    """
    try:
        return query_func(session)
    except (PoolTimeoutError, OperationalError) as e:
        logger.exception("Query failed: %s", error_msg)
        raise InfrastructureError(f"{error_msg}: database unavailable") from e
