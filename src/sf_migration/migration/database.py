"""
Database initialization and session utilities for run state.

Unlike a process-wide engine, every MigrationState owns the engine and
session factory created here, so independent runs (and tests) never share
state.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.orm import Session, sessionmaker

from sf_migration.client.exceptions import ConfigurationError, StateError
from sf_migration.migration.models import Base
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def database_url_for(db_path: str) -> str:
    """Accept either a full database URL or a SQLite file path."""
    if "://" in db_path:
        return db_path
    return f"sqlite:///{db_path}"


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine and make sure all tables exist.

    Args:
        database_url: Database connection URL
        echo: Whether to log SQL statements

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If the engine cannot be created
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        if database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        Base.metadata.create_all(engine)
    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to initialize state database: {e}") from e

    logger.debug("database_engine_created", database_url=database_url)
    return engine


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on exception, always closes.

    Raises:
        StateError: If the database operation fails
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error("state_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e
    finally:
        session.close()
