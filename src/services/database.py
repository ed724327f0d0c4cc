"""
Database connection and session management for POS Snapshot.

This module provides:
- Database engine creation and configuration
- Session factory for database operations
- Database initialization (create tables)
- WAL mode configuration
- Foreign key enforcement

Engines and session factories are created explicitly and handed to the
components that need them; nothing here is cached at module level.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import Config

# Configure logging
logger = logging.getLogger(__name__)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Set SQLite pragmas on connection.

    This event listener is called for every new database connection.
    It enables foreign key constraints and sets WAL mode.
    """
    cursor = dbapi_connection.cursor()

    # Enable foreign key constraints (critical for referential integrity)
    cursor.execute("PRAGMA foreign_keys=ON")

    # Set WAL (Write-Ahead Logging) mode for better concurrency
    cursor.execute("PRAGMA journal_mode=WAL")

    # Set synchronous mode for better performance while maintaining safety
    cursor.execute("PRAGMA synchronous=NORMAL")

    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create and configure the database engine.

    Args:
        database_url: SQLAlchemy database URL
        echo: If True, log all SQL statements (useful for debugging)

    Returns:
        Configured SQLAlchemy Engine
    """
    logger.info(f"Creating database engine: {database_url}")

    if ":memory:" in database_url or "mode=memory" in database_url:
        # For in-memory databases (testing), use StaticPool
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return engine


def init_database(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.

    Safe to call multiple times - existing tables won't be recreated.

    Args:
        engine: Engine to create tables on
    """
    logger.info("Initializing database tables")

    # Import all models to ensure they're registered with Base
    from .. import models  # noqa: F401

    Base.metadata.create_all(engine)

    logger.info("Database tables initialized successfully")


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Create a session factory bound to an engine.

    Returns:
        Session factory (sessionmaker)
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


def open_database(config: Config, echo: bool = False) -> sessionmaker:
    """
    Create the engine for a config, make sure tables exist, return a factory.

    This is the main entry point for setting up the database from the CLI.
    """
    if config.database_url.startswith("sqlite:///") and ":memory:" not in config.database_url:
        config.base_dir.mkdir(parents=True, exist_ok=True)
    engine = create_database_engine(config.database_url, echo=echo)
    init_database(engine)
    return create_session_factory(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Provide a transactional scope for database operations.

    This context manager handles session lifecycle automatically:
    - Creates a new session
    - Commits on success
    - Rolls back on exception
    - Always closes the session

    Yields:
        Database session

    Example:
        with session_scope(session_factory) as session:
            session.add(Category(name="Beverages"))
            # Commit happens automatically if no exception
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def verify_database(engine: Engine) -> bool:
    """
    Verify that the database is accessible and has tables.

    Returns:
        True if database is valid, False otherwise
    """
    try:
        tables = inspect(engine).get_table_names()
    except SQLAlchemyError as e:
        logger.error(f"Database verification failed: {e}")
        return False

    expected_tables = ["products", "sales", "customers"]
    return all(table in tables for table in expected_tables)
