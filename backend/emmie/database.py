"""
Database configuration and session management.
Supports SQLite and PostgreSQL through SQLAlchemy.

Version: 1.0.0
"""
from sqlalchemy import create_engine, text, inspect, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session, scoped_session
from sqlalchemy.pool import StaticPool, QueuePool
from sqlalchemy.exc import SQLAlchemyError, DisconnectionError, OperationalError
import logging
import os
import time
import threading
from contextlib import contextmanager
from typing import Generator
from pathlib import Path

from .config import settings

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()

REQUIRED_TABLES = [
    'users',
    'chats',
    'messages',
    'message_feedback',
    'chat_agents',
    'tool_definitions',
    'agent_tools',
    'tool_execution_logs',
]

# Global engine and session factory
_engine = None
_SessionLocal = None
_init_lock = threading.RLock()
_initialized = False


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    """Enable foreign keys and WAL mode for SQLite connections."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        if ":memory:" not in settings.database_url:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def create_database_engine() -> None:
    """
    Create the database engine based on configuration.
    Thread-safe with initialization lock.
    """
    global _engine, _SessionLocal, _initialized

    if _initialized and _engine is not None:
        return

    with _init_lock:
        if _initialized and _engine is not None:
            return

        try:
            logger.info("Creating database engine...")

            if settings.database_is_sqlite:
                db_path = settings.database_url.replace('sqlite:///', '')

                # Ensure directory exists for file databases
                if db_path and db_path != ':memory:':
                    db_dir = os.path.dirname(db_path)
                    if db_dir:
                        Path(db_dir).mkdir(parents=True, exist_ok=True)

                _engine = create_engine(
                    settings.database_url,
                    connect_args={"check_same_thread": False, "timeout": 20},
                    poolclass=StaticPool,
                    echo=settings.database_echo
                )
                event.listen(_engine, "connect", _enable_sqlite_pragmas)

                logger.info(f"SQLite database engine created: {db_path}")

            else:
                _engine = create_engine(
                    settings.database_url,
                    poolclass=QueuePool,
                    pool_size=settings.database_pool_size,
                    max_overflow=settings.database_pool_overflow,
                    pool_timeout=settings.database_pool_timeout,
                    pool_recycle=settings.database_pool_recycle,
                    pool_pre_ping=True,
                    echo=settings.database_echo
                )
                logger.info(
                    f"Database engine created "
                    f"(pool_size={settings.database_pool_size}, "
                    f"max_overflow={settings.database_pool_overflow})"
                )

            _SessionLocal = scoped_session(
                sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    bind=_engine,
                    expire_on_commit=False
                )
            )

            _initialized = True
            logger.info("✓ Database engine created successfully")

        except Exception as e:
            logger.error(f"Failed to create database engine: {e}", exc_info=True)
            _initialized = False
            raise


def get_engine():
    """Get the database engine, creating it if necessary."""
    if _engine is None:
        create_database_engine()
    return _engine


def get_db() -> Generator[Session, None, None]:
    """
    Get database session (FastAPI dependency).

    Yields:
        Database session
    """
    if _SessionLocal is None:
        create_database_engine()

    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    db = _SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context():
    """
    Context manager for database sessions outside request handling.

    Returns:
        Database session
    """
    if _SessionLocal is None:
        create_database_engine()

    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    db = _SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Database context error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    Create database tables.
    Thread-safe with proper locking.
    """
    with _init_lock:
        try:
            logger.info("Initializing database...")

            engine = get_engine()
            if engine is None:
                raise RuntimeError("Failed to create database engine")

            # Import all models to register with Base
            from . import models  # noqa: F401

            start_time = time.time()
            Base.metadata.create_all(bind=engine, checkfirst=True)
            logger.info(f"✓ Database tables created in {time.time() - start_time:.2f}s")

            missing = [t for t in REQUIRED_TABLES if t not in inspect(engine).get_table_names()]
            if missing:
                raise RuntimeError(f"Failed to create required tables: {missing}")

            logger.info("✓ Database initialization complete")

        except Exception as e:
            logger.error(f"Database initialization failed: {e}", exc_info=True)
            raise


def cleanup_db() -> None:
    """Dispose of the engine and session registry."""
    global _engine, _SessionLocal, _initialized

    with _init_lock:
        logger.info("Cleaning up database connections...")

        if _SessionLocal is not None:
            _SessionLocal.remove()
            _SessionLocal = None

        if _engine is not None:
            _engine.dispose()
            _engine = None
            logger.info("✓ Database engine disposed")

        _initialized = False


def check_db_connection(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connection with retry logic.

    Args:
        max_retries: Maximum retry attempts
        retry_delay: Delay between retries in seconds

    Returns:
        True if connection is healthy
    """
    if _engine is None:
        logger.error("Database engine not initialized")
        return False

    for attempt in range(max_retries):
        try:
            with _engine.connect() as connection:
                if connection.execute(text("SELECT 1")).scalar() == 1:
                    logger.debug("Database connection check passed")
                    return True

        except (DisconnectionError, OperationalError) as e:
            logger.warning(
                f"Database connection check failed "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )
            if attempt < max_retries - 1:
                time.sleep(retry_delay)
                retry_delay *= 2

    logger.error("Database connection check failed after all retries")
    return False


def check_tables_exist(bind=None) -> bool:
    """
    Check whether every required table exists.

    Args:
        bind: Engine or connection to inspect, the global engine when None
    """
    bind = bind if bind is not None else _engine
    if bind is None:
        return False

    try:
        table_names = inspect(bind).get_table_names()
    except SQLAlchemyError as e:
        logger.error(f"Failed to inspect tables: {e}")
        return False

    missing = [t for t in REQUIRED_TABLES if t not in table_names]
    if missing:
        logger.warning(f"Missing tables: {missing}")
        return False
    return True


# Auto-initialize on module import (non-testing environments)
if not os.environ.get("TESTING"):
    try:
        create_database_engine()
    except Exception as e:
        logger.warning(f"Failed to auto-initialize database on import: {e}")
