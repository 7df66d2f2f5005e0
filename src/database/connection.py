"""
Database Connection Module

Provides sync session management for request handlers, scripts and tests.

Usage:
    with get_db_session() as session:
        result = session.execute(query)
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)

# Global sync engine and session factory (lazy initialization)
_sync_engine = None
_sync_session_factory = None


def get_sync_engine(settings: Optional[DatabaseSettings] = None):
    """
    Get or create a synchronous SQLAlchemy engine.

    Args:
        settings: Database settings. If None, loads from environment.
    """
    global _sync_engine

    if _sync_engine is None:
        settings = settings or get_database_settings()

        logger.info(
            f"Creating database engine",
            extra={
                "driver": settings.driver,
                "database": settings.name if settings.is_postgres else str(settings.sqlite_path),
            }
        )

        # Pool configuration differs for SQLite vs PostgreSQL
        if settings.is_sqlite:
            pool_class = NullPool
            pool_kwargs = {"connect_args": {"check_same_thread": False}}
        else:
            pool_class = QueuePool
            pool_kwargs = {
                "pool_size": settings.pool_size,
                "max_overflow": settings.max_overflow,
                "pool_timeout": settings.pool_timeout,
                "pool_recycle": settings.pool_recycle,
                "pool_pre_ping": settings.pool_pre_ping,
            }

        _sync_engine = create_engine(
            settings.sync_url,
            echo=settings.echo_sql,
            poolclass=pool_class,
            **pool_kwargs,
        )

    return _sync_engine


def get_sync_session_factory(
    settings: Optional[DatabaseSettings] = None
) -> sessionmaker:
    """Get or create the sync session factory."""
    global _sync_session_factory

    if _sync_session_factory is None:
        engine = get_sync_engine(settings)
        _sync_session_factory = sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )

    return _sync_session_factory


@contextmanager
def get_db_session(
    settings: Optional[DatabaseSettings] = None
) -> Generator[Session, None, None]:
    """
    Get a synchronous database session as a context manager.

    Usage:
        with get_db_session() as session:
            session.add(new_record)

    Yields:
        Session: SQLAlchemy session that auto-commits on success, rollbacks on error.
    """
    session_factory = get_sync_session_factory(settings)
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(settings: Optional[DatabaseSettings] = None) -> None:
    """Create all tables. Development and tests only; production uses Alembic."""
    from database.models import Base

    engine = get_sync_engine(settings)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def close_sync_engine() -> None:
    """
    Close the sync database engine and cleanup connections.

    Should be called during application shutdown.
    """
    global _sync_engine, _sync_session_factory

    if _sync_engine is not None:
        logger.info("Closing sync database engine")
        _sync_engine.dispose()
        _sync_engine = None
        _sync_session_factory = None


# FastAPI dependency
def get_session():
    """FastAPI dependency for sync sessions."""
    with get_db_session() as session:
        yield session
