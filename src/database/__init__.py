"""
Database Layer for the Referral Platform.

This module provides:
- SQLAlchemy ORM models for profiles, leads, commissions, tickets and pages
- Sync engine with connection pooling
- Session context manager and FastAPI dependency
"""

from .models import Base
from .connection import (
    get_sync_engine,
    get_sync_session_factory,
    get_db_session,
    get_session,
    init_database,
    close_sync_engine,
)

__all__ = [
    "Base",
    "get_sync_engine",
    "get_sync_session_factory",
    "get_db_session",
    "get_session",
    "init_database",
    "close_sync_engine",
]
