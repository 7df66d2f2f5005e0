"""
FastAPI Dependency Injection for services.

Provides dependency injection for:
- Database sessions and the session factory used by background jobs
- EmailService
- LLM client for landing page generation

Tests replace these through app.dependency_overrides.
"""

from functools import lru_cache
from typing import Callable

from sqlalchemy.orm import Session

from database.connection import get_session, get_sync_session_factory
from integrations.ai_client import LLMClient, OpenAIClient
from integrations.email_service import EmailService, get_email_service

__all__ = [
    "get_session",
    "get_session_factory",
    "get_email",
    "get_llm_client",
]


def get_session_factory() -> Callable[[], Session]:
    """Factory for jobs that open their own sessions."""
    return get_sync_session_factory()


def get_email() -> EmailService:
    return get_email_service()


@lru_cache(maxsize=1)
def get_llm_client() -> LLMClient:
    """Singleton OpenAI client (stateless apart from its HTTP pool)."""
    return OpenAIClient()
