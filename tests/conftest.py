"""Pytest configuration and fixtures for test suite."""

import os
import sys
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-at-least-32-characters")
os.environ.setdefault("SQUARE_WEBHOOK_SIGNATURE_KEY", "test-square-signature-key")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from database.models import Base, Profile, UserRole  # noqa: E402
from integrations.email_service import EmailService, MockEmailBackend  # noqa: E402


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session(session_factory):
    """
    Session for arranging data and asserting on results.

    Commit before calling the API: requests run in their own session.
    """
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# FAKES
# =============================================================================

class FakeLLM:
    """LLM client returning canned copy. Cities listed in fail_for raise."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.prompts = []

    async def generate(self, prompt, system=None):
        self.prompts.append(prompt)
        for city in self.fail_for:
            if city in prompt:
                raise RuntimeError(f"provider error for {city}")
        if '"benefits"' in prompt:
            return '```json\n{"benefits": ["Fast filing", "Maximum refund"]}\n```'
        if '"faqs"' in prompt:
            return '{"faqs": [{"question": "When is the deadline?", "answer": "April 15."}]}'
        return "Local tax help for every household and business in town."


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def email_backend():
    return MockEmailBackend()


# =============================================================================
# PROFILE FACTORY
# =============================================================================

@pytest.fixture
def make_profile(session):
    """
    Create a profile.

    Usage:
        preparer = make_profile(role=UserRole.TAX_PREPARER, username="ira")
    """
    counter = {"n": 0}

    def factory(role=UserRole.CLIENT, **fields):
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@example.com")
        fields.setdefault("first_name", "Test")
        fields.setdefault("last_name", f"User{counter['n']}")
        profile = Profile(role=role, **fields)
        session.add(profile)
        session.flush()
        return profile

    return factory


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def client(session_factory, fake_llm, email_backend):
    """
    Provide FastAPI TestClient bound to the test database.

    Email goes to email_backend; landing page copy comes from fake_llm.
    """
    from fastapi.testclient import TestClient

    from database.connection import get_session
    from web.app import app
    from web.dependencies import get_email, get_llm_client, get_session_factory

    def override_session():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    email_service = EmailService(backend=email_backend)

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_email] = lambda: email_service
    app.dependency_overrides[get_llm_client] = lambda: fake_llm

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """
    Bearer headers for a profile.

    Usage:
        client.get("/api/earnings/summary", headers=auth_headers(profile))
    """
    from web.auth import create_access_token

    def build(profile):
        token = create_access_token(
            profile.id, profile.role, username=profile.username, email=profile.email
        )
        return {"Authorization": f"Bearer {token}"}

    return build
