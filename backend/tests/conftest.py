# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Settings are read at import time, so the test environment is fixed here
before anything from ``studio_booking`` is imported. Every test gets a fresh
in-memory SQLite database; the concurrency tests build their own file-backed
one because they need a connection per thread.
"""

import os
import sys

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["is_testing"] = "true"
os.environ["notifications_enabled"] = "false"
os.environ["database_url"] = "sqlite://"
os.environ.pop("redis_url", None)

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from typing import Iterator

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from studio_booking import models  # noqa: F401  registers every table
from studio_booking.api.dependencies.database import get_db
from studio_booking.core.config import settings
from studio_booking.database import Base
from studio_booking.events.publisher import EventPublisher
from studio_booking.main import app


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch):
    """Keep per-test settings tweaks from leaking."""
    monkeypatch.setattr(settings, "studio_timezone", "UTC")
    monkeypatch.setattr(settings, "capacity_consumption_basis", "paid_and_pending")
    monkeypatch.setattr(settings, "notifications_enabled", False)
    monkeypatch.setattr(settings, "redis_url", None)
    monkeypatch.setattr(settings, "store_retry_base_delay_seconds", 0)
    yield


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    """Session configured like ``SessionLocal``."""
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def publisher() -> EventPublisher:
    return EventPublisher(enabled=False)


@pytest.fixture
def client(db: Session) -> Iterator[TestClient]:
    """Create a test client with the test database."""

    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
