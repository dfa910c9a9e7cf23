"""Pytest configuration for touchcredit integration tests

WHAT: Shared fixtures for store, engine and HTTP endpoint tests
WHY: Every test gets its own SQLite file database, a service with a frozen
     clock and, for HTTP tests, a FastAPI TestClient bound to that service
REFERENCES:
    - touchcredit/main.py: create_app
    - touchcredit/database.py: build_engine, build_session_factory
    - touchcredit/services/attribution/service.py: AttributionService
"""

import os
from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Set test environment before touchcredit.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")

from touchcredit.database import build_engine, build_session_factory
from touchcredit.models import Base, Conversion, Touch
from touchcredit.services.attribution import AttributionConfig, AttributionService


# Frozen "now" for every service built by these fixtures
NOW = datetime(2025, 6, 15, 12, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine(tmp_path):
    """File-backed SQLite so separate sessions behave like separate connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'touchcredit_test.db'}")
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return build_session_factory(test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Service & Client Fixtures
# ============================================================================

@pytest.fixture
def attribution_config() -> AttributionConfig:
    return AttributionConfig()


@pytest.fixture
def service(session_factory, attribution_config) -> AttributionService:
    return AttributionService(session_factory, attribution_config, clock=lambda: NOW)


@pytest.fixture
def app(service):
    """FastAPI test application serving the fixture service."""
    from touchcredit.main import create_app

    return create_app(service=service)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# ============================================================================
# Row Factories
# ============================================================================

@pytest.fixture
def make_touch(test_db_session):
    """Insert a touch directly and return its id."""
    def _make(visitor_id: str, touched_at: datetime, channel: str = "Direct", **fields) -> int:
        touch = Touch(
            visitor_id=visitor_id,
            touched_at=touched_at,
            channel=channel,
            touch_type=fields.pop("touch_type", "pageview"),
            **fields,
        )
        test_db_session.add(touch)
        test_db_session.commit()
        return touch.id

    return _make


@pytest.fixture
def make_conversion(test_db_session):
    """Insert a conversion directly (unscored) and return its id."""
    def _make(visitor_id: str, converted_at: datetime = NOW, value: float = 0, **fields) -> int:
        conversion = Conversion(
            visitor_id=visitor_id,
            conversion_type=fields.pop("conversion_type", "purchase"),
            conversion_value=value,
            converted_at=converted_at,
            **fields,
        )
        test_db_session.add(conversion)
        test_db_session.commit()
        return conversion.id

    return _make


@pytest.fixture
def now() -> datetime:
    """The frozen clock of the `service` fixture."""
    return NOW
