"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine and session factory for the API and the
    ARQ worker. AttributionService opens and closes its own sessions from
    the factory.

WHY:
    The attribution engine is synchronous by design: every operation is a
    short blocking call against the store. Workers wrap the calls in
    asyncio.to_thread rather than using an async driver.

USAGE:
    from touchcredit.database import SessionLocal

    service = AttributionService(SessionLocal, config)

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - touchcredit/services/attribution/store.py (consumer of these sessions)
"""

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from environment, loading .env if needed.

    Returns:
        Database connection string

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        # Attempt to load from local .env for developer convenience
        from touchcredit.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure backend/.env is loaded or env var is exported."
        )

    return database_url


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the URL.

    SQLite engines (tests/dev) do not support pool_size/max_overflow and need
    foreign keys switched on per connection for cascading deletes. In-memory
    SQLite shares a single connection so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        extra = {}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            extra["poolclass"] = StaticPool
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            **extra,
        )

        @event.listens_for(sqlite_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    return create_engine(
        database_url,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    """Session factory used by the service, the worker and tests."""
    return sessionmaker(bind=bind, autoflush=False, autocommit=False)


DATABASE_URL = _get_database_url()

engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)
