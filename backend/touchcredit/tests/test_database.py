"""Engine and session factory tests

WHAT: SQLite engines built by build_engine and sessions from build_session_factory
WHY: Link and result rows cascade with their conversion; SQLite only enforces
     that with the foreign_keys pragma set on every connection
REFERENCES:
    - touchcredit/database.py
"""

from sqlalchemy import text

from touchcredit.database import SessionLocal, build_engine, build_session_factory
from touchcredit.models import Base


def test_sqlite_connections_enforce_foreign_keys(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
    try:
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
    finally:
        engine.dispose()


def test_in_memory_sqlite_sessions_share_one_database():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    factory = build_session_factory(engine)
    try:
        writer = factory()
        writer.execute(text(
            "INSERT INTO touches (visitor_id, touch_type, channel, touched_at) "
            "VALUES ('v1', 'pageview', 'Direct', '2025-06-01 00:00:00')"
        ))
        writer.commit()
        writer.close()

        reader = factory()
        assert reader.execute(text("SELECT COUNT(*) FROM touches")).scalar() == 1
        reader.close()
    finally:
        engine.dispose()


def test_session_factory_does_not_autoflush():
    assert SessionLocal.kw["autoflush"] is False
