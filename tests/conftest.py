"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rallyelo.db.models import Base
from rallyelo.services.sessions import SessionService


@pytest.fixture
def test_engine():
    """
    Create a test database engine.

    Uses SQLite in-memory. StaticPool keeps one connection so every session
    the services open sees the same database. The two event hooks let
    pysqlite run SAVEPOINTs (used by the doubles team registry).
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory handed to the services, like SessionLocal in production."""
    return sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """A database session for tests that work below the service layer."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def service(session_factory):
    return SessionService(session_factory)


@pytest.fixture
def play(service):
    """
    Record and complete a whole session in one call.

    Usage:
        session_id, match_ids = play(
            [
                [("singles", ["p1", "p2"], 11, 5)],          # round 1
                [("doubles", ["p1", "p2", "p3", "p4"], 11, 9)],  # round 2
            ],
            day=1,
        )

    ``day`` orders sessions: created_at is 2026-01-01 plus that many days.
    """

    def _play(rounds, day=0, complete=True):
        created_at = datetime(2026, 1, 1, 19, 0) + timedelta(days=day)
        session_id = service.create_session(f"day {day}", created_at=created_at)
        match_ids = []
        for round_number, matches in enumerate(rounds, start=1):
            scores = {}
            for order, (match_type, players, score1, score2) in enumerate(matches, start=1):
                match_id = service.add_match(session_id, round_number, order, match_type, players)
                scores[match_id] = (score1, score2)
                match_ids.append(match_id)
            service.submit_round(session_id, round_number, scores)
        if complete:
            service.complete_session(session_id)
        return session_id, match_ids

    return _play
