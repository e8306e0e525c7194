"""
Database session management for rallyelo.

Provides the SQLAlchemy engine and session factory with connection pooling
configured from config.py. The engine is created on first use, so importing
this module never opens a connection.

Usage:
    # As a context manager (recommended for scripts)
    from rallyelo.db import get_session

    with get_session() as session:
        ratings = session.query(PlayerRating).all()
        # Commits automatically on exit, rolls back on exception

    # Per-request sessions for a route layer
    from rallyelo.db import get_db
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rallyelo.config import settings


def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    The engine is configured with:
    - Connection pool sized from settings (not for SQLite, which manages its own)
    - Echo mode only when LOG_LEVEL=DEBUG
    - Pre-ping to verify connections before use (handles stale connections)
    """
    url = database_url or settings.database_url
    kwargs = {
        "pool_pre_ping": True,
        "echo": settings.log_level == "DEBUG",
    }
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow
    return create_engine(url, **kwargs)


_engine: Optional[Engine] = None


def _get_engine() -> Engine:
    """Get or create the singleton engine instance."""
    global _engine
    if _engine is None:
        _engine = get_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


# Session factory; bound to the engine the first time a session is requested.
# expire_on_commit=False keeps loaded rows readable after the services commit.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def default_session_factory() -> Session:
    """Open a new session on the configured engine."""
    _get_engine()
    return SessionLocal()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on successful exit, rolls back on exception.
    This is the recommended way to use sessions in scripts.

    Raises:
        Any exception from the database operation (after rollback)
    """
    session = default_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session generator for a route layer's dependency injection.
    """
    db = default_session_factory()
    try:
        yield db
    finally:
        db.close()
