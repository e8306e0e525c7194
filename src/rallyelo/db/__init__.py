"""
Database module for rallyelo.

Provides SQLAlchemy ORM models and session management.

Usage:
    from rallyelo.db import get_session, PlayerRating

    with get_session() as session:
        ratings = session.query(PlayerRating).all()
"""

from rallyelo.db.models import (
    Base,
    DoubleTeam,
    DoubleTeamRating,
    EloSnapshot,
    MatchEloHistory,
    MatchSession,
    PlayerDoubleRating,
    PlayerRating,
    SessionMatch,
)
from rallyelo.db.session import (
    SessionLocal,
    default_session_factory,
    get_db,
    get_engine,
    get_session,
)

__all__ = [
    # Base
    "Base",
    # Models
    "MatchSession",
    "SessionMatch",
    "DoubleTeam",
    "PlayerRating",
    "PlayerDoubleRating",
    "DoubleTeamRating",
    "EloSnapshot",
    "MatchEloHistory",
    # Session
    "get_session",
    "get_db",
    "get_engine",
    "default_session_factory",
    "SessionLocal",
]
