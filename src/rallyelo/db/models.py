"""
SQLAlchemy ORM models for rallyelo.

The schema treats current ratings as a materialized projection of the
ordered match log. Everything in the rating tables, snapshots and history
can be thrown away and re-derived by replaying completed matches.

Tables:
- sessions: Play sessions, ordered by created_at, plus the recalculation lock
- session_matches: Matches of a session, ordered by (round_number, match_order)
- double_teams: Canonical doubles pairings (player_1_id < player_2_id)
- player_ratings: Current singles rating per player
- player_double_ratings: Current doubles rating per player
- double_team_ratings: Current rating per doubles team
- elo_snapshots: Full rating state of each participant after each match
- match_elo_history: Before/after/delta audit rows per match and participant
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from rallyelo.elo.constants import (
    DEFAULT_ELO,
    MATCH_STATUS_PENDING,
    RECALC_IDLE,
    SESSION_STATUS_ACTIVE,
)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# =============================================================================
# Sessions and matches
# =============================================================================


class MatchSession(Base):
    """
    One play session: a sequence of rounds of matches.

    Sessions are ordered relative to each other by created_at only. The
    recalc_* columns hold the per-session lock used by score corrections:
    status moves idle|done|failed -> running through a conditional UPDATE.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    status: Mapped[str] = mapped_column(String(20), default=SESSION_STATUS_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Recalculation lock
    recalc_status: Mapped[Optional[str]] = mapped_column(String(20), default=RECALC_IDLE)
    recalc_token: Mapped[Optional[str]] = mapped_column(String(64))
    recalc_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    recalc_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Written when the session is completed
    best_player_id: Mapped[Optional[str]] = mapped_column(String(64))
    best_player_delta: Mapped[Optional[int]] = mapped_column(Integer)
    worst_player_id: Mapped[Optional[str]] = mapped_column(String(64))
    worst_player_delta: Mapped[Optional[int]] = mapped_column(Integer)

    matches: Mapped[list["SessionMatch"]] = relationship(
        back_populates="session",
        order_by=lambda: [SessionMatch.round_number, SessionMatch.match_order],
    )

    __table_args__ = (
        CheckConstraint("status IN ('active', 'completed')", name="ck_sessions_status"),
    )

    def __repr__(self) -> str:
        return f"<MatchSession(id={self.id}, status={self.status}, created_at={self.created_at})>"


class SessionMatch(Base):
    """
    One match inside a session.

    player_ids holds 2 ids for singles and 4 for doubles, where the first two
    form side 1 and the last two side 2. team1_id/team2_id are filled for
    doubles once the pair has been resolved to a DoubleTeam.
    """

    __tablename__ = "session_matches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True)
    round_number: Mapped[int] = mapped_column(Integer)
    match_order: Mapped[int] = mapped_column(Integer)
    match_type: Mapped[str] = mapped_column(String(10))
    player_ids: Mapped[list] = mapped_column(JSONType)
    team1_id: Mapped[Optional[str]] = mapped_column(ForeignKey("double_teams.id"))
    team2_id: Mapped[Optional[str]] = mapped_column(ForeignKey("double_teams.id"))
    team1_score: Mapped[Optional[int]] = mapped_column(Integer)
    team2_score: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=MATCH_STATUS_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Correction metadata
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    edited_by: Mapped[Optional[str]] = mapped_column(String(120))
    edit_reason: Mapped[Optional[str]] = mapped_column(Text)

    session: Mapped[MatchSession] = relationship(back_populates="matches")

    __table_args__ = (
        UniqueConstraint(
            "session_id", "round_number", "match_order",
            name="uq_session_matches_position",
        ),
        CheckConstraint(
            "match_type IN ('singles', 'doubles')", name="ck_session_matches_type"
        ),
        CheckConstraint(
            "status IN ('pending', 'completed')", name="ck_session_matches_status"
        ),
    )

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.round_number, self.match_order)

    def __repr__(self) -> str:
        return (
            f"<SessionMatch(id={self.id}, round={self.round_number}, "
            f"order={self.match_order}, type={self.match_type}, "
            f"score={self.team1_score}-{self.team2_score})>"
        )


class DoubleTeam(Base):
    """A doubles pairing. Ids are stored normalized so (a, b) and (b, a) share a row."""

    __tablename__ = "double_teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    player_1_id: Mapped[str] = mapped_column(String(64))
    player_2_id: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("player_1_id", "player_2_id", name="uq_double_teams_pair"),
        CheckConstraint("player_1_id < player_2_id", name="ck_double_teams_normalized"),
    )

    def __repr__(self) -> str:
        return f"<DoubleTeam(id={self.id}, {self.player_1_id}+{self.player_2_id})>"


# =============================================================================
# Current ratings
# =============================================================================


class _RatingColumns:
    """State columns shared by the three current-rating tables and snapshots."""

    elo: Mapped[int] = mapped_column(Integer, default=DEFAULT_ELO)
    matches_played: Mapped[int] = mapped_column(Integer, default=0)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)
    draws: Mapped[int] = mapped_column(Integer, default=0)
    sets_won: Mapped[int] = mapped_column(Integer, default=0)
    sets_lost: Mapped[int] = mapped_column(Integer, default=0)


class PlayerRating(_RatingColumns, Base):
    """Current singles rating per player."""

    __tablename__ = "player_ratings"

    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class PlayerDoubleRating(_RatingColumns, Base):
    """Current doubles rating per player (doubles-player projection)."""

    __tablename__ = "player_double_ratings"

    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class DoubleTeamRating(_RatingColumns, Base):
    """Current rating per doubles team (doubles-team projection)."""

    __tablename__ = "double_team_ratings"

    team_id: Mapped[str] = mapped_column(ForeignKey("double_teams.id"), primary_key=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# Derived per-match data
# =============================================================================


class EloSnapshot(_RatingColumns, Base):
    """
    Full rating state of one participant right after one match.

    round_number/match_order/session_id are copied from the match so the
    "latest snapshot before match X" lookup is a single indexed query.
    """

    __tablename__ = "elo_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[str] = mapped_column(ForeignKey("session_matches.id"))
    session_id: Mapped[str] = mapped_column(String(36))
    round_number: Mapped[int] = mapped_column(Integer)
    match_order: Mapped[int] = mapped_column(Integer)
    participant_id: Mapped[str] = mapped_column(String(64))
    rating_kind: Mapped[str] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "match_id", "participant_id", "rating_kind",
            name="uq_elo_snapshots_match_participant",
        ),
        Index(
            "ix_elo_snapshots_lookup",
            "session_id", "participant_id", "rating_kind", "round_number", "match_order",
        ),
    )


class MatchEloHistory(Base):
    """Audit row: how one match moved one participant's rating."""

    __tablename__ = "match_elo_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[str] = mapped_column(ForeignKey("session_matches.id"), index=True)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    participant_id: Mapped[str] = mapped_column(String(64), index=True)
    rating_kind: Mapped[str] = mapped_column(String(20))
    elo_before: Mapped[int] = mapped_column(Integer)
    elo_after: Mapped[int] = mapped_column(Integer)
    elo_delta: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
