"""
Queries over the ordered match log.

Canonical order is sessions by created_at, then matches by
(round_number, match_order). Session id breaks created_at ties so every
replay sees the same order.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from rallyelo.db.models import MatchSession, SessionMatch
from rallyelo.elo.constants import MATCH_STATUS_COMPLETED, SESSION_STATUS_COMPLETED
from rallyelo.elo.replay import MatchRecord
from rallyelo.errors import NotFoundError


def get_session_or_404(db: Session, session_id: str) -> MatchSession:
    session = db.get(MatchSession, session_id)
    if session is None:
        raise NotFoundError("Session not found", session_id=session_id)
    return session


def ordered_sessions(
    db: Session,
    *,
    completed_only: bool = True,
    before: Optional[MatchSession] = None,
    after: Optional[MatchSession] = None,
) -> list[MatchSession]:
    """
    Sessions in canonical order, optionally bounded (exclusive) by another session.

    Bounds compare on (created_at, id), the same key the ordering uses, so
    two sessions created at the same instant are still strictly ordered.
    """
    stmt = select(MatchSession)
    if completed_only:
        stmt = stmt.where(MatchSession.status == SESSION_STATUS_COMPLETED)
    if before is not None:
        stmt = stmt.where(
            or_(
                MatchSession.created_at < before.created_at,
                and_(MatchSession.created_at == before.created_at, MatchSession.id < before.id),
            )
        )
    if after is not None:
        stmt = stmt.where(
            or_(
                MatchSession.created_at > after.created_at,
                and_(MatchSession.created_at == after.created_at, MatchSession.id > after.id),
            )
        )
    stmt = stmt.order_by(MatchSession.created_at, MatchSession.id)
    return list(db.execute(stmt).scalars())


def latest_completed_session(db: Session) -> Optional[MatchSession]:
    return db.execute(
        select(MatchSession)
        .where(MatchSession.status == SESSION_STATUS_COMPLETED)
        .order_by(MatchSession.created_at.desc(), MatchSession.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def session_match_rows(
    db: Session,
    session_id: str,
    *,
    completed_only: bool = True,
) -> list[SessionMatch]:
    stmt = select(SessionMatch).where(SessionMatch.session_id == session_id)
    if completed_only:
        stmt = stmt.where(SessionMatch.status == MATCH_STATUS_COMPLETED)
    stmt = stmt.order_by(SessionMatch.round_number, SessionMatch.match_order)
    return list(db.execute(stmt).scalars())


def session_matches(
    db: Session,
    session_id: str,
    *,
    completed_only: bool = True,
) -> list[MatchRecord]:
    """One session's matches as replay records, in canonical order."""
    return [
        MatchRecord.from_row(row)
        for row in session_match_rows(db, session_id, completed_only=completed_only)
    ]


def matches_of_sessions(db: Session, sessions: Iterable[MatchSession]) -> list[MatchRecord]:
    """Completed matches of several sessions, concatenated in the given session order."""
    matches: list[MatchRecord] = []
    for session in sessions:
        matches.extend(session_matches(db, session.id))
    return matches
