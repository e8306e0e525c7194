"""
Latest-session deletion and full rebuild.

Elo cannot be undone by subtracting deltas: K depends on cumulative
matches played, so removing a session means re-deriving every rating
forward from an empty book. Deletion is therefore limited to the latest
completed session, whose removal cannot change the inputs of any later
session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rallyelo.db.models import EloSnapshot, MatchEloHistory, MatchSession, SessionMatch
from rallyelo.db.session import default_session_factory
from rallyelo.elo.constants import (
    MATCH_STATUS_COMPLETED,
    SESSION_STATUS_ACTIVE,
    SESSION_STATUS_COMPLETED,
    RatingKind,
)
from rallyelo.elo.history import EloHistoryStore
from rallyelo.elo.matchlog import (
    get_session_or_404,
    latest_completed_session,
    matches_of_sessions,
    ordered_sessions,
    session_match_rows,
)
from rallyelo.elo.ratings import RatingRepository
from rallyelo.elo.replay import ReplayEngine
from rallyelo.elo.snapshots import SnapshotStore
from rallyelo.elo.state import empty_book
from rallyelo.errors import RatingError, RatingIntegrityError, StorageError, ValidationError
from rallyelo.players.teams import DoubleTeamRegistry

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class RebuildResult:
    """Summary returned by rebuild_all() and DeletionRebuilder.delete_session()."""
    sessions_replayed: int = 0
    matches_applied: int = 0
    matches_skipped: int = 0
    ratings_written: int = 0
    deleted_session_id: Optional[str] = None
    deleted_matches: int = 0
    participants: dict[RatingKind, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Deletability:
    deletable: bool
    reason: Optional[str]
    is_latest_completed: bool
    latest_completed_session_id: Optional[str]


def active_sessions_with_results(db: Session) -> list[str]:
    """Ids of active sessions that already have completed matches."""
    stmt = (
        select(MatchSession.id)
        .join(SessionMatch, SessionMatch.session_id == MatchSession.id)
        .where(
            MatchSession.status == SESSION_STATUS_ACTIVE,
            SessionMatch.status == MATCH_STATUS_COMPLETED,
        )
        .distinct()
        .order_by(MatchSession.id)
    )
    return list(db.execute(stmt).scalars())


def rebuild_all(db: Session, completed_only: bool = True) -> RebuildResult:
    """
    Wipe every derived row and replay the match log from an empty book.

    By default only completed sessions are replayed. With
    ``completed_only=False`` active sessions contribute the rounds already
    submitted, which is what current ratings hold between rounds.
    Caller is responsible for commit.
    """
    result = RebuildResult()

    cleared = RatingRepository(db).clear_all()
    db.execute(delete(MatchEloHistory))
    db.execute(delete(EloSnapshot))
    logger.info("RESET cleared ratings %s", {k.value: v for k, v in cleared.items()})

    sessions = ordered_sessions(db, completed_only=completed_only)
    matches = matches_of_sessions(db, sessions)
    engine = ReplayEngine(DoubleTeamRegistry(db).resolve)
    replay = engine.apply(empty_book(), matches)

    matches_by_id = {m.id: m for m in matches}
    SnapshotStore(db).add_outcomes(replay.outcomes, matches_by_id)
    EloHistoryStore(db).record(replay.outcomes, matches_by_id)
    result.ratings_written = RatingRepository(db).upsert_book(replay.end_book)

    result.sessions_replayed = len(sessions)
    result.matches_applied = replay.applied
    result.matches_skipped = replay.skipped
    result.participants = {kind: len(states) for kind, states in replay.end_book.items()}
    logger.info(
        "Rebuild replayed %d sessions, %d matches (%d skipped), wrote %d ratings",
        result.sessions_replayed, result.matches_applied,
        result.matches_skipped, result.ratings_written,
    )
    return result


def check_consistency(db: Session, raise_on_mismatch: bool = False) -> list[str]:
    """
    Compare current ratings with a fresh replay of the whole log.

    Active sessions take part with their submitted rounds, since those are
    already applied to current ratings.

    Returns "<kind>:<participant>" for every participant whose stored state
    differs. Read-only.
    """
    sessions = ordered_sessions(db, completed_only=False)
    engine = ReplayEngine(DoubleTeamRegistry(db).resolve)
    expected = engine.apply(empty_book(), matches_of_sessions(db, sessions)).end_book
    stored = RatingRepository(db).load_book()

    mismatches = []
    for kind in RatingKind:
        for participant_id in sorted(set(expected[kind]) | set(stored[kind])):
            if expected[kind].get(participant_id) != stored[kind].get(participant_id):
                mismatches.append(f"{kind.value}:{participant_id}")
                logger.error(
                    "Rating mismatch %s %s: stored=%s replayed=%s",
                    kind.value, participant_id,
                    stored[kind].get(participant_id), expected[kind].get(participant_id),
                )

    if mismatches and raise_on_mismatch:
        raise RatingIntegrityError(
            "Stored ratings differ from replay", mismatches=mismatches
        )
    return mismatches


class DeletionRebuilder:
    """
    Deletes the latest completed session and rebuilds every rating.

    The rebuild replays completed sessions only, so deletion is refused
    while an active session holds submitted rounds: those results would
    otherwise drop out of current ratings.

    Usage:
        rebuilder = DeletionRebuilder()
        if rebuilder.is_deletable(session_id).deletable:
            rebuilder.delete_session(session_id)
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self.session_factory = session_factory or default_session_factory

    def is_deletable(self, session_id: str) -> Deletability:
        db = self.session_factory()
        try:
            session = get_session_or_404(db, session_id)
            latest = latest_completed_session(db)
            blocking = active_sessions_with_results(db)
        finally:
            db.close()

        latest_id = latest.id if latest is not None else None
        return self._deletability(session, latest_id, blocking)

    def delete_session(self, session_id: str) -> RebuildResult:
        """
        Delete ``session_id`` and rebuild all ratings from the remaining log.

        Raises:
            NotFoundError: unknown session
            ValidationError: session not completed, not the latest completed
                one, or an active session already has results
            StorageError: on database failure (nothing is committed)
        """
        db = self.session_factory()
        try:
            self._check_preconditions(db, session_id)

            match_ids = [row.id for row in session_match_rows(db, session_id, completed_only=False)]
            EloHistoryStore(db).delete_from(match_ids)
            SnapshotStore(db).delete_from(match_ids)
            db.execute(delete(SessionMatch).where(SessionMatch.session_id == session_id))
            db.execute(delete(MatchSession).where(MatchSession.id == session_id))
            logger.info("Deleted session %s with %d matches", session_id, len(match_ids))

            result = rebuild_all(db)
            result.deleted_session_id = session_id
            result.deleted_matches = len(match_ids)
            db.commit()
        except RatingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Deleting session %s failed", session_id)
            raise StorageError("Session deletion failed", session_id=session_id) from exc
        finally:
            db.close()
        return result

    def _check_preconditions(self, db: Session, session_id: str) -> None:
        session = get_session_or_404(db, session_id)
        latest = latest_completed_session(db)
        latest_id = latest.id if latest is not None else None
        blocking = active_sessions_with_results(db)

        verdict = self._deletability(session, latest_id, blocking)
        if not verdict.deletable:
            details = {"session_id": session_id}
            if session.status == SESSION_STATUS_COMPLETED and not verdict.is_latest_completed:
                details["latest_completed_session_id"] = latest_id
            elif blocking and verdict.is_latest_completed:
                details["active_session_ids"] = blocking
            raise ValidationError(verdict.reason, **details)

    @staticmethod
    def _deletability(session: MatchSession, latest_id: Optional[str], blocking: list[str]) -> Deletability:
        is_latest = latest_id == session.id
        if session.status != SESSION_STATUS_COMPLETED:
            reason = "Only completed sessions can be deleted"
        elif not is_latest:
            reason = "Only the most recent completed session can be deleted"
        elif blocking:
            reason = "Complete or clear the active session's results before deleting"
        else:
            reason = None
        return Deletability(
            deletable=reason is None,
            reason=reason,
            is_latest_completed=is_latest,
            latest_completed_session_id=latest_id,
        )
