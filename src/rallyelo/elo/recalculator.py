"""
Single-match score correction with partial replay.

Correcting a completed singles match changes the outcome of that match and
the pre-match ratings of everything after it. Instead of rebuilding all of
history, the recalculator:

1. Validates the request (no lock is taken for bad input)
2. Takes the session's recalculation lock (own transaction)
3. Starts each affected player from their snapshot going into the edited
   match, or from the session baseline when they had not played yet
4. Deletes snapshots/history from the edited match forward
5. Replays the edited match with the new score, the rest of the session,
   and every later session's singles matches
6. Persists snapshots, history, current ratings and edit metadata in one
   transaction, then releases the lock as done (failed on any error)
7. Re-reads the persisted ratings and logs any mismatch

Only singles matches can be corrected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rallyelo.config import settings
from rallyelo.db.models import SessionMatch, utcnow
from rallyelo.db.session import default_session_factory
from rallyelo.elo.baseline import SessionBaseline
from rallyelo.elo.constants import (
    MATCH_STATUS_COMPLETED,
    SESSION_STATUS_COMPLETED,
    RatingKind,
)
from rallyelo.elo.history import EloHistoryStore
from rallyelo.elo.matchlog import (
    get_session_or_404,
    ordered_sessions,
    session_matches,
)
from rallyelo.elo.ratings import RatingRepository
from rallyelo.elo.replay import MatchRecord, ReplayEngine, SinglesProjection
from rallyelo.elo.snapshots import SnapshotStore
from rallyelo.elo.state import DEFAULT_STATE, RatingState
from rallyelo.elo.summary import store_best_worst
from rallyelo.errors import NotFoundError, RatingError, StorageError, ValidationError
from rallyelo.players.teams import DoubleTeamRegistry
from rallyelo.tasks.locks import RecalculationLock

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

# Where a participant's starting state came from
SOURCE_SNAPSHOT = "snapshot"
SOURCE_BASELINE = "initial_baseline"
SOURCE_BASELINE_FALLBACK = "initial_baseline_fallback"


@dataclass
class RecalculationResult:
    """Summary returned by EditRecalculator.correct_match()."""
    session_id: str
    match_id: str
    old_score: tuple[Optional[int], Optional[int]]
    new_score: tuple[int, int]
    replayed_matches: int = 0
    later_sessions: int = 0
    baseline_sources: dict[str, str] = field(default_factory=dict)
    final_ratings: dict[str, RatingState] = field(default_factory=dict)
    mismatches: list[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return not self.mismatches


def validate_score(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Scores must be integers", score=repr(value))
    if value < 0:
        raise ValidationError("Scores must not be negative", score=value)
    return value


class EditRecalculator:
    """
    Corrects one completed singles match and re-derives everything after it.

    Usage:
        recalculator = EditRecalculator()
        result = recalculator.correct_match(session_id, match_id, 5, 11,
                                            edited_by="admin", reason="scores swapped")

    Raises ValidationError/NotFoundError before any mutation, ConflictError
    when another correction of the same session is running, StorageError
    when the database fails mid-way (the lock is left as 'failed').
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        lock: Optional[RecalculationLock] = None,
        verify: Optional[bool] = None,
    ) -> None:
        self.session_factory = session_factory or default_session_factory
        self.lock = lock or RecalculationLock(self.session_factory)
        self.verify = settings.verify_after_write if verify is None else verify

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def correct_match(
        self,
        session_id: str,
        match_id: str,
        score1: int,
        score2: int,
        *,
        edited_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RecalculationResult:
        score1 = validate_score(score1)
        score2 = validate_score(score2)
        self._validate_target(session_id, match_id)

        with self.lock.held(session_id):
            result = self._recalculate(session_id, match_id, score1, score2, edited_by, reason)

        if self.verify:
            result.mismatches = self.verify_persisted(result.final_ratings)
        return result

    def verify_persisted(self, expected: dict[str, RatingState]) -> list[str]:
        """
        Compare persisted singles ratings with ``expected``.

        Mismatches are logged and returned, never raised: by the time this
        runs the correction has already committed.
        """
        db = self.session_factory()
        try:
            persisted = RatingRepository(db).load(RatingKind.SINGLES, expected.keys())
        except SQLAlchemyError:
            logger.exception("Post-write verification could not read ratings")
            return ["verification read failed"]
        finally:
            db.close()

        mismatches = []
        for participant_id, state in expected.items():
            stored = persisted.get(participant_id)
            if stored != state:
                mismatches.append(participant_id)
                logger.error(
                    "RECALC_MISMATCH participant=%s computed=%s persisted=%s",
                    participant_id, state, stored,
                )
        return mismatches

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_target(self, session_id: str, match_id: str) -> None:
        db = self.session_factory()
        try:
            get_session_or_404(db, session_id)
            match = db.get(SessionMatch, match_id)
            if match is None or match.session_id != session_id:
                raise NotFoundError(
                    "Match not found in session", session_id=session_id, match_id=match_id
                )
            if not MatchRecord.from_row(match).is_singles:
                raise ValidationError(
                    "Only singles matches can be edited", match_id=match_id
                )
            if match.status != MATCH_STATUS_COMPLETED:
                raise ValidationError(
                    "Only completed matches can be edited", match_id=match_id
                )
        finally:
            db.close()

    def _recalculate(
        self,
        session_id: str,
        match_id: str,
        score1: int,
        score2: int,
        edited_by: Optional[str],
        reason: Optional[str],
    ) -> RecalculationResult:
        db = self.session_factory()
        try:
            result = self._recalculate_in(db, session_id, match_id, score1, score2, edited_by, reason)
            db.commit()
        except RatingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("RECALC_FAILED session=%s match=%s", session_id, match_id)
            raise StorageError(
                "Recalculation failed while writing", session_id=session_id, match_id=match_id
            ) from exc
        finally:
            db.close()

        logger.info(
            "DB_PERSISTED session=%s match=%s replayed=%d participants=%d",
            session_id, match_id, result.replayed_matches, len(result.final_ratings),
        )
        return result

    def _recalculate_in(
        self,
        db: Session,
        session_id: str,
        match_id: str,
        score1: int,
        score2: int,
        edited_by: Optional[str],
        reason: Optional[str],
    ) -> RecalculationResult:
        session = get_session_or_404(db, session_id)
        edited_row = db.get(SessionMatch, match_id)

        singles = [m for m in session_matches(db, session_id) if m.is_singles]
        position = next((i for i, m in enumerate(singles) if m.id == match_id), None)
        if position is None:
            raise ValidationError("Match is no longer a completed singles match", match_id=match_id)

        result = RecalculationResult(
            session_id=session_id,
            match_id=match_id,
            old_score=(edited_row.team1_score, edited_row.team2_score),
            new_score=(score1, score2),
        )
        logger.info(
            "RECALC_START session=%s match=%s position=%d old=%s new=%s",
            session_id, match_id, position, result.old_score, result.new_score,
        )

        # Replay set: the edited match onwards, then every later session
        replay_set = [singles[position].with_scores(score1, score2)] + singles[position + 1:]
        later = ordered_sessions(db, completed_only=False, after=session)
        for later_session in later:
            replay_set.extend(m for m in session_matches(db, later_session.id) if m.is_singles)
        result.later_sessions = len(later)

        start_states = self._start_states(db, session_id, match_id, singles[:position], replay_set, result)

        snapshots = SnapshotStore(db)
        history = EloHistoryStore(db)
        replay_ids = [m.id for m in replay_set]
        logger.info(
            "RESET session=%s snapshots=%d history=%d",
            session_id, snapshots.delete_from(replay_ids), history.delete_from(replay_ids),
        )

        replay = SinglesProjection().apply(start_states, replay_set)
        participants = {pid for m in replay_set for pid in m.player_ids[:2]}
        result.final_ratings = {pid: replay.end_states[pid] for pid in sorted(participants)}
        result.replayed_matches = replay.applied
        logger.info(
            "FINAL_COMPUTED session=%s %s",
            session_id,
            ", ".join(f"{pid}={s.elo}" for pid, s in result.final_ratings.items()),
        )

        matches_by_id = {m.id: m for m in replay_set}
        snapshots.add_outcomes(replay.outcomes, matches_by_id)
        history.record(replay.outcomes, matches_by_id)
        RatingRepository(db).upsert(RatingKind.SINGLES, result.final_ratings)

        edited_row.team1_score = score1
        edited_row.team2_score = score2
        edited_row.is_edited = True
        edited_row.edited_at = utcnow()
        edited_row.edited_by = edited_by
        edited_row.edit_reason = reason

        # Stored best/worst of this and later completed sessions depend on the edit
        db.flush()
        engine = ReplayEngine(DoubleTeamRegistry(db).resolve)
        for affected in [session] + later:
            if affected.status == SESSION_STATUS_COMPLETED:
                store_best_worst(db, affected, engine)

        return result

    def _start_states(
        self,
        db: Session,
        session_id: str,
        match_id: str,
        earlier: list[MatchRecord],
        replay_set: list[MatchRecord],
        result: RecalculationResult,
    ) -> dict[str, RatingState]:
        """Per-participant state going into the edited match."""
        played_earlier = {pid for m in earlier for pid in m.player_ids[:2]}
        snapshots = SnapshotStore(db)
        baseline: Optional[dict[str, RatingState]] = None
        rebuilt: Optional[dict[str, RatingState]] = None

        def from_baseline(pid: str) -> RatingState:
            nonlocal baseline
            if baseline is None:
                baseline = SessionBaseline(db).baseline_before(session_id)[RatingKind.SINGLES]
            return baseline.get(pid, DEFAULT_STATE)

        def from_baseline_replayed(pid: str) -> RatingState:
            # Session baseline plus this session's matches before the edit
            nonlocal rebuilt
            if rebuilt is None:
                from_baseline(pid)
                rebuilt = SinglesProjection().apply(baseline, earlier).end_states
            return rebuilt.get(pid, DEFAULT_STATE)

        states: dict[str, RatingState] = {}
        for match in replay_set:
            for pid in match.player_ids[:2]:
                if pid in states:
                    continue
                if pid not in played_earlier:
                    states[pid] = from_baseline(pid)
                    result.baseline_sources[pid] = SOURCE_BASELINE
                    continue

                snapshot = snapshots.get_before(pid, match_id, RatingKind.SINGLES)
                if snapshot is None:
                    logger.warning(
                        "RECALC_INTEGRITY missing snapshot for %s before match %s; "
                        "replaying from session baseline",
                        pid, match_id,
                    )
                    states[pid] = from_baseline_replayed(pid)
                    result.baseline_sources[pid] = SOURCE_BASELINE_FALLBACK
                else:
                    states[pid] = snapshot
                    result.baseline_sources[pid] = SOURCE_SNAPSHOT

        logger.info(
            "BASELINE_LOADED session=%s %s",
            session_id,
            ", ".join(f"{pid}:{src}" for pid, src in sorted(result.baseline_sources.items())),
        )
        return states
