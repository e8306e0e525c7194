"""
Session service: the operations a route layer calls.

Wraps the rating engine behind one object that owns transactions:

- create_session / add_match: build the match log
- submit_round: append a round's results (incremental replay from current ratings)
- complete_session: close a session and store its best/worst player
- correct_match: fix one completed singles score (partial replay under lock)
- delete_session / is_deletable: remove the latest completed session (full rebuild)
- compute_session_summary / compute_best_worst_of_session, compute_rank_movements: reports

Every method opens its own database session, commits on success and rolls
back on error. Database failures surface as StorageError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Generator, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rallyelo.db.models import MatchSession, SessionMatch, utcnow
from rallyelo.db.session import default_session_factory
from rallyelo.elo.constants import (
    MATCH_STATUS_COMPLETED,
    MATCH_STATUS_PENDING,
    MATCH_TYPE_DOUBLES,
    MATCH_TYPES,
    SESSION_STATUS_ACTIVE,
    SESSION_STATUS_COMPLETED,
    RatingKind,
)
from rallyelo.elo.history import EloHistoryStore
from rallyelo.elo.matchlog import get_session_or_404, ordered_sessions, session_match_rows
from rallyelo.elo.ratings import RatingRepository
from rallyelo.elo.rebuild import DeletionRebuilder, Deletability, RebuildResult
from rallyelo.elo.recalculator import EditRecalculator, RecalculationResult, validate_score
from rallyelo.elo.replay import MatchRecord, ReplayEngine
from rallyelo.elo.snapshots import SnapshotStore
from rallyelo.elo.state import RatingState, StateMap, empty_book
from rallyelo.elo.summary import (
    BestWorst,
    RankMovement,
    SummaryEntry,
    compute_best_worst,
    compute_rank_movements,
    compute_session_summary,
    store_best_worst,
)
from rallyelo.errors import ConflictError, RatingError, StorageError, ValidationError
from rallyelo.players.teams import DoubleTeamRegistry
from rallyelo.tasks.locks import LockStatus, RecalculationLock

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class RoundResult:
    """Summary returned by SessionService.submit_round()."""
    session_id: str
    round_number: int
    matches_applied: int = 0
    matches_skipped: int = 0
    deltas: dict[str, dict[str, int]] = field(default_factory=dict)


class SessionService:
    """
    Facade over the rating engine.

    Usage:
        service = SessionService()
        session_id = service.create_session("Tuesday club night")
        m1 = service.add_match(session_id, 1, 1, "singles", ["p1", "p2"])
        service.submit_round(session_id, 1, {m1: (11, 5)})
        service.complete_session(session_id)
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self.session_factory = session_factory or default_session_factory
        self.lock = RecalculationLock(self.session_factory)
        self.recalculator = EditRecalculator(self.session_factory, lock=self.lock)
        self.rebuilder = DeletionRebuilder(self.session_factory)

    @contextmanager
    def _unit_of_work(self, read_only: bool = False) -> Generator[Session, None, None]:
        """Commit on success; ``read_only`` rolls back instead so reports never write."""
        db = self.session_factory()
        try:
            yield db
            if read_only:
                db.rollback()
            else:
                db.commit()
        except RatingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Database operation failed") from exc
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Building the log
    # ------------------------------------------------------------------

    def create_session(self, name: Optional[str] = None, created_at: Optional[datetime] = None) -> str:
        with self._unit_of_work() as db:
            session = MatchSession(name=name, created_at=created_at or utcnow())
            db.add(session)
            db.flush()
            logger.info("Created session %s (%s)", session.id, name)
            return session.id

    def add_match(
        self,
        session_id: str,
        round_number: int,
        match_order: int,
        match_type: str,
        player_ids: Sequence[str],
    ) -> str:
        """Schedule a pending match. Doubles pairs are resolved to teams here."""
        if match_type not in MATCH_TYPES:
            raise ValidationError("Unknown match type", match_type=match_type)
        players = [str(pid) for pid in player_ids]
        required = 4 if match_type == MATCH_TYPE_DOUBLES else 2
        if len(players) != required:
            raise ValidationError(
                f"A {match_type} match needs {required} players", player_ids=players
            )
        if len(set(players)) != len(players):
            raise ValidationError("A player cannot appear twice in a match", player_ids=players)

        try:
            with self._unit_of_work() as db:
                session = get_session_or_404(db, session_id)
                if session.status != SESSION_STATUS_ACTIVE:
                    raise ConflictError("Session already completed", session_id=session_id)

                match = SessionMatch(
                    session_id=session_id,
                    round_number=round_number,
                    match_order=match_order,
                    match_type=match_type,
                    player_ids=players,
                    status=MATCH_STATUS_PENDING,
                )
                if match_type == MATCH_TYPE_DOUBLES:
                    registry = DoubleTeamRegistry(db)
                    match.team1_id = registry.resolve(players[0], players[1])
                    match.team2_id = registry.resolve(players[2], players[3])
                db.add(match)
                db.flush()
                return match.id
        except StorageError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise ConflictError(
                    "A match already exists at this position",
                    session_id=session_id,
                    round_number=round_number,
                    match_order=match_order,
                ) from exc
            raise

    # ------------------------------------------------------------------
    # Appending results
    # ------------------------------------------------------------------

    def submit_round(
        self,
        session_id: str,
        round_number: int,
        scores: Mapping[str, tuple[int, int]],
    ) -> RoundResult:
        """
        Record the results of every match in a round and update ratings.

        The round is applied on top of current ratings, which equal the
        replay of everything recorded so far, so this is the same replay a
        rebuild would do for these matches.

        Raises:
            ConflictError: session completed, or the round was already submitted
            ValidationError: missing/unknown/invalid scores, or the round would
                land before results that are already recorded
        """
        parsed = {
            match_id: (validate_score(pair[0]), validate_score(pair[1]))
            for match_id, pair in scores.items()
        }

        with self._unit_of_work() as db:
            session = get_session_or_404(db, session_id)
            if session.status != SESSION_STATUS_ACTIVE:
                raise ConflictError("Session already completed", session_id=session_id)

            rows = session_match_rows(db, session_id, completed_only=False)
            round_rows = [r for r in rows if r.round_number == round_number]
            if not round_rows:
                raise ValidationError("Round has no matches", round_number=round_number)
            if any(r.status == MATCH_STATUS_COMPLETED for r in round_rows):
                raise ConflictError("Round already submitted", round_number=round_number)
            if any(r.status == MATCH_STATUS_COMPLETED and r.round_number > round_number for r in rows):
                raise ValidationError(
                    "A later round already has results", round_number=round_number
                )
            self._check_no_later_results(db, session)

            expected_ids = {r.id for r in round_rows}
            if set(parsed) != expected_ids:
                raise ValidationError(
                    "Scores must be given for exactly the matches of the round",
                    missing=sorted(expected_ids - set(parsed)),
                    unknown=sorted(set(parsed) - expected_ids),
                )

            now = utcnow()
            for row in round_rows:
                row.team1_score, row.team2_score = parsed[row.id]
                row.status = MATCH_STATUS_COMPLETED
                row.completed_at = now
            db.flush()

            matches = [MatchRecord.from_row(r) for r in round_rows]
            registry = DoubleTeamRegistry(db)
            replay = ReplayEngine(registry.resolve).apply(
                self._current_book(db, matches, registry), matches
            )

            matches_by_id = {m.id: m for m in matches}
            SnapshotStore(db).add_outcomes(replay.outcomes, matches_by_id)
            EloHistoryStore(db).record(replay.outcomes, matches_by_id)

            touched: dict[RatingKind, StateMap] = {kind: {} for kind in RatingKind}
            result = RoundResult(session_id=session_id, round_number=round_number)
            for outcome in replay.outcomes:
                touched[outcome.rating_kind][outcome.participant_id] = outcome.after
                result.deltas.setdefault(outcome.rating_kind.value, {})
                kind_deltas = result.deltas[outcome.rating_kind.value]
                kind_deltas[outcome.participant_id] = (
                    kind_deltas.get(outcome.participant_id, 0) + outcome.delta
                )
            RatingRepository(db).upsert_book(touched)

            result.matches_applied = replay.applied
            result.matches_skipped = replay.skipped
            logger.info(
                "Submitted round %d of session %s: %d matches applied",
                round_number, session_id, replay.applied,
            )
            return result

    def complete_session(self, session_id: str) -> BestWorst:
        """Mark a session completed and store its best/worst singles player."""
        with self._unit_of_work() as db:
            session = get_session_or_404(db, session_id)
            if session.status == SESSION_STATUS_COMPLETED:
                raise ConflictError("Session already completed", session_id=session_id)
            session.status = SESSION_STATUS_COMPLETED
            session.completed_at = utcnow()
            db.flush()
            best_worst = store_best_worst(db, session)
            logger.info(
                "Completed session %s best=%s worst=%s",
                session_id, best_worst.best, best_worst.worst,
            )
            return best_worst

    # ------------------------------------------------------------------
    # History rewrites
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
        return self.recalculator.correct_match(
            session_id, match_id, score1, score2, edited_by=edited_by, reason=reason
        )

    def recalculation_status(self, session_id: str) -> LockStatus:
        return self.lock.status(session_id)

    def delete_session(self, session_id: str) -> RebuildResult:
        return self.rebuilder.delete_session(session_id)

    def is_deletable(self, session_id: str) -> Deletability:
        return self.rebuilder.is_deletable(session_id)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def compute_session_summary(
        self,
        session_id: str,
        kind: RatingKind = RatingKind.SINGLES,
    ) -> list[SummaryEntry]:
        with self._unit_of_work(read_only=True) as db:
            return compute_session_summary(db, session_id, kind)

    def compute_best_worst_of_session(self, session_id: str) -> BestWorst:
        with self._unit_of_work(read_only=True) as db:
            return compute_best_worst(db, session_id)

    def compute_rank_movements(self, kind: RatingKind = RatingKind.SINGLES) -> list[RankMovement]:
        with self._unit_of_work(read_only=True) as db:
            return compute_rank_movements(db, kind)

    def current_ratings(self, kind: RatingKind = RatingKind.SINGLES) -> list[tuple[str, RatingState]]:
        """Current ratings of one projection, highest Elo first."""
        with self._unit_of_work(read_only=True) as db:
            states = RatingRepository(db).load(kind)
        return sorted(states.items(), key=lambda item: (-item[1].elo, item[0]))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_no_later_results(db: Session, session: MatchSession) -> None:
        later = ordered_sessions(db, completed_only=False, after=session)
        for other in later:
            if session_match_rows(db, other.id):
                raise ValidationError(
                    "A newer session already has results",
                    session_id=session.id,
                    newer_session_id=other.id,
                )

    @staticmethod
    def _current_book(db: Session, matches: list[MatchRecord], registry: DoubleTeamRegistry):
        """Current ratings of everyone playing in ``matches``, per projection."""
        singles_ids = {pid for m in matches if m.is_singles for pid in m.player_ids[:2]}
        doubles_ids = {pid for m in matches if m.is_doubles for pid in m.player_ids[:4]}
        team_ids = {
            registry.resolve(m.player_ids[i], m.player_ids[i + 1])
            for m in matches if m.is_doubles and len(m.player_ids) >= 4
            for i in (0, 2)
        }
        repo = RatingRepository(db)
        book = empty_book()
        book[RatingKind.SINGLES] = repo.load(RatingKind.SINGLES, singles_ids)
        book[RatingKind.DOUBLES_PLAYER] = repo.load(RatingKind.DOUBLES_PLAYER, doubles_ids)
        book[RatingKind.DOUBLES_TEAM] = repo.load(RatingKind.DOUBLES_TEAM, team_ids)
        return book
