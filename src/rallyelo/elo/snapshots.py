"""
Per-match rating snapshots.

After every applied match the full RatingState of each participant is
stored against that match. A correction later restarts replay from the
snapshot of each participant's last match before the edited one, instead
of replaying everything from the first session.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from rallyelo.db.models import EloSnapshot, SessionMatch
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.replay import MatchOutcome, MatchRecord
from rallyelo.elo.state import RatingState
from rallyelo.errors import NotFoundError

_STATE_FIELDS = ("elo", "matches_played", "wins", "losses", "draws", "sets_won", "sets_lost")


class SnapshotStore:
    """Snapshot persistence backed by the elo_snapshots table. Caller is responsible for commit."""

    def __init__(self, db: Session):
        self.db = db

    def put(
        self,
        match_id: str,
        participant_id: str,
        kind: RatingKind,
        state: RatingState,
    ) -> None:
        """Insert or overwrite the snapshot for (match, participant, kind)."""
        kind = RatingKind(kind)
        row = self.db.execute(
            select(EloSnapshot).where(
                EloSnapshot.match_id == match_id,
                EloSnapshot.participant_id == participant_id,
                EloSnapshot.rating_kind == kind.value,
            )
        ).scalar_one_or_none()

        if row is None:
            match = self._match(match_id)
            row = EloSnapshot(
                match_id=match_id,
                session_id=match.session_id,
                round_number=match.round_number,
                match_order=match.match_order,
                participant_id=participant_id,
                rating_kind=kind.value,
            )
            self.db.add(row)

        for name in _STATE_FIELDS:
            setattr(row, name, getattr(state, name))
        self.db.flush()

    def add_outcomes(
        self,
        outcomes: Iterable[MatchOutcome],
        matches: Mapping[str, MatchRecord],
    ) -> int:
        """
        Bulk insert the after-state of each outcome.

        Assumes the snapshots of these matches were already deleted (replay
        always clears its range first), so no per-row existence check is made.
        """
        rows = []
        for outcome in outcomes:
            match = matches[outcome.match_id]
            rows.append(
                EloSnapshot(
                    match_id=outcome.match_id,
                    session_id=match.session_id,
                    round_number=match.round_number,
                    match_order=match.match_order,
                    participant_id=outcome.participant_id,
                    rating_kind=outcome.rating_kind.value,
                    **outcome.after.to_dict(),
                )
            )
        self.db.add_all(rows)
        self.db.flush()
        return len(rows)

    def get_before(
        self,
        participant_id: str,
        match_id: str,
        kind: RatingKind = RatingKind.SINGLES,
    ) -> Optional[RatingState]:
        """
        State of ``participant_id`` going into ``match_id``.

        Returns the snapshot of the participant's latest earlier match in the
        same session, or None when the participant has not played in this
        session before that match.
        """
        match = self._match(match_id)
        row = self.db.execute(
            select(EloSnapshot)
            .where(
                EloSnapshot.session_id == match.session_id,
                EloSnapshot.participant_id == participant_id,
                EloSnapshot.rating_kind == RatingKind(kind).value,
                or_(
                    EloSnapshot.round_number < match.round_number,
                    and_(
                        EloSnapshot.round_number == match.round_number,
                        EloSnapshot.match_order < match.match_order,
                    ),
                ),
            )
            .order_by(EloSnapshot.round_number.desc(), EloSnapshot.match_order.desc())
            .limit(1)
        ).scalar_one_or_none()
        return RatingState.from_row(row) if row is not None else None

    def for_match(self, match_id: str) -> dict[tuple[str, RatingKind], RatingState]:
        rows = self.db.execute(
            select(EloSnapshot).where(EloSnapshot.match_id == match_id)
        ).scalars()
        return {
            (row.participant_id, RatingKind(row.rating_kind)): RatingState.from_row(row)
            for row in rows
        }

    def delete_from(self, match_ids: Iterable[str]) -> int:
        """Delete every snapshot of the given matches; returns rows removed."""
        ids = list(match_ids)
        if not ids:
            return 0
        result = self.db.execute(
            delete(EloSnapshot)
            .where(EloSnapshot.match_id.in_(ids))
        )
        return result.rowcount or 0

    def _match(self, match_id: str) -> SessionMatch:
        match = self.db.get(SessionMatch, match_id)
        if match is None:
            raise NotFoundError("Match not found", match_id=match_id)
        return match
