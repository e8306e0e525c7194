"""Audit trail of rating movements, one row per match and participant."""

from __future__ import annotations

from typing import Iterable, Mapping

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from rallyelo.db.models import MatchEloHistory
from rallyelo.elo.replay import MatchOutcome, MatchRecord


class EloHistoryStore:
    """Caller is responsible for commit."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        outcomes: Iterable[MatchOutcome],
        matches: Mapping[str, MatchRecord],
    ) -> int:
        rows = [
            MatchEloHistory(
                match_id=o.match_id,
                session_id=matches[o.match_id].session_id,
                participant_id=o.participant_id,
                rating_kind=o.rating_kind.value,
                elo_before=o.before.elo,
                elo_after=o.after.elo,
                elo_delta=o.delta,
            )
            for o in outcomes
        ]
        self.db.add_all(rows)
        self.db.flush()
        return len(rows)

    def for_match(self, match_id: str) -> list[MatchEloHistory]:
        return list(
            self.db.execute(
                select(MatchEloHistory)
                .where(MatchEloHistory.match_id == match_id)
                .order_by(MatchEloHistory.id)
            ).scalars()
        )

    def delete_from(self, match_ids: Iterable[str]) -> int:
        ids = list(match_ids)
        if not ids:
            return 0
        result = self.db.execute(
            delete(MatchEloHistory)
            .where(MatchEloHistory.match_id.in_(ids))
        )
        return result.rowcount or 0
