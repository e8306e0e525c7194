"""
Current-rating tables.

These rows are a cache of the latest replay output. Nothing here computes
a rating: callers hand in states produced by ReplayEngine.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from rallyelo.db.models import DoubleTeamRating, PlayerDoubleRating, PlayerRating
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.state import RatingBook, RatingState, StateMap, empty_book

# RatingKind -> (model, primary key column name)
RATING_TABLES = {
    RatingKind.SINGLES: (PlayerRating, "player_id"),
    RatingKind.DOUBLES_PLAYER: (PlayerDoubleRating, "player_id"),
    RatingKind.DOUBLES_TEAM: (DoubleTeamRating, "team_id"),
}


class RatingRepository:
    """Read and write current ratings. Caller is responsible for commit."""

    def __init__(self, db: Session):
        self.db = db

    def load(
        self,
        kind: RatingKind,
        participant_ids: Optional[Iterable[str]] = None,
    ) -> StateMap:
        model, key = RATING_TABLES[RatingKind(kind)]
        column = getattr(model, key)
        stmt = select(model)
        if participant_ids is not None:
            ids = list(participant_ids)
            if not ids:
                return {}
            stmt = stmt.where(column.in_(ids))
        return {
            getattr(row, key): RatingState.from_row(row)
            for row in self.db.execute(stmt).scalars()
        }

    def load_book(self) -> RatingBook:
        book = empty_book()
        for kind in RatingKind:
            book[kind] = self.load(kind)
        return book

    def upsert(self, kind: RatingKind, states: Mapping[str, RatingState]) -> int:
        model, key = RATING_TABLES[RatingKind(kind)]
        for participant_id, state in states.items():
            row = self.db.get(model, participant_id)
            if row is None:
                row = model(**{key: participant_id})
                self.db.add(row)
            for name, value in state.to_dict().items():
                setattr(row, name, value)
        self.db.flush()
        return len(states)

    def upsert_book(self, book: Mapping[RatingKind, Mapping[str, RatingState]]) -> int:
        return sum(self.upsert(kind, states) for kind, states in book.items())

    def clear_all(self) -> dict[RatingKind, int]:
        """Delete every current rating row in all three tables."""
        removed = {}
        for kind, (model, _) in RATING_TABLES.items():
            result = self.db.execute(delete(model))
            removed[kind] = result.rowcount or 0
        return removed
