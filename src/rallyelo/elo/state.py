"""
Per-participant rating state.

A RatingState is an immutable value: applying a match returns a new state
so replay code can keep the state before and after every match without
copying.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Mapping

from rallyelo.elo.constants import DEFAULT_ELO, MatchResult, RatingKind


@dataclass(frozen=True)
class RatingState:
    """Rating and counters for one participant in one projection."""
    elo: int = DEFAULT_ELO
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    sets_won: int = 0
    sets_lost: int = 0

    def after(self, delta: int, result: MatchResult) -> RatingState:
        """
        State after one more match.

        Sets won/lost only move on a decided match; a draw counts as played
        but neither side took the set.
        """
        return replace(
            self,
            elo=self.elo + int(delta),
            matches_played=self.matches_played + 1,
            wins=self.wins + (result is MatchResult.WIN),
            losses=self.losses + (result is MatchResult.LOSS),
            draws=self.draws + (result is MatchResult.DRAW),
            sets_won=self.sets_won + (result is MatchResult.WIN),
            sets_lost=self.sets_lost + (result is MatchResult.LOSS),
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> RatingState:
        """Build from any object exposing the state columns (ORM rows, snapshots)."""
        return cls(
            elo=int(row.elo),
            matches_played=int(row.matches_played),
            wins=int(row.wins),
            losses=int(row.losses),
            draws=int(row.draws),
            sets_won=int(row.sets_won),
            sets_lost=int(row.sets_lost),
        )


DEFAULT_STATE = RatingState()

# participant_id -> state, one map per projection
StateMap = Dict[str, RatingState]
RatingBook = Dict[RatingKind, StateMap]


def empty_book() -> RatingBook:
    return {kind: {} for kind in RatingKind}


def copy_book(book: Mapping[RatingKind, Mapping[str, RatingState]]) -> RatingBook:
    """Shallow copy per projection; states themselves are immutable."""
    copied = empty_book()
    for kind, states in book.items():
        copied[RatingKind(kind)] = dict(states)
    return copied
