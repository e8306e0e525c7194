"""
Replay of an ordered match log into rating states.

This is the only place ratings change. Every write path (round submission,
score correction, session deletion, full rebuild) builds its start states,
hands an ordered match list to ReplayEngine and persists what comes back.

Three projections run over the same log, each a separate pipeline:

- SinglesProjection: singles matches, one rating per player
- DoublesPlayerProjection: doubles matches, one doubles rating per player;
  a side plays with the average rating and average match count of its two
  players, and both players receive the same delta
- DoublesTeamProjection: doubles matches, one rating per normalized pair

The two doubles projections see the same matches but never share state,
so a player's doubles rating and their teams' ratings can diverge.

Processing is in memory with no database access; start maps are copied and
never mutated.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, NamedTuple, Optional

from rallyelo.elo.calculator import elo_delta, result_for
from rallyelo.elo.constants import (
    MATCH_STATUS_COMPLETED,
    MATCH_TYPE_DOUBLES,
    MATCH_TYPE_SINGLES,
    MatchResult,
    RatingKind,
)
from rallyelo.elo.state import DEFAULT_STATE, RatingBook, RatingState, StateMap, copy_book

logger = logging.getLogger(__name__)

TeamResolver = Callable[[str, str], str]


class MatchRecord(NamedTuple):
    """Lightweight match record used by replay, detached from the ORM."""
    id: str
    session_id: str
    round_number: int
    match_order: int
    match_type: str
    player_ids: tuple[str, ...]
    score1: Optional[int]
    score2: Optional[int]
    status: str = MATCH_STATUS_COMPLETED

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.round_number, self.match_order)

    @property
    def is_singles(self) -> bool:
        return self.match_type == MATCH_TYPE_SINGLES

    @property
    def is_doubles(self) -> bool:
        return self.match_type == MATCH_TYPE_DOUBLES

    @property
    def required_players(self) -> int:
        return 4 if self.is_doubles else 2

    @property
    def is_playable(self) -> bool:
        """Has both scores and enough participants to be rated."""
        return (
            self.score1 is not None
            and self.score2 is not None
            and len(self.player_ids) >= self.required_players
        )

    def with_scores(self, score1: int, score2: int) -> MatchRecord:
        return self._replace(score1=score1, score2=score2)

    @classmethod
    def from_row(cls, row: Any) -> MatchRecord:
        return cls(
            id=row.id,
            session_id=row.session_id,
            round_number=row.round_number,
            match_order=row.match_order,
            match_type=row.match_type,
            player_ids=tuple(row.player_ids or ()),
            score1=row.team1_score,
            score2=row.team2_score,
            status=row.status,
        )


class MatchOutcome(NamedTuple):
    """What one match did to one participant in one projection."""
    match_id: str
    rating_kind: RatingKind
    participant_id: str
    before: RatingState
    after: RatingState

    @property
    def delta(self) -> int:
        return self.after.elo - self.before.elo


@dataclass
class ReplayResult:
    """End states and per-match outcomes of one projection."""
    end_states: StateMap
    outcomes: list[MatchOutcome] = field(default_factory=list)
    applied: int = 0
    skipped: int = 0


@dataclass
class BookReplay:
    """End states and outcomes of all projections, in application order."""
    end_book: RatingBook
    outcomes: list[MatchOutcome] = field(default_factory=list)
    applied: int = 0
    skipped: int = 0

    def outcomes_for(self, match_id: str) -> list[MatchOutcome]:
        return [o for o in self.outcomes if o.match_id == match_id]


def _opposite(result: MatchResult) -> MatchResult:
    if result is MatchResult.WIN:
        return MatchResult.LOSS
    if result is MatchResult.LOSS:
        return MatchResult.WIN
    return MatchResult.DRAW


class _Projection(ABC):
    """Shared loop; subclasses implement accepts() and step()."""

    kind: RatingKind

    @abstractmethod
    def accepts(self, match: MatchRecord) -> bool:
        pass

    @abstractmethod
    def step(self, states: StateMap, match: MatchRecord) -> list[MatchOutcome]:
        """Apply one playable match to ``states`` in place and return its outcomes."""
        pass

    def apply(
        self,
        start_states: Mapping[str, RatingState],
        matches: Iterable[MatchRecord],
    ) -> ReplayResult:
        result = ReplayResult(end_states=dict(start_states))
        for match in matches:
            if not self.accepts(match):
                continue
            if not match.is_playable:
                result.skipped += 1
                continue
            result.outcomes.extend(self.step(result.end_states, match))
            result.applied += 1
        return result

    @staticmethod
    def _outcome(
        kind: RatingKind,
        match: MatchRecord,
        participant_id: str,
        before: RatingState,
        after: RatingState,
    ) -> MatchOutcome:
        return MatchOutcome(match.id, kind, participant_id, before, after)


class SinglesProjection(_Projection):
    kind = RatingKind.SINGLES

    def accepts(self, match: MatchRecord) -> bool:
        return match.is_singles

    def step(self, states: StateMap, match: MatchRecord) -> list[MatchOutcome]:
        p1, p2 = match.player_ids[0], match.player_ids[1]
        s1 = states.get(p1, DEFAULT_STATE)
        s2 = states.get(p2, DEFAULT_STATE)

        r1 = result_for(match.score1, match.score2)
        r2 = _opposite(r1)
        d1 = elo_delta(s1.elo, s2.elo, r1, s1.matches_played)
        d2 = elo_delta(s2.elo, s1.elo, r2, s2.matches_played)

        a1 = s1.after(d1, r1)
        a2 = s2.after(d2, r2)
        states[p1] = a1
        states[p2] = a2

        logger.debug(
            "MATCH_REPLAY singles match=%s %s %d->%d (%+d) vs %s %d->%d (%+d)",
            match.id, p1, s1.elo, a1.elo, d1, p2, s2.elo, a2.elo, d2,
        )
        return [
            self._outcome(self.kind, match, p1, s1, a1),
            self._outcome(self.kind, match, p2, s2, a2),
        ]


class DoublesTeamProjection(_Projection):
    kind = RatingKind.DOUBLES_TEAM

    def __init__(self, team_resolver: TeamResolver) -> None:
        self.team_resolver = team_resolver

    def accepts(self, match: MatchRecord) -> bool:
        return match.is_doubles

    def step(self, states: StateMap, match: MatchRecord) -> list[MatchOutcome]:
        ids = match.player_ids
        t1 = self.team_resolver(ids[0], ids[1])
        t2 = self.team_resolver(ids[2], ids[3])
        s1 = states.get(t1, DEFAULT_STATE)
        s2 = states.get(t2, DEFAULT_STATE)

        r1 = result_for(match.score1, match.score2)
        r2 = _opposite(r1)
        d1 = elo_delta(s1.elo, s2.elo, r1, s1.matches_played)
        d2 = elo_delta(s2.elo, s1.elo, r2, s2.matches_played)

        a1 = s1.after(d1, r1)
        a2 = s2.after(d2, r2)
        states[t1] = a1
        states[t2] = a2

        logger.debug(
            "MATCH_REPLAY doubles_team match=%s team %s %+d vs team %s %+d",
            match.id, t1, d1, t2, d2,
        )
        return [
            self._outcome(self.kind, match, t1, s1, a1),
            self._outcome(self.kind, match, t2, s2, a2),
        ]


class DoublesPlayerProjection(_Projection):
    kind = RatingKind.DOUBLES_PLAYER

    def accepts(self, match: MatchRecord) -> bool:
        return match.is_doubles

    def step(self, states: StateMap, match: MatchRecord) -> list[MatchOutcome]:
        ids = match.player_ids
        side1 = (ids[0], ids[1])
        side2 = (ids[2], ids[3])
        before = {pid: states.get(pid, DEFAULT_STATE) for pid in side1 + side2}

        def side_average(side: tuple[str, str]) -> tuple[float, float]:
            a, b = before[side[0]], before[side[1]]
            return (a.elo + b.elo) / 2, (a.matches_played + b.matches_played) / 2

        elo1, played1 = side_average(side1)
        elo2, played2 = side_average(side2)

        r1 = result_for(match.score1, match.score2)
        r2 = _opposite(r1)
        d1 = elo_delta(elo1, elo2, r1, played1)
        d2 = elo_delta(elo2, elo1, r2, played2)

        outcomes = []
        for side, delta, result in ((side1, d1, r1), (side2, d2, r2)):
            for pid in side:
                after = before[pid].after(delta, result)
                states[pid] = after
                outcomes.append(self._outcome(self.kind, match, pid, before[pid], after))

        logger.debug(
            "MATCH_REPLAY doubles_player match=%s side1 avg=%.1f %+d side2 avg=%.1f %+d",
            match.id, elo1, d1, elo2, d2,
        )
        return outcomes


class ReplayEngine:
    """
    Runs every projection over one ordered match list.

    Usage:

        engine = ReplayEngine(team_resolver=registry.resolve)
        replay = engine.apply(start_book, matches)
        replay.end_book[RatingKind.SINGLES]["player-1"].elo

    Matches must already be in canonical order; the engine does not sort,
    because a replay may span several sessions.
    """

    def __init__(self, team_resolver: TeamResolver) -> None:
        self.projections: tuple[_Projection, ...] = (
            SinglesProjection(),
            DoublesPlayerProjection(),
            DoublesTeamProjection(team_resolver),
        )

    def apply(self, start_book: Mapping, matches: Iterable[MatchRecord]) -> BookReplay:
        replay = BookReplay(end_book=copy_book(start_book))
        for match in matches:
            handled = False
            for projection in self.projections:
                if not projection.accepts(match):
                    continue
                handled = True
                if not match.is_playable:
                    continue
                replay.outcomes.extend(
                    projection.step(replay.end_book[projection.kind], match)
                )
            if handled and match.is_playable:
                replay.applied += 1
            else:
                replay.skipped += 1
                logger.debug("Skipping unratable match %s", match.id)
        return replay
