"""
Session-scoped summaries.

Both functions re-derive the session from its baseline instead of reading
current ratings, so they stay correct after later sessions, corrections
and deletions.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy.orm import Session

from rallyelo.elo.baseline import SessionBaseline
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.matchlog import latest_completed_session
from rallyelo.elo.replay import ReplayEngine
from rallyelo.elo.state import DEFAULT_STATE, StateMap


@dataclass(frozen=True)
class SummaryEntry:
    """One participant's movement across a session. Counts cover this session only."""
    participant_id: str
    elo_before: int
    elo_after: int
    delta: int
    matches_played: int
    wins: int
    losses: int
    draws: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PlayerDelta:
    player_id: str
    delta: int


@dataclass(frozen=True)
class BestWorst:
    best: Optional[PlayerDelta]
    worst: Optional[PlayerDelta]


@dataclass(frozen=True)
class RankMovement:
    """Standing after the latest completed session. Positive movement means a climb."""
    participant_id: str
    elo: int
    rank: int
    previous_rank: Optional[int]
    movement: int


def compute_session_summary(
    db: Session,
    session_id: str,
    kind: RatingKind = RatingKind.SINGLES,
    engine: Optional[ReplayEngine] = None,
) -> list[SummaryEntry]:
    """
    Per-participant before/after ratings and results for one session.

    Only participants with at least one applied match of ``kind`` in the
    session appear. Sorted by wins desc, losses asc, delta desc, then id.
    """
    kind = RatingKind(kind)
    baseline = SessionBaseline(db, engine)
    before = baseline.baseline_before(session_id)
    replay = baseline.replay_session(session_id, before)

    counts: dict[str, dict[str, int]] = {}
    for outcome in replay.outcomes:
        if outcome.rating_kind is not kind:
            continue
        c = counts.setdefault(
            outcome.participant_id,
            {"matches_played": 0, "wins": 0, "losses": 0, "draws": 0},
        )
        c["matches_played"] += 1
        if outcome.after.wins > outcome.before.wins:
            c["wins"] += 1
        elif outcome.after.losses > outcome.before.losses:
            c["losses"] += 1
        else:
            c["draws"] += 1

    entries = []
    for participant_id, c in counts.items():
        elo_before = before[kind].get(participant_id, DEFAULT_STATE).elo
        elo_after = replay.end_book[kind][participant_id].elo
        entries.append(
            SummaryEntry(
                participant_id=participant_id,
                elo_before=elo_before,
                elo_after=elo_after,
                delta=elo_after - elo_before,
                **c,
            )
        )

    entries.sort(key=lambda e: (-e.wins, e.losses, -e.delta, e.participant_id))
    return entries


def compute_best_worst(
    db: Session,
    session_id: str,
    engine: Optional[ReplayEngine] = None,
) -> BestWorst:
    """
    Best and worst singles player of a session by Elo delta.

    Ties are broken by lowest player id for both. Returns (None, None) when
    the session has no completed singles match.
    """
    entries = compute_session_summary(db, session_id, RatingKind.SINGLES, engine)
    if not entries:
        return BestWorst(best=None, worst=None)

    best = min(entries, key=lambda e: (-e.delta, e.participant_id))
    worst = min(entries, key=lambda e: (e.delta, e.participant_id))
    return BestWorst(
        best=PlayerDelta(best.participant_id, best.delta),
        worst=PlayerDelta(worst.participant_id, worst.delta),
    )


def store_best_worst(db: Session, session_row, engine: Optional[ReplayEngine] = None) -> BestWorst:
    """Recompute and write the best/worst columns of a session row. Caller is responsible for commit."""
    result = compute_best_worst(db, session_row.id, engine)
    session_row.best_player_id = result.best.player_id if result.best else None
    session_row.best_player_delta = result.best.delta if result.best else None
    session_row.worst_player_id = result.worst.player_id if result.worst else None
    session_row.worst_player_delta = result.worst.delta if result.worst else None
    return result


def _ranking(states: StateMap) -> dict[str, int]:
    ordered = sorted(states.items(), key=lambda item: (-item[1].elo, item[0]))
    return {participant_id: rank for rank, (participant_id, _) in enumerate(ordered, start=1)}


def compute_rank_movements(
    db: Session,
    kind: RatingKind = RatingKind.SINGLES,
    engine: Optional[ReplayEngine] = None,
) -> list[RankMovement]:
    """
    How the latest completed session moved the standings of one projection.

    Previous ranks come from that session's baseline, i.e. the standings
    after the completed session before it. Current ranks come from
    replaying the session on top of the baseline. Equal Elo ranks by lowest
    id. Participants without a previous rank get a movement of 0.
    Returns [] when no session is completed yet.
    """
    kind = RatingKind(kind)
    latest = latest_completed_session(db)
    if latest is None:
        return []

    baseline = SessionBaseline(db, engine)
    before = baseline.baseline_before(latest.id)
    after = baseline.replay_this_session(latest.id, before)

    previous = _ranking(before[kind])
    movements = []
    for participant_id, rank in sorted(_ranking(after[kind]).items(), key=lambda item: item[1]):
        previous_rank = previous.get(participant_id)
        movements.append(
            RankMovement(
                participant_id=participant_id,
                elo=after[kind][participant_id].elo,
                rank=rank,
                previous_rank=previous_rank,
                movement=0 if previous_rank is None else previous_rank - rank,
            )
        )
    return movements
