"""
Elo rating engine.

Ratings are a projection of the ordered match log:
- calculator: Elo arithmetic (K factor by match count, expected score, rounded delta)
- replay: the three projections (singles, doubles player, doubles team)
- baseline / snapshots: where a replay starts from
- recalculator / rebuild: the two history-rewriting write paths
- summary: session-scoped reports

Only the pure modules are re-exported here; the database-backed ones are
imported from their modules directly.
"""

from rallyelo.elo.calculator import (
    DeltaBreakdown,
    calculate_delta,
    elo_delta,
    expected_score,
    k_factor,
)
from rallyelo.elo.constants import DEFAULT_ELO, MatchResult, RatingKind
from rallyelo.elo.replay import (
    DoublesPlayerProjection,
    DoublesTeamProjection,
    MatchOutcome,
    MatchRecord,
    ReplayEngine,
    SinglesProjection,
)
from rallyelo.elo.state import RatingState

__all__ = [
    "DEFAULT_ELO",
    "DeltaBreakdown",
    "DoublesPlayerProjection",
    "DoublesTeamProjection",
    "MatchOutcome",
    "MatchRecord",
    "MatchResult",
    "RatingKind",
    "RatingState",
    "ReplayEngine",
    "SinglesProjection",
    "calculate_delta",
    "elo_delta",
    "expected_score",
    "k_factor",
]
