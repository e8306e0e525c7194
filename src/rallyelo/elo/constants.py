"""
Elo rating system constants.

K factor: controls rating volatility (how much ratings change per match).
New players move fast and settle as they play more:

    matches played   K
    < 10             40
    < 40             32
    otherwise        24

Spread: 400 points of rating difference means the stronger player is
expected to score ten times as often as the weaker one.
"""

from enum import Enum

DEFAULT_ELO = 1500
ELO_SPREAD = 400

# (upper bound on matches played, K) checked in order
K_FACTOR_TIERS: tuple[tuple[int, int], ...] = (
    (10, 40),
    (40, 32),
)
K_FACTOR_SETTLED = 24


class RatingKind(str, Enum):
    """The three rating projections computed from the same match log."""

    SINGLES = "singles"
    DOUBLES_PLAYER = "doubles_player"
    DOUBLES_TEAM = "doubles_team"


class MatchResult(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


MATCH_TYPE_SINGLES = "singles"
MATCH_TYPE_DOUBLES = "doubles"
MATCH_TYPES = (MATCH_TYPE_SINGLES, MATCH_TYPE_DOUBLES)

MATCH_STATUS_PENDING = "pending"
MATCH_STATUS_COMPLETED = "completed"

SESSION_STATUS_ACTIVE = "active"
SESSION_STATUS_COMPLETED = "completed"

# Recalculation lock states stored on the session row
RECALC_IDLE = "idle"
RECALC_RUNNING = "running"
RECALC_DONE = "done"
RECALC_FAILED = "failed"
RECALC_ACQUIRABLE = (RECALC_IDLE, RECALC_DONE, RECALC_FAILED)
