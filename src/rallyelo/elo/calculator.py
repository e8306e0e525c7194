"""
Elo rating arithmetic.

Implements the standard Elo formula with a match-count based K factor:

  Expected score: E_A = 1 / (1 + 10^((R_B - R_A) / 400))
  Rating change:  D_A = round(K(n_A) * (S_A - E_A))

Where:
  R_A, R_B = Current ratings of players A and B
  S_A      = Actual score for A (win 1, draw 0.5, loss 0)
  n_A      = Matches A has played before this one
  K        = 40 / 32 / 24 depending on n_A (see constants.py)

Rounding is half away from zero, and deltas are always computed from the
winner's side (or the lower-rated side for draws) and negated for the
opponent, so at equal K the two deltas of a match sum to exactly zero.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from rallyelo.elo.constants import (
    ELO_SPREAD,
    K_FACTOR_SETTLED,
    K_FACTOR_TIERS,
    MatchResult,
)


@dataclass(frozen=True)
class DeltaBreakdown:
    """
    Result of one Elo calculation.

    Carries the intermediate values so replay logging can show why a
    rating moved the way it did.
    """
    rating: float
    opponent_rating: float
    result: MatchResult
    k_factor: int
    expected: float
    actual: float
    delta: int

    def __repr__(self) -> str:
        return (
            f"<DeltaBreakdown({self.rating:.0f} vs {self.opponent_rating:.0f}, "
            f"{self.result.value}, K={self.k_factor}, E={self.expected:.4f}, "
            f"delta={self.delta:+d})>"
        )


def k_factor(matches_played: float) -> int:
    """
    K factor for a participant who has played ``matches_played`` matches.

    Accepts fractional counts: the doubles-player projection passes the
    average match count of a side, so 9.5 still gets the new-player K of 40.
    """
    for upper_bound, k in K_FACTOR_TIERS:
        if matches_played < upper_bound:
            return k
    return K_FACTOR_SETTLED


def expected_score(rating: float, opponent_rating: float) -> float:
    """Probability-like expected score of ``rating`` against ``opponent_rating``."""
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / ELO_SPREAD))


# Preview helper for callers; same number, clearer name at call sites
win_probability = expected_score


def actual_score(result: MatchResult) -> float:
    if result is MatchResult.WIN:
        return 1.0
    if result is MatchResult.LOSS:
        return 0.0
    return 0.5


def result_for(score_for: int, score_against: int) -> MatchResult:
    """Result from one side's point of view given both scores."""
    if score_for > score_against:
        return MatchResult.WIN
    if score_for < score_against:
        return MatchResult.LOSS
    return MatchResult.DRAW


def round_half_away_from_zero(value: float) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _raw_delta(rating: float, opponent_rating: float, result: MatchResult, k: int) -> int:
    return round_half_away_from_zero(
        k * (actual_score(result) - expected_score(rating, opponent_rating))
    )


def elo_delta(
    rating: float,
    opponent_rating: float,
    result: MatchResult,
    matches_played: float,
) -> int:
    """
    Integer rating change for one side of a match.

    Args:
        rating: This side's rating before the match
        opponent_rating: The other side's rating before the match
        result: Outcome from this side's point of view
        matches_played: This side's match count before the match (drives K)

    Returns:
        Signed integer delta to add to ``rating``

    Example:
        >>> elo_delta(1500, 1500, MatchResult.WIN, 0)
        20
    """
    k = k_factor(matches_played)
    # Compute from a canonical side and negate, so float noise in the
    # expected score can never break delta(A,B,win) == -delta(B,A,loss).
    if result is MatchResult.LOSS:
        return -_raw_delta(opponent_rating, rating, MatchResult.WIN, k)
    if result is MatchResult.DRAW and rating > opponent_rating:
        return -_raw_delta(opponent_rating, rating, MatchResult.DRAW, k)
    return _raw_delta(rating, opponent_rating, result, k)


def calculate_delta(
    rating: float,
    opponent_rating: float,
    result: MatchResult,
    matches_played: float,
) -> DeltaBreakdown:
    """Same as elo_delta but returns every intermediate value."""
    return DeltaBreakdown(
        rating=rating,
        opponent_rating=opponent_rating,
        result=result,
        k_factor=k_factor(matches_played),
        expected=expected_score(rating, opponent_rating),
        actual=actual_score(result),
        delta=elo_delta(rating, opponent_rating, result, matches_played),
    )
