"""
Player-side identity helpers.

Players themselves live outside this package and are referenced by id; the
only identity rallyelo owns is the doubles team built from a pair of players.
"""

from rallyelo.players.teams import DoubleTeamRegistry, normalize_pair

__all__ = [
    "DoubleTeamRegistry",
    "normalize_pair",
]
