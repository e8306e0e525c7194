"""
Doubles team identity.

A doubles team is an unordered pair of players. The pair is stored
normalized (smaller id first) so that (a, b) and (b, a) always resolve to
the same team id, and first use of a pair creates the team row.

Two requests can see a new pair at the same time. Creation runs inside a
savepoint; if the unique constraint rejects our insert, the savepoint is
rolled back and the row the other writer created is selected instead.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rallyelo.db.models import DoubleTeam
from rallyelo.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def normalize_pair(player_a: str, player_b: str) -> tuple[str, str]:
    """Order a pair of player ids canonically."""
    if player_a == player_b:
        raise ValidationError(
            "A doubles team needs two different players", player_id=player_a
        )
    return (player_a, player_b) if player_a < player_b else (player_b, player_a)


class DoubleTeamRegistry:
    """
    Resolves player pairs to persistent team ids.

    Usage:
        registry = DoubleTeamRegistry(db)
        team_id = registry.resolve("p1", "p2")
        assert registry.resolve("p2", "p1") == team_id

    Resolved pairs are memoized for the lifetime of the registry, so passing
    ``registry.resolve`` to ReplayEngine costs one query per distinct pair.
    Caller is responsible for commit.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache: dict[tuple[str, str], str] = {}

    def resolve(self, player_a: str, player_b: str) -> str:
        """Return the team id for this pair, creating the team on first use."""
        pair = normalize_pair(player_a, player_b)
        cached = self._cache.get(pair)
        if cached is not None:
            return cached

        team_id = self._find(pair)
        if team_id is None:
            team_id = self._create(pair)

        self._cache[pair] = team_id
        return team_id

    def find(self, player_a: str, player_b: str) -> Optional[str]:
        """Return the team id for this pair without creating it."""
        pair = normalize_pair(player_a, player_b)
        return self._cache.get(pair) or self._find(pair)

    def members(self, team_id: str) -> tuple[str, str]:
        team = self.db.get(DoubleTeam, team_id)
        if team is None:
            raise NotFoundError("Double team not found", team_id=team_id)
        return (team.player_1_id, team.player_2_id)

    def _find(self, pair: tuple[str, str]) -> Optional[str]:
        return self.db.execute(
            select(DoubleTeam.id).where(
                DoubleTeam.player_1_id == pair[0],
                DoubleTeam.player_2_id == pair[1],
            )
        ).scalar_one_or_none()

    def _create(self, pair: tuple[str, str]) -> str:
        team = DoubleTeam(player_1_id=pair[0], player_2_id=pair[1])
        try:
            with self.db.begin_nested():
                self.db.add(team)
                self.db.flush()
        except IntegrityError:
            # Lost the race to a concurrent first use of the same pair
            logger.info("Double team %s+%s created concurrently; re-reading", *pair)
            team_id = self._find(pair)
            if team_id is None:
                raise
            return team_id

        logger.debug("Created double team %s for %s+%s", team.id, *pair)
        return team.id
