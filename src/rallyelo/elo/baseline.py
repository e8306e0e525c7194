"""
Session baselines.

The baseline of a session is the rating book every participant had going
into it: the replay of all completed sessions created strictly earlier. It
is always re-derived from the match log and never read from the
current-rating tables, which may already include the session itself or
later ones.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from rallyelo.elo.matchlog import (
    get_session_or_404,
    matches_of_sessions,
    ordered_sessions,
    session_matches,
)
from rallyelo.elo.replay import BookReplay, ReplayEngine
from rallyelo.elo.state import RatingBook, empty_book
from rallyelo.players.teams import DoubleTeamRegistry

logger = logging.getLogger(__name__)


class SessionBaseline:
    """
    Derives start-of-session ratings by replay.

    Usage:
        baseline = SessionBaseline(db)
        before = baseline.baseline_before(session_id)
        after = baseline.replay_this_session(session_id, before)
    """

    def __init__(self, db: Session, engine: Optional[ReplayEngine] = None):
        self.db = db
        self.engine = engine or ReplayEngine(DoubleTeamRegistry(db).resolve)

    def baseline_before(self, session_id: str) -> RatingBook:
        """Ratings after every completed session created before ``session_id``."""
        session = get_session_or_404(self.db, session_id)
        earlier = ordered_sessions(self.db, before=session)
        replay = self.engine.apply(empty_book(), matches_of_sessions(self.db, earlier))
        logger.debug(
            "Baseline for session %s: %d earlier sessions, %d matches applied",
            session_id, len(earlier), replay.applied,
        )
        return replay.end_book

    def replay_session(self, session_id: str, baseline: Mapping) -> BookReplay:
        """Apply this session's completed matches on top of ``baseline``, keeping outcomes."""
        get_session_or_404(self.db, session_id)
        return self.engine.apply(baseline, session_matches(self.db, session_id))

    def replay_this_session(self, session_id: str, baseline: Mapping) -> RatingBook:
        return self.replay_session(session_id, baseline).end_book
