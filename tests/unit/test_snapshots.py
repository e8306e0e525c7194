"""Tests for snapshot and audit history storage."""

from datetime import datetime

import pytest

from rallyelo.db.models import MatchSession, SessionMatch
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.history import EloHistoryStore
from rallyelo.elo.replay import MatchRecord, SinglesProjection
from rallyelo.elo.snapshots import SnapshotStore
from rallyelo.elo.state import RatingState
from rallyelo.errors import NotFoundError


@pytest.fixture
def matches(db_session):
    """One session: m1 (1,1) p1-p2, m2 (1,2) p3-p4, m3 (2,1) p1-p3."""
    session = MatchSession(id="s1", created_at=datetime(2026, 1, 1), status="completed")
    db_session.add(session)
    rows = [
        SessionMatch(id="m1", session_id="s1", round_number=1, match_order=1,
                     match_type="singles", player_ids=["p1", "p2"],
                     team1_score=11, team2_score=5, status="completed"),
        SessionMatch(id="m2", session_id="s1", round_number=1, match_order=2,
                     match_type="singles", player_ids=["p3", "p4"],
                     team1_score=11, team2_score=7, status="completed"),
        SessionMatch(id="m3", session_id="s1", round_number=2, match_order=1,
                     match_type="singles", player_ids=["p1", "p3"],
                     team1_score=9, team2_score=11, status="completed"),
    ]
    db_session.add_all(rows)
    db_session.flush()
    return {row.id: MatchRecord.from_row(row) for row in rows}


class TestSnapshotStore:
    def test_put_is_an_upsert(self, db_session, matches):
        store = SnapshotStore(db_session)
        store.put("m1", "p1", RatingKind.SINGLES, RatingState(elo=1520, matches_played=1, wins=1, sets_won=1))
        store.put("m1", "p1", RatingKind.SINGLES, RatingState(elo=1480, matches_played=1, losses=1, sets_lost=1))

        stored = store.for_match("m1")
        assert stored == {("p1", RatingKind.SINGLES): RatingState(1480, 1, 0, 1, 0, 0, 1)}

    def test_get_before_uses_participants_own_history(self, db_session, matches):
        store = SnapshotStore(db_session)
        after_m1 = RatingState(elo=1520, matches_played=1, wins=1, sets_won=1)
        store.put("m1", "p1", RatingKind.SINGLES, after_m1)
        store.put("m2", "p3", RatingKind.SINGLES, RatingState(elo=1520, matches_played=1, wins=1, sets_won=1))

        # m2 is the previous match in session order, but p1 did not play it
        assert store.get_before("p1", "m3") == after_m1
        assert store.get_before("p1", "m1") is None
        assert store.get_before("p2", "m3") is None

    def test_get_before_filters_by_kind(self, db_session, matches):
        store = SnapshotStore(db_session)
        store.put("m1", "p1", RatingKind.DOUBLES_PLAYER, RatingState())
        assert store.get_before("p1", "m3", RatingKind.SINGLES) is None
        assert store.get_before("p1", "m3", RatingKind.DOUBLES_PLAYER) == RatingState()

    def test_get_before_unknown_match(self, db_session, matches):
        with pytest.raises(NotFoundError):
            SnapshotStore(db_session).get_before("p1", "missing")

    def test_add_outcomes_and_delete_from(self, db_session, matches):
        replay = SinglesProjection().apply({}, list(matches.values()))
        store = SnapshotStore(db_session)
        assert store.add_outcomes(replay.outcomes, matches) == 6

        assert store.get_before("p1", "m3").elo == 1520
        assert store.delete_from(["m1", "m2"]) == 4
        assert store.delete_from([]) == 0
        assert store.for_match("m1") == {}
        assert len(store.for_match("m3")) == 2


class TestEloHistoryStore:
    def test_record_and_delete(self, db_session, matches):
        replay = SinglesProjection().apply({}, list(matches.values()))
        history = EloHistoryStore(db_session)
        assert history.record(replay.outcomes, matches) == 6

        rows = history.for_match("m1")
        assert [(r.participant_id, r.elo_before, r.elo_after, r.elo_delta) for r in rows] == [
            ("p1", 1500, 1520, 20),
            ("p2", 1500, 1480, -20),
        ]
        assert history.delete_from(["m1"]) == 2
        assert history.for_match("m1") == []
