"""Tests for start-of-session baselines."""

from datetime import datetime

import pytest

from rallyelo.elo.baseline import SessionBaseline
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.state import RatingState
from rallyelo.errors import NotFoundError


def test_first_session_starts_empty(db_session, play):
    session_id, _ = play([[("singles", ["p1", "p2"], 11, 5)]])

    book = SessionBaseline(db_session).baseline_before(session_id)

    assert all(states == {} for states in book.values())


def test_baseline_is_earlier_sessions_only(db_session, play):
    play([[("singles", ["p1", "p2"], 11, 5)]], day=0)
    s2, _ = play([[("singles", ["p1", "p3"], 11, 9)]], day=1)
    play([[("singles", ["p1", "p2"], 0, 11)]], day=2)

    singles = SessionBaseline(db_session).baseline_before(s2)[RatingKind.SINGLES]

    assert singles == {
        "p1": RatingState(1520, 1, 1, 0, 0, 1, 0),
        "p2": RatingState(1480, 1, 0, 1, 0, 0, 1),
    }


def test_active_sessions_are_not_part_of_a_baseline(db_session, play):
    play([[("singles", ["p1", "p2"], 11, 5)]], day=0, complete=False)
    s2, _ = play([[("singles", ["p1", "p2"], 11, 5)]], day=1)

    book = SessionBaseline(db_session).baseline_before(s2)

    assert book[RatingKind.SINGLES] == {}


def test_replaying_the_latest_session_matches_current_ratings(db_session, service, play):
    play([[("singles", ["p1", "p2"], 11, 5)]], day=0)
    s2, _ = play(
        [[("singles", ["p1", "p3"], 7, 11)], [("doubles", ["p1", "p2", "p3", "p4"], 11, 8)]],
        day=1,
    )

    current = {kind: dict(service.current_ratings(kind)) for kind in RatingKind}
    baseline = SessionBaseline(db_session)
    after = baseline.replay_this_session(s2, baseline.baseline_before(s2))

    for kind in RatingKind:
        assert after[kind] == current[kind]


def test_unknown_session(db_session):
    with pytest.raises(NotFoundError):
        SessionBaseline(db_session).baseline_before("missing")


def test_same_created_at_orders_by_id(db_session, service):
    created_at = datetime(2026, 2, 1, 19, 0)
    first, second = sorted(service.create_session(name, created_at=created_at) for name in "ab")
    m1 = service.add_match(first, 1, 1, "singles", ["p1", "p2"])
    service.submit_round(first, 1, {m1: (11, 5)})
    service.complete_session(first)
    service.complete_session(second)

    baseline = SessionBaseline(db_session)

    assert baseline.baseline_before(second)[RatingKind.SINGLES]["p1"].elo == 1520
    assert baseline.baseline_before(first)[RatingKind.SINGLES] == {}
