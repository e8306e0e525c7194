"""
Tests for single-match score correction.

The central property: after a correction, every rating equals what a fresh
replay of the corrected log produces.
"""

from datetime import datetime

import pytest
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from rallyelo.db.models import EloSnapshot, MatchEloHistory, MatchSession, SessionMatch
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.ratings import RatingRepository
from rallyelo.elo.rebuild import check_consistency
from rallyelo.elo.state import RatingState
from rallyelo.errors import ConflictError, NotFoundError, StorageError, ValidationError


def ratings(service, kind=RatingKind.SINGLES):
    return dict(service.current_ratings(kind))


def test_correct_single_match_flips_outcome(service, play):
    session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
    assert ratings(service)["p1"].elo == 1520
    assert ratings(service)["p2"].elo == 1480

    result = service.correct_match(session_id, m1, 5, 11, edited_by="admin", reason="swapped")

    current = ratings(service)
    assert current["p1"] == RatingState(1480, 1, 0, 1, 0, 0, 1)
    assert current["p2"] == RatingState(1520, 1, 1, 0, 0, 1, 0)
    assert result.old_score == (11, 5)
    assert result.new_score == (5, 11)
    assert result.replayed_matches == 1
    assert result.verified


def test_edit_metadata_and_lock_state(service, play, db_session):
    session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
    service.correct_match(session_id, m1, 11, 8, edited_by="admin", reason="typo")
    assert service.recalculation_status(session_id).status == "done"

    match = db_session.get(SessionMatch, m1)
    assert (match.team1_score, match.team2_score) == (11, 8)
    assert match.is_edited is True
    assert match.edited_by == "admin"
    assert match.edit_reason == "typo"
    assert match.edited_at is not None


def test_correction_matches_log_recorded_correctly(service, play, session_factory):
    rounds = [
        [("singles", ["p1", "p2"], 11, 5), ("singles", ["p3", "p4"], 11, 7)],
        [("singles", ["p1", "p3"], 11, 9), ("singles", ["p2", "p4"], 4, 11)],
        [("singles", ["p1", "p4"], 11, 2)],
    ]
    session_id, match_ids = play(rounds)
    service.correct_match(session_id, match_ids[2], 3, 11)

    corrected = ratings(service)

    # Same log with the third match recorded as 3-11 from the start
    db = session_factory()
    try:
        assert check_consistency(db) == []
    finally:
        db.close()
    assert corrected["p1"].losses == 1
    assert corrected["p3"].wins == 2
    assert sum(s.elo for s in corrected.values()) == 4 * 1500


def test_snapshots_and_history_are_rewritten(service, play, db_session):
    session_id, (m1, m2) = play(
        [[("singles", ["p1", "p2"], 11, 5)], [("singles", ["p1", "p2"], 11, 5)]]
    )
    service.correct_match(session_id, m1, 5, 11)
    expected_p2 = ratings(service)["p2"].elo

    snapshot = db_session.execute(
        select(EloSnapshot).where(EloSnapshot.match_id == m2, EloSnapshot.participant_id == "p2")
    ).scalar_one()
    history = db_session.execute(
        select(MatchEloHistory).where(MatchEloHistory.match_id == m1).order_by(MatchEloHistory.id)
    ).scalars().all()

    assert snapshot.elo == expected_p2
    assert [(h.participant_id, h.elo_delta) for h in history] == [("p1", -20), ("p2", 20)]


def test_correction_propagates_into_later_sessions(service, play, session_factory):
    s1, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]], day=0)
    play([[("singles", ["p1", "p3"], 11, 9), ("singles", ["p2", "p3"], 8, 11)]], day=1)

    result = service.correct_match(s1, m1, 2, 11)

    assert result.later_sessions == 1
    assert result.replayed_matches == 3
    db = session_factory()
    try:
        assert check_consistency(db) == []
    finally:
        db.close()


def test_correction_replays_session_created_at_the_same_instant(service, session_factory):
    created_at = datetime(2026, 2, 1, 19, 0)
    first, second = sorted(service.create_session(name, created_at=created_at) for name in "ab")
    match_ids = {}
    for session_id, score in ((first, (11, 5)), (second, (11, 7))):
        match_ids[session_id] = service.add_match(session_id, 1, 1, "singles", ["p1", "p2"])
        service.submit_round(session_id, 1, {match_ids[session_id]: score})
        service.complete_session(session_id)

    result = service.correct_match(first, match_ids[first], 5, 11)

    assert result.later_sessions == 1
    assert ratings(service)["p1"].matches_played == 2
    db = session_factory()
    try:
        assert check_consistency(db) == []
    finally:
        db.close()


def test_correction_updates_stored_best_worst(service, play, db_session):
    session_id, (m1, _) = play(
        [[("singles", ["alice", "bob"], 11, 5), ("singles", ["carol", "dave"], 11, 5)]]
    )
    service.correct_match(session_id, m1, 5, 11)

    session = db_session.get(MatchSession, session_id)
    assert (session.best_player_id, session.best_player_delta) == ("bob", 20)
    assert (session.worst_player_id, session.worst_player_delta) == ("alice", -20)


def test_players_without_earlier_matches_start_from_baseline(service, play):
    session_id, (m1, m2) = play(
        [[("singles", ["p1", "p2"], 11, 5)], [("singles", ["p1", "p3"], 11, 5)]]
    )
    result = service.correct_match(session_id, m2, 5, 11)
    assert result.baseline_sources == {"p1": "snapshot", "p3": "initial_baseline"}


def test_missing_snapshot_falls_back_to_replay_from_baseline(service, play, session_factory):
    session_id, (m1, m2) = play(
        [[("singles", ["p1", "p2"], 11, 5)], [("singles", ["p1", "p2"], 11, 5)]]
    )
    db = session_factory()
    db.execute(delete(EloSnapshot).where(EloSnapshot.match_id == m1, EloSnapshot.participant_id == "p1"))
    db.commit()
    db.close()

    result = service.correct_match(session_id, m2, 5, 11)

    assert result.baseline_sources["p1"] == "initial_baseline_fallback"
    assert result.baseline_sources["p2"] == "snapshot"
    db = session_factory()
    try:
        assert check_consistency(db) == []
    finally:
        db.close()


class TestValidation:
    @pytest.mark.parametrize("score", ["11", 11.0, None, True, -1])
    def test_rejects_bad_scores(self, service, play, score):
        session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
        with pytest.raises(ValidationError) as excinfo:
            service.correct_match(session_id, m1, score, 5)
        assert excinfo.value.status_code == 400
        assert service.recalculation_status(session_id).status == "idle"

    def test_unknown_session_and_match(self, service, play):
        session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
        with pytest.raises(NotFoundError):
            service.correct_match("missing", m1, 5, 11)
        with pytest.raises(NotFoundError) as excinfo:
            service.correct_match(session_id, "missing", 5, 11)
        assert excinfo.value.status_code == 404

    def test_match_from_another_session(self, service, play):
        s1, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]], day=0)
        s2, _ = play([[("singles", ["p1", "p2"], 11, 5)]], day=1)
        with pytest.raises(NotFoundError):
            service.correct_match(s2, m1, 5, 11)

    def test_doubles_cannot_be_corrected(self, service, play):
        session_id, (m1,) = play([[("doubles", ["p1", "p2", "p3", "p4"], 11, 5)]])
        with pytest.raises(ValidationError, match="singles"):
            service.correct_match(session_id, m1, 5, 11)

    def test_pending_match_cannot_be_corrected(self, service):
        session_id = service.create_session()
        m1 = service.add_match(session_id, 1, 1, "singles", ["p1", "p2"])
        with pytest.raises(ValidationError, match="completed"):
            service.correct_match(session_id, m1, 5, 11)


def test_conflict_when_recalculation_running(service, play):
    session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
    service.lock.acquire(session_id)

    with pytest.raises(ConflictError):
        service.correct_match(session_id, m1, 5, 11)
    assert ratings(service)["p1"].elo == 1520


def test_storage_failure_marks_lock_failed(service, play, monkeypatch):
    session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])

    def broken_upsert(self, kind, states):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(RatingRepository, "upsert", broken_upsert)

    with pytest.raises(StorageError) as excinfo:
        service.correct_match(session_id, m1, 5, 11)
    assert excinfo.value.status_code == 500

    monkeypatch.undo()
    assert service.recalculation_status(session_id).status == "failed"
    assert ratings(service)["p1"].elo == 1520

    # The next attempt repairs everything
    service.correct_match(session_id, m1, 5, 11)
    assert ratings(service)["p1"].elo == 1480


def test_post_write_mismatch_is_reported_not_raised(service, play, monkeypatch, caplog):
    session_id, (m1,) = play([[("singles", ["p1", "p2"], 11, 5)]])
    real_load = RatingRepository.load

    def drifting_load(self, kind, participant_ids=None):
        states = real_load(self, kind, participant_ids)
        if "p1" in states:
            states["p1"] = RatingState(elo=1)
        return states

    monkeypatch.setattr(RatingRepository, "load", drifting_load)

    result = service.correct_match(session_id, m1, 5, 11)

    assert result.mismatches == ["p1"]
    assert not result.verified
    assert "RECALC_MISMATCH" in caplog.text
