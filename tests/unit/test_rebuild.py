"""Tests for latest-session deletion and full rebuild."""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from rallyelo.db.models import EloSnapshot, MatchEloHistory, MatchSession, PlayerRating, SessionMatch
from rallyelo.elo.constants import RatingKind
from rallyelo.elo.rebuild import check_consistency, rebuild_all
from rallyelo.errors import NotFoundError, RatingIntegrityError, ValidationError


def all_ratings(service):
    return {kind: service.current_ratings(kind) for kind in RatingKind}


def count(db, model, **filters):
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return db.execute(stmt).scalar_one()


SESSION_1 = [
    [("singles", ["p1", "p2"], 11, 5), ("doubles", ["p1", "p2", "p3", "p4"], 11, 9)],
    [("singles", ["p3", "p4"], 6, 11)],
]
SESSION_2 = [
    [("singles", ["p1", "p3"], 11, 8), ("doubles", ["p1", "p3", "p2", "p4"], 7, 11)],
    [("singles", ["p2", "p4"], 11, 11)],
]
SESSION_3 = [
    [("singles", ["p1", "p4"], 2, 11), ("doubles", ["p2", "p1", "p4", "p3"], 11, 3)],
]


class TestDeleteSession:
    def test_only_latest_completed_session_can_be_deleted(self, service, play):
        play(SESSION_1, day=0)
        s2, _ = play(SESSION_2, day=1)
        s3, _ = play(SESSION_3, day=2)

        with pytest.raises(ValidationError) as excinfo:
            service.delete_session(s2)
        assert excinfo.value.details["latest_completed_session_id"] == s3

    def test_delete_latest_restores_previous_ratings(self, service, play):
        play(SESSION_1, day=0)
        play(SESSION_2, day=1)
        before_s3 = all_ratings(service)

        s3, _ = play(SESSION_3, day=2)
        assert all_ratings(service) != before_s3

        result = service.delete_session(s3)

        assert all_ratings(service) == before_s3
        assert result.deleted_session_id == s3
        assert result.deleted_matches == 2
        assert result.sessions_replayed == 2

    def test_deleted_rows_are_gone(self, service, play, db_session):
        play(SESSION_1, day=0)
        s2, match_ids = play(SESSION_2, day=1)
        service.delete_session(s2)

        assert db_session.get(MatchSession, s2) is None
        assert count(db_session, SessionMatch, session_id=s2) == 0
        assert count(db_session, EloSnapshot, session_id=s2) == 0
        assert count(db_session, MatchEloHistory, session_id=s2) == 0
        # Snapshots for the remaining session were rewritten
        assert count(db_session, EloSnapshot) == 2 + 6 + 2

    def test_latest_is_decided_by_created_at(self, service, play):
        """The session dated latest is the latest one, whatever order rows were written in."""
        late = service.create_session("late", created_at=datetime(2026, 1, 10))
        early, _ = play(SESSION_1, day=1)
        service.complete_session(late)

        with pytest.raises(ValidationError):
            service.delete_session(early)
        service.delete_session(late)
        assert service.is_deletable(early).deletable is True

    def test_active_session_cannot_be_deleted(self, service, play):
        session_id, _ = play(SESSION_1, complete=False)
        with pytest.raises(ValidationError, match="completed"):
            service.delete_session(session_id)

    def test_unknown_session(self, service):
        with pytest.raises(NotFoundError):
            service.delete_session("missing")

    def test_deleting_only_session_clears_ratings(self, service, play, db_session):
        session_id, _ = play(SESSION_1)
        service.delete_session(session_id)
        assert service.current_ratings() == []
        assert count(db_session, PlayerRating) == 0

    def test_is_deletable(self, service, play):
        s1, _ = play(SESSION_1, day=0)
        s2, _ = play(SESSION_2, day=1)
        active = service.create_session("tonight", created_at=datetime(2026, 1, 3, 19, 0))
        service.add_match(active, 1, 1, "singles", ["p1", "p2"])

        assert service.is_deletable(s2).deletable is True
        not_latest = service.is_deletable(s1)
        assert not_latest.deletable is False
        assert not_latest.is_latest_completed is False
        assert not_latest.latest_completed_session_id == s2
        assert service.is_deletable(active).reason == "Only completed sessions can be deleted"

    def test_active_session_with_results_blocks_deletion(self, service, play):
        play(SESSION_1, day=0)
        s2, _ = play(SESSION_2, day=1)
        active, _ = play(SESSION_3, day=2, complete=False)
        before = all_ratings(service)

        verdict = service.is_deletable(s2)
        assert verdict.deletable is False
        assert verdict.is_latest_completed is True
        with pytest.raises(ValidationError) as excinfo:
            service.delete_session(s2)
        assert excinfo.value.details["active_session_ids"] == [active]
        assert all_ratings(service) == before

    def test_rebuild_replays_completed_sessions_only(self, service, play):
        play(SESSION_1, day=0)
        play(SESSION_2, day=1)
        before_s3 = all_ratings(service)
        s3, _ = play(SESSION_3, day=2)
        # Pending matches of an active session are not results
        tonight = service.create_session("tonight", created_at=datetime(2026, 1, 4, 19, 0))
        service.add_match(tonight, 1, 1, "singles", ["p1", "p4"])

        result = service.delete_session(s3)

        assert result.sessions_replayed == 2
        assert all_ratings(service) == before_s3

    def test_edit_then_delete_equals_corrected_log(self, service, play, session_factory):
        s1, match_ids = play(SESSION_1, day=0)
        s2, _ = play(SESSION_2, day=1)
        service.correct_match(s1, match_ids[0], 2, 11)
        service.delete_session(s2)

        db = session_factory()
        try:
            assert check_consistency(db) == []
        finally:
            db.close()
        singles = dict(service.current_ratings())
        assert singles["p2"].wins == 1


class TestRebuildAll:
    def test_rebuild_is_idempotent(self, service, play, session_factory):
        play(SESSION_1, day=0)
        play(SESSION_2, day=1)
        before = all_ratings(service)

        db = session_factory()
        result = rebuild_all(db)
        db.commit()
        db.close()

        assert all_ratings(service) == before
        assert result.matches_applied == 6
        assert result.participants[RatingKind.DOUBLES_TEAM] == 4

    def test_check_consistency_detects_drift(self, service, play, session_factory):
        play(SESSION_1)
        db = session_factory()
        try:
            db.get(PlayerRating, "p1").elo = 9999
            db.flush()
            assert check_consistency(db) == ["singles:p1"]
            with pytest.raises(RatingIntegrityError):
                check_consistency(db, raise_on_mismatch=True)
        finally:
            db.rollback()
            db.close()
