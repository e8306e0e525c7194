"""
Per-session recalculation lock.

The lock lives on the session row (recalc_status / recalc_token /
recalc_started_at) and is taken with a single conditional UPDATE:

    UPDATE sessions SET recalc_status='running', recalc_token=:token, ...
    WHERE id=:id AND (recalc_status IN ('idle','done','failed') OR recalc_status IS NULL)

Exactly one concurrent caller sees rowcount == 1. Every state change runs
in its own short transaction, separate from the recalculation's work
transaction, so a failed recalculation can still mark the lock failed.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generator, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rallyelo.config import settings
from rallyelo.db.models import MatchSession, utcnow
from rallyelo.elo.constants import (
    RECALC_ACQUIRABLE,
    RECALC_DONE,
    RECALC_FAILED,
    RECALC_IDLE,
    RECALC_RUNNING,
)
from rallyelo.errors import ConflictError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class LockStatus:
    session_id: str
    status: str
    token: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    @property
    def is_running(self) -> bool:
        return self.status == RECALC_RUNNING


class RecalculationLock:
    """
    Compare-and-swap lock over sessions.recalc_status.

    Usage:
        lock = RecalculationLock(session_factory)
        with lock.held(session_id) as token:
            ...  # recalculation work in its own transaction

    A lock left in 'running' longer than ``stale_seconds`` (a crashed
    worker) may be taken over; 0 disables takeover.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        stale_seconds: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.stale_seconds = (
            settings.recalc_lock_stale_seconds if stale_seconds is None else stale_seconds
        )

    def acquire(self, session_id: str) -> str:
        """
        Take the lock for ``session_id`` and return its token.

        Raises:
            NotFoundError: if the session does not exist
            ConflictError: if another recalculation holds the lock
            StorageError: on database failure
        """
        token = uuid.uuid4().hex
        now = utcnow()

        acquirable = or_(
            MatchSession.recalc_status.in_(RECALC_ACQUIRABLE),
            MatchSession.recalc_status.is_(None),
        )
        if self.stale_seconds > 0:
            acquirable = or_(
                acquirable,
                and_(
                    MatchSession.recalc_status == RECALC_RUNNING,
                    MatchSession.recalc_started_at < now - timedelta(seconds=self.stale_seconds),
                ),
            )

        db = self.session_factory()
        try:
            if db.get(MatchSession, session_id) is None:
                raise NotFoundError("Session not found", session_id=session_id)

            result = db.execute(
                update(MatchSession)
                .where(MatchSession.id == session_id, acquirable)
                .values(
                    recalc_status=RECALC_RUNNING,
                    recalc_token=token,
                    recalc_started_at=now,
                    recalc_finished_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConflictError(
                    "Recalculation already in progress", session_id=session_id
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Could not acquire recalculation lock", session_id=session_id) from exc
        finally:
            db.close()

        logger.info("RECALC_LOCK acquired session=%s token=%s", session_id, token)
        return token

    def release(self, session_id: str, token: str, status: str = RECALC_DONE) -> bool:
        """
        Move the lock to ``status`` (done or failed) if ``token`` still owns it.

        Returns False when the lock was taken over in the meantime.
        """
        if status not in (RECALC_DONE, RECALC_FAILED):
            raise ValueError(f"release status must be done or failed, got {status!r}")

        db = self.session_factory()
        try:
            result = db.execute(
                update(MatchSession)
                .where(MatchSession.id == session_id, MatchSession.recalc_token == token)
                .values(
                    recalc_status=status,
                    recalc_token=None,
                    recalc_finished_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Could not release recalculation lock", session_id=session_id) from exc
        finally:
            db.close()

        if result.rowcount != 1:
            logger.warning(
                "RECALC_LOCK token %s no longer owns session %s; not marking %s",
                token, session_id, status,
            )
            return False
        logger.info("RECALC_LOCK released session=%s status=%s", session_id, status)
        return True

    @contextmanager
    def held(self, session_id: str) -> Generator[str, None, None]:
        """Hold the lock for the block; done on success, failed on any exception."""
        token = self.acquire(session_id)
        try:
            yield token
        except BaseException:
            self.release(session_id, token, RECALC_FAILED)
            raise
        self.release(session_id, token, RECALC_DONE)

    def status(self, session_id: str) -> LockStatus:
        db = self.session_factory()
        try:
            session = db.get(MatchSession, session_id)
            if session is None:
                raise NotFoundError("Session not found", session_id=session_id)
            return LockStatus(
                session_id=session_id,
                status=session.recalc_status or RECALC_IDLE,
                token=session.recalc_token,
                started_at=session.recalc_started_at,
                finished_at=session.recalc_finished_at,
            )
        finally:
            db.close()

    def reset(self, session_id: str) -> None:
        """Force the lock back to idle. Operator use only, for a stuck lock."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(MatchSession)
                .where(MatchSession.id == session_id)
                .values(recalc_status=RECALC_IDLE, recalc_token=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Session not found", session_id=session_id)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Could not reset recalculation lock", session_id=session_id) from exc
        finally:
            db.close()
        logger.warning("RECALC_LOCK reset to idle for session %s", session_id)
