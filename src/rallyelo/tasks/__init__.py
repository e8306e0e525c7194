"""Coordination helpers shared by the write paths."""

from rallyelo.tasks.locks import LockStatus, RecalculationLock

__all__ = [
    "LockStatus",
    "RecalculationLock",
]
