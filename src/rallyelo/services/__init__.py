"""Service layer consumed by the (external) route layer."""

from rallyelo.services.sessions import RoundResult, SessionService

__all__ = [
    "RoundResult",
    "SessionService",
]
