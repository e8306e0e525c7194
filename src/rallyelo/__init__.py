"""
rallyelo - Elo ratings for a round-based table-tennis club

Ratings are derived purely from the ordered log of completed matches and can
always be re-derived from it. A historical singles result can be corrected,
and the most recent completed session can be deleted.

Main components:
- elo: rating arithmetic, replay projections, corrections and rebuilds
- players: doubles team identity
- tasks: per-session recalculation lock
- services: facade for the route layer
- db: SQLAlchemy models and session management
"""

__version__ = "1.0.0"
