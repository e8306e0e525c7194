"""Create session, match, rating, snapshot and history tables

Revision ID: 3a1f6c2b9d04
Revises:
Create Date: 2026-10-16 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "3a1f6c2b9d04"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _rating_columns() -> list[sa.Column]:
    return [
        sa.Column("elo", sa.Integer(), nullable=False, server_default="1500"),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_lost", sa.Integer(), nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("recalc_status", sa.String(length=20), nullable=True, server_default="idle"),
        sa.Column("recalc_token", sa.String(length=64), nullable=True),
        sa.Column("recalc_started_at", sa.DateTime(), nullable=True),
        sa.Column("recalc_finished_at", sa.DateTime(), nullable=True),
        sa.Column("best_player_id", sa.String(length=64), nullable=True),
        sa.Column("best_player_delta", sa.Integer(), nullable=True),
        sa.Column("worst_player_id", sa.String(length=64), nullable=True),
        sa.Column("worst_player_delta", sa.Integer(), nullable=True),
        sa.CheckConstraint("status IN ('active', 'completed')", name="ck_sessions_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sessions_created_at", "sessions", ["created_at"])

    op.create_table(
        "double_teams",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("player_1_id", sa.String(length=64), nullable=False),
        sa.Column("player_2_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("player_1_id < player_2_id", name="ck_double_teams_normalized"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("player_1_id", "player_2_id", name="uq_double_teams_pair"),
    )

    op.create_table(
        "session_matches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("match_order", sa.Integer(), nullable=False),
        sa.Column("match_type", sa.String(length=10), nullable=False),
        sa.Column("player_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("team1_id", sa.String(length=36), nullable=True),
        sa.Column("team2_id", sa.String(length=36), nullable=True),
        sa.Column("team1_score", sa.Integer(), nullable=True),
        sa.Column("team2_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(), nullable=True),
        sa.Column("edited_by", sa.String(length=120), nullable=True),
        sa.Column("edit_reason", sa.Text(), nullable=True),
        sa.CheckConstraint("match_type IN ('singles', 'doubles')", name="ck_session_matches_type"),
        sa.CheckConstraint("status IN ('pending', 'completed')", name="ck_session_matches_status"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"]),
        sa.ForeignKeyConstraint(["team1_id"], ["double_teams.id"]),
        sa.ForeignKeyConstraint(["team2_id"], ["double_teams.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "session_id", "round_number", "match_order", name="uq_session_matches_position"
        ),
    )
    op.create_index("ix_session_matches_session_id", "session_matches", ["session_id"])

    op.create_table(
        "player_ratings",
        sa.Column("player_id", sa.String(length=64), nullable=False),
        *_rating_columns(),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("player_id"),
    )
    op.create_table(
        "player_double_ratings",
        sa.Column("player_id", sa.String(length=64), nullable=False),
        *_rating_columns(),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("player_id"),
    )
    op.create_table(
        "double_team_ratings",
        sa.Column("team_id", sa.String(length=36), nullable=False),
        *_rating_columns(),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["team_id"], ["double_teams.id"]),
        sa.PrimaryKeyConstraint("team_id"),
    )

    op.create_table(
        "elo_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("match_order", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.String(length=64), nullable=False),
        sa.Column("rating_kind", sa.String(length=20), nullable=False),
        *_rating_columns(),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["match_id"], ["session_matches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "match_id", "participant_id", "rating_kind",
            name="uq_elo_snapshots_match_participant",
        ),
    )
    op.create_index(
        "ix_elo_snapshots_lookup",
        "elo_snapshots",
        ["session_id", "participant_id", "rating_kind", "round_number", "match_order"],
    )

    op.create_table(
        "match_elo_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("participant_id", sa.String(length=64), nullable=False),
        sa.Column("rating_kind", sa.String(length=20), nullable=False),
        sa.Column("elo_before", sa.Integer(), nullable=False),
        sa.Column("elo_after", sa.Integer(), nullable=False),
        sa.Column("elo_delta", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["match_id"], ["session_matches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_match_elo_history_match_id", "match_elo_history", ["match_id"])
    op.create_index("ix_match_elo_history_session_id", "match_elo_history", ["session_id"])
    op.create_index("ix_match_elo_history_participant_id", "match_elo_history", ["participant_id"])


def downgrade() -> None:
    op.drop_table("match_elo_history")
    op.drop_index("ix_elo_snapshots_lookup", table_name="elo_snapshots")
    op.drop_table("elo_snapshots")
    op.drop_table("double_team_ratings")
    op.drop_table("player_double_ratings")
    op.drop_table("player_ratings")
    op.drop_table("session_matches")
    op.drop_table("double_teams")
    op.drop_table("sessions")
