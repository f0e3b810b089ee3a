"""Create rankings engine tables

Adds current rankings, per-round history snapshots, calculation records,
the active-calculation lock, pipeline checkpoints and admin users.

Revision ID: 7b2e5d8c3f41
Revises: 4a1f0c2d9e10
Create Date: 2026-10-01 09:30:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "7b2e5d8c3f41"
down_revision: Union[str, None] = "4a1f0c2d9e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "player_rankings",
        sa.Column("player_id", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("total_games_counted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_round_key", sa.String(length=100), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("calculation_id", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("player_id"),
    )
    op.create_index("idx_player_rankings_rank", "player_rankings", ["rank"], unique=False)

    op.create_table(
        "ranking_history",
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("season_id", sa.String(length=64), nullable=False),
        sa.Column("round_start_time", sa.DateTime(), nullable=False),
        sa.Column("round_meta", JSONType, nullable=False),
        sa.Column("rankings", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )
    op.create_index("idx_ranking_history_round_start", "ranking_history", ["round_start_time"], unique=False)

    op.create_table(
        "rankings_calculations",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("triggered_by", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("progress", JSONType, nullable=False),
        sa.Column("error", JSONType, nullable=True),
        sa.Column("parameters", JSONType, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_rankings_calculations_status_started",
        "rankings_calculations",
        ["status", "started_at"],
        unique=False,
    )

    op.create_table(
        "calculation_locks",
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("holder", sa.String(length=64), nullable=True),
        sa.Column("acquired_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "pipeline_checkpoints",
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("value_json", JSONType, nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "admin_users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )


def downgrade() -> None:
    op.drop_table("admin_users")
    op.drop_table("pipeline_checkpoints")
    op.drop_table("calculation_locks")
    op.drop_index("idx_rankings_calculations_status_started", table_name="rankings_calculations")
    op.drop_table("rankings_calculations")
    op.drop_index("idx_ranking_history_round_start", table_name="ranking_history")
    op.drop_table("ranking_history")
    op.drop_index("idx_player_rankings_rank", table_name="player_rankings")
    op.drop_table("player_rankings")
