"""Add calculation_meta to ranking history

Stores per-round aggregates (average rating, active players, games
processed) next to each history snapshot.

Revision ID: 9c4d1e7a2b58
Revises: 7b2e5d8c3f41
Create Date: 2026-10-15 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "9c4d1e7a2b58"
down_revision: Union[str, None] = "7b2e5d8c3f41"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.add_column("ranking_history", sa.Column("calculation_meta", JSONType, nullable=True))


def downgrade() -> None:
    op.drop_column("ranking_history", "calculation_meta")
