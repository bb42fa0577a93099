"""Create generation quota and lock tables.

Revision ID: a3f1c2d4e5b6
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "a3f1c2d4e5b6"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "ai_generation_quotas",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("metric_key", sa.String(), nullable=False),
    sa.Column("day_utc", sa.Date(), nullable=False),
    sa.Column("used", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("user_id", "metric_key", "day_utc", name="uq_ai_generation_quotas_user_metric_day"),
  )
  op.create_index(op.f("ix_ai_generation_quotas_user_id"), "ai_generation_quotas", ["user_id"], unique=False)
  op.create_table(
    "ai_generation_locks",
    sa.Column("lock_key", sa.String(), nullable=False),
    sa.Column("owner", sa.String(), nullable=False),
    sa.Column("held_until", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("lock_key"),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("ai_generation_locks")
  op.drop_index(op.f("ix_ai_generation_quotas_user_id"), table_name="ai_generation_quotas")
  op.drop_table("ai_generation_quotas")
