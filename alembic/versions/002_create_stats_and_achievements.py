"""Create user_stats, achievement and user_achievement tables; seed the catalog

Revision ID: 002
Revises: 001
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op
from app.services.achievements import ACHIEVEMENT_CATALOG

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_stats",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("total_stories", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("favorite_genre", sa.String(length=32), nullable=True),
        sa.Column("last_story_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    achievement = op.create_table(
        "achievement",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("achievement_type", sa.String(length=32), nullable=False),
        sa.Column("criteria", sa.JSON(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "user_achievement",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "achievement_id", sa.String(length=64), sa.ForeignKey("achievement.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("earned_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )
    op.create_index(op.f("ix_user_achievement_user_id"), "user_achievement", ["user_id"])

    op.bulk_insert(achievement, ACHIEVEMENT_CATALOG)


def downgrade() -> None:
    op.drop_index(op.f("ix_user_achievement_user_id"), table_name="user_achievement")
    op.drop_table("user_achievement")
    op.drop_table("achievement")
    op.drop_table("user_stats")
