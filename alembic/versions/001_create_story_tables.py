"""Create story and story_feedback tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "story",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("genre", sa.String(length=32), nullable=False),
        sa.Column("feedback_personality", sa.String(length=32), nullable=False, server_default="encouraging"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("media_ref", sa.String(length=512), nullable=False),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_story_user_id"), "story", ["user_id"])
    op.create_index(op.f("ix_story_status"), "story", ["status"])
    op.create_index(op.f("ix_story_created_at"), "story", ["created_at"])

    op.create_table(
        "story_feedback",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("story_id", sa.Integer(), sa.ForeignKey("story.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feedback_text", sa.Text(), nullable=False),
        sa.Column("strengths", sa.JSON(), nullable=False),
        sa.Column("improvements", sa.JSON(), nullable=False),
        sa.Column("next_steps", sa.JSON(), nullable=False),
        sa.Column("overall_score", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("overall_score >= 1 AND overall_score <= 10", name="ck_feedback_score_range"),
    )
    op.create_index(op.f("ix_story_feedback_story_id"), "story_feedback", ["story_id"], unique=True)


def downgrade() -> None:
    op.drop_index(op.f("ix_story_feedback_story_id"), table_name="story_feedback")
    op.drop_table("story_feedback")
    op.drop_index(op.f("ix_story_created_at"), table_name="story")
    op.drop_index(op.f("ix_story_status"), table_name="story")
    op.drop_index(op.f("ix_story_user_id"), table_name="story")
    op.drop_table("story")
