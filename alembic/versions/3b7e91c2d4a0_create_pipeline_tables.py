"""create pipeline tables

Revision ID: 3b7e91c2d4a0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e91c2d4a0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TS = sa.DateTime(timezone=True)
_ID = postgresql.UUID(as_uuid=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("email", sa.String(length=320), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_member", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
    )
    op.create_table(
        "credit_transactions",
        sa.Column("id", _ID, primary_key=True),
        sa.Column(
            "user_email", sa.String(length=320), sa.ForeignKey("users.email"), nullable=False
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("course_id", _ID, nullable=True),
        sa.Column("created_by", sa.String(length=320), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_email", "created_at"],
    )

    op.create_table(
        "courses",
        sa.Column("course_id", _ID, primary_key=True),
        sa.Column("created_by", sa.String(length=320), nullable=False),
        sa.Column("topic", sa.String(length=500), nullable=False),
        sa.Column("course_type", sa.String(length=64), nullable=False),
        sa.Column("difficulty", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Generating"),
        sa.Column("created_at", _TS, nullable=False),
    )
    op.create_table(
        "course_enrollments",
        sa.Column("course_id", _ID, sa.ForeignKey("courses.course_id"), primary_key=True),
        sa.Column("student_email", sa.String(length=320), primary_key=True),
        sa.Column("enrolled_at", _TS, nullable=False),
    )
    op.create_table(
        "course_assignments",
        sa.Column("assignment_id", _ID, primary_key=True),
        sa.Column("course_id", _ID, sa.ForeignKey("courses.course_id"), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("rubric", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("due_date", _TS, nullable=False),
        sa.Column("created_at", _TS, nullable=False),
    )

    op.create_table(
        "assignment_submissions",
        sa.Column("id", _ID, primary_key=True),
        sa.Column(
            "assignment_id",
            _ID,
            sa.ForeignKey("course_assignments.assignment_id"),
            nullable=False,
        ),
        sa.Column("course_id", _ID, nullable=False),
        sa.Column("student_email", sa.String(length=320), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("submission_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("language", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column(
            "strengths", postgresql.ARRAY(sa.Text()), nullable=False, server_default="{}"
        ),
        sa.Column(
            "improvements", postgresql.ARRAY(sa.Text()), nullable=False, server_default="{}"
        ),
        sa.Column("graded_by", sa.String(length=320), nullable=True),
        sa.Column("graded_at", _TS, nullable=True),
        sa.Column("unlock_reason", sa.Text(), nullable=True),
        sa.Column(
            "review_requested", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("decided_by", sa.String(length=320), nullable=True),
        sa.Column("decided_at", _TS, nullable=True),
        sa.Column("submitted_at", _TS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("assignment_id", "student_email"),
    )
    op.create_index(
        "ix_assignment_submissions_status", "assignment_submissions", ["status"]
    )

    op.create_table(
        "study_type_content",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("course_id", _ID, nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Generating"),
        sa.Column("content", postgresql.JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=320), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
    )

    op.create_table(
        "adaptive_performance",
        sa.Column("course_id", _ID, primary_key=True),
        sa.Column("student_email", sa.String(length=320), primary_key=True),
        sa.Column("topic_id", sa.String(length=128), primary_key=True),
        sa.Column("topic_name", sa.String(length=500), nullable=False),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_difficulty", sa.String(length=16), nullable=False),
        sa.Column("recommended_difficulty", sa.String(length=16), nullable=False),
        sa.Column("mastery_level", sa.String(length=16), nullable=False),
        sa.Column("is_weak_topic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", _TS, nullable=False),
    )

    op.create_table(
        "leaderboard",
        sa.Column("student_email", sa.String(length=320), primary_key=True),
        sa.Column("student_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "total_courses_completed", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("badge", sa.String(length=16), nullable=True),
        sa.Column("achieved_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("leaderboard")
    op.drop_table("adaptive_performance")
    op.drop_table("study_type_content")
    op.drop_index("ix_assignment_submissions_status", table_name="assignment_submissions")
    op.drop_table("assignment_submissions")
    op.drop_table("course_assignments")
    op.drop_table("course_enrollments")
    op.drop_table("courses")
    op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("users")
