"""certificates and assignment reminders

Revision ID: c4a7e2b95f18
Revises: 8d2f0c6a91e5
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c4a7e2b95f18"
down_revision: str | Sequence[str] | None = "8d2f0c6a91e5"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TS = sa.DateTime(timezone=True)
_ID = postgresql.UUID(as_uuid=False)


def upgrade() -> None:
    op.create_table(
        "assignment_reminders",
        sa.Column(
            "assignment_id",
            _ID,
            sa.ForeignKey("course_assignments.assignment_id"),
            primary_key=True,
        ),
        sa.Column("student_email", sa.String(length=320), primary_key=True),
        sa.Column("sent_at", _TS, nullable=False),
    )

    op.create_table(
        "certificates",
        sa.Column("certificate_id", _ID, primary_key=True),
        sa.Column("course_id", _ID, sa.ForeignKey("courses.course_id"), nullable=False),
        sa.Column("student_email", sa.String(length=320), nullable=False),
        sa.Column("student_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("course_name", sa.String(length=500), nullable=False),
        sa.Column("final_score", sa.Integer(), nullable=False),
        sa.Column("issued_at", _TS, nullable=False),
        sa.UniqueConstraint(
            "course_id", "student_email", name="uq_certificates_course_student"
        ),
    )
    op.create_index("ix_certificates_student", "certificates", ["student_email"])


def downgrade() -> None:
    op.drop_index("ix_certificates_student", table_name="certificates")
    op.drop_table("certificates")
    op.drop_table("assignment_reminders")
