"""version ledger rows

Revision ID: 8d2f0c6a91e5
Revises: 3b7e91c2d4a0
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d2f0c6a91e5"
down_revision: str | Sequence[str] | None = "3b7e91c2d4a0"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "users",
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column("credit_transactions", sa.Column("seq", sa.Integer(), nullable=True))

    # Existing history is numbered in write order; each user's version is
    # then the seq of their newest entry.
    op.execute(
        """
        UPDATE credit_transactions AS t
        SET seq = numbered.n
        FROM (
            SELECT id, row_number() OVER (
                PARTITION BY user_email ORDER BY created_at, id
            ) AS n
            FROM credit_transactions
        ) AS numbered
        WHERE t.id = numbered.id
        """
    )
    op.execute(
        """
        UPDATE users AS u
        SET version = counts.n
        FROM (
            SELECT user_email, count(*) AS n
            FROM credit_transactions
            GROUP BY user_email
        ) AS counts
        WHERE u.email = counts.user_email
        """
    )

    op.alter_column("credit_transactions", "seq", nullable=False)
    op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
    op.create_unique_constraint(
        "uq_credit_transactions_user_seq", "credit_transactions", ["user_email", "seq"]
    )


def downgrade() -> None:
    op.drop_constraint(
        "uq_credit_transactions_user_seq", "credit_transactions", type_="unique"
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_email", "created_at"],
    )
    op.drop_column("credit_transactions", "seq")
    op.drop_column("users", "version")
