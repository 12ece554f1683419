"""Ledger content digest for repeated-comment detection.

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("ledger_entries", sa.Column("content_digest", sa.String(length=64), nullable=True))
    op.create_index(
        "ix_ledger_entries_account_digest",
        "ledger_entries",
        ["account_id", "content_digest"],
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_entries_account_digest", table_name="ledger_entries")
    op.drop_column("ledger_entries", "content_digest")
