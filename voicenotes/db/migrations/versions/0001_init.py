"""conversations ledger

Revision ID: 0001_init
Revises: 
Create Date: 2025-06-02 00:00:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("timestamp", sa.Text(), nullable=False),
        sa.Column("transcript", sa.Text(), nullable=False),
        sa.Column("n8n_response", sa.Text(), nullable=False),
    )
    op.create_index("ix_conversations_timestamp", "conversations", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_conversations_timestamp", table_name="conversations")
    op.drop_table("conversations")
