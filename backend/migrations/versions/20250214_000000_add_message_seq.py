"""Add per-chat message sequence

Revision ID: 0002
Revises: 0001
Create Date: 2025-02-14

Adds messages.seq so turns sharing a timestamp keep their append order.
Existing rows are numbered by (created_at, id) within each chat.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add and backfill messages.seq."""
    with op.batch_alter_table("messages") as batch_op:
        batch_op.add_column(
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0")
        )

    op.execute(
        """
        UPDATE messages SET seq = (
            SELECT COUNT(*) FROM messages AS earlier
            WHERE earlier.chat_id = messages.chat_id
              AND (
                earlier.created_at < messages.created_at
                OR (earlier.created_at = messages.created_at AND earlier.id <= messages.id)
              )
        )
        """
    )

    op.create_index(
        "ix_messages_chat_id_seq", "messages", ["chat_id", "seq"], unique=True
    )


def downgrade() -> None:
    """Drop messages.seq."""
    op.drop_index("ix_messages_chat_id_seq", table_name="messages")
    with op.batch_alter_table("messages") as batch_op:
        batch_op.drop_column("seq")
