"""Clients table holding one row per gateway tenant."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_clients"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), primary_key=True),
        sa.Column("client_id", sa.Text(), nullable=False),
        sa.Column("session_dir", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_unique_constraint("uq_clients_client_id", "clients", ["client_id"])


def downgrade() -> None:
    op.drop_table("clients")
