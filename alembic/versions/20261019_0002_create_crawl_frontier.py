"""Create persistent crawl frontier.

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)
    if inspector.has_table("crawl_frontier"):
        return

    op.create_table(
        "crawl_frontier",
        sa.Column("url", sa.Text(), primary_key=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed')",
            name="ck_crawl_frontier_status",
        ),
    )
    op.create_index("ix_crawl_frontier_status", "crawl_frontier", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crawl_frontier_status", table_name="crawl_frontier")
    op.drop_table("crawl_frontier")
