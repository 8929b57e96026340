"""add worker_heartbeats table

Revision ID: 8c41f0a6d9e2
Revises: 3b9d7e21c4a0
Create Date: 2026-10-18 09:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c41f0a6d9e2"
down_revision: Union[str, Sequence[str], None] = "3b9d7e21c4a0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "worker_heartbeats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("worker_name", sa.String, nullable=False),
        sa.Column("status", sa.String, nullable=False),
        sa.Column("details", sa.Text, nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("worker_name", name="uq_worker_heartbeats_worker_name"),
    )


def downgrade() -> None:
    op.drop_table("worker_heartbeats")
