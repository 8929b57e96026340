"""add delayed_jobs table

Revision ID: 3b9d7e21c4a0
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9d7e21c4a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "delayed_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("handler", sa.Text, nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String, nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("job_type", sa.String, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_delayed_jobs_priority_run_at", "delayed_jobs", ["priority", "run_at"]
    )
    op.create_index("ix_delayed_jobs_locked_by", "delayed_jobs", ["locked_by"])
    op.create_index("ix_delayed_jobs_job_type", "delayed_jobs", ["job_type"])


def downgrade() -> None:
    op.drop_index("ix_delayed_jobs_job_type", table_name="delayed_jobs")
    op.drop_index("ix_delayed_jobs_locked_by", table_name="delayed_jobs")
    op.drop_index("ix_delayed_jobs_priority_run_at", table_name="delayed_jobs")
    op.drop_table("delayed_jobs")
