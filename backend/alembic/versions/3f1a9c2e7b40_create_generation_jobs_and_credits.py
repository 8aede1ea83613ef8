"""create_generation_jobs_and_credits

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-18 10:12:31.204118

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names (SQLAlchemy default for Enum types)
job_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="jobstatus")
generation_mode = sa.Enum("IMAGE", "VIDEO", "FIRST_LAST_FRAME_VIDEO", name="generationmode")


def upgrade() -> None:
    """Create generation_jobs, credit_accounts and credit_usage tables."""
    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("mode", generation_mode, nullable=False),
        sa.Column("credit_cost", sa.Integer(), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("external_run_id", sa.String(length=255), nullable=True),
        sa.Column("result_url", sa.String(), nullable=True),
        sa.Column("storage_key", sa.String(length=1024), nullable=True),
        sa.Column("auxiliary_inputs", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("dispatch_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_owner_id", "generation_jobs", ["owner_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])
    op.create_index("ix_generation_jobs_created_at", "generation_jobs", ["created_at"])

    op.create_table(
        "credit_accounts",
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("subscription_balance", sa.Integer(), nullable=False),
        sa.Column("purchased_balance", sa.Integer(), nullable=False),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("owner_id"),
        sa.CheckConstraint("subscription_balance >= 0", name="ck_credit_accounts_subscription"),
        sa.CheckConstraint("purchased_balance >= 0", name="ck_credit_accounts_purchased"),
    )

    op.create_table(
        "credit_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_usage_owner_id", "credit_usage", ["owner_id"])


def downgrade() -> None:
    """Drop the pipeline tables."""
    op.drop_index("ix_credit_usage_owner_id", table_name="credit_usage")
    op.drop_table("credit_usage")
    op.drop_table("credit_accounts")
    op.drop_index("ix_generation_jobs_created_at", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_status", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_owner_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")
    job_status.drop(op.get_bind(), checkfirst=True)
    generation_mode.drop(op.get_bind(), checkfirst=True)
