"""Create export_jobs table.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create export_jobs table."""
    op.create_table(
        "export_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requester_id", sa.BigInteger(), nullable=False),
        sa.Column("organization_id", sa.BigInteger(), nullable=True),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column(
            "resource_filters",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("filters_fingerprint", sa.String(64), nullable=False),
        sa.Column("format", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("file_path", sa.String(1024), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_records", sa.Integer(), nullable=True),
        sa.Column("processed_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_message", sa.String(500), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claim_token", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "current_percentage >= 0 AND current_percentage <= 100",
            name="ck_export_jobs_percentage",
        ),
    )
    op.create_index("ix_export_jobs_status_created", "export_jobs", ["status", "created_at"])
    op.create_index("ix_export_jobs_requester_status", "export_jobs", ["requester_id", "status"])
    op.create_index("ix_export_jobs_org_status", "export_jobs", ["organization_id", "status"])
    op.create_index(
        "ix_export_jobs_dedup",
        "export_jobs",
        ["requester_id", "resource_type", "filters_fingerprint"],
    )
    op.create_index("ix_export_jobs_expires_at", "export_jobs", ["expires_at"])


def downgrade() -> None:
    """Drop export_jobs table."""
    op.drop_index("ix_export_jobs_expires_at", table_name="export_jobs")
    op.drop_index("ix_export_jobs_dedup", table_name="export_jobs")
    op.drop_index("ix_export_jobs_org_status", table_name="export_jobs")
    op.drop_index("ix_export_jobs_requester_status", table_name="export_jobs")
    op.drop_index("ix_export_jobs_status_created", table_name="export_jobs")
    op.drop_table("export_jobs")
