"""Create the reports and audit_log tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    op.create_table(
        "reports",
        sa.Column("type", sa.String(20)),
        sa.Column("priority", sa.String(10), comment="high/medium/low, NULL = unidentified"),
        sa.Column("text", sa.Text()),
        sa.Column("source_url", sa.Text()),
        sa.Column("og_title", sa.Text()),
        sa.Column("og_description", sa.Text()),
        sa.Column("og_image", sa.Text()),
        sa.Column("og_site", sa.String(255)),
        sa.Column("evidence_image_url", sa.Text()),
        sa.Column("evidence_voice_url", sa.Text()),
        sa.Column("reporter_lat", sa.Float(), nullable=False),
        sa.Column("reporter_lng", sa.Float(), nullable=False),
        sa.Column("location_name", sa.Text()),
        sa.Column("source_platform", sa.String(20), nullable=False),
        sa.Column("reporter_name", sa.String(255)),
        sa.Column("priority_updated_at", sa.DateTime(timezone=True)),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_reports"),
    )
    op.create_index("ix_reports_created_at_desc", "reports", ["created_at"])

    op.create_table(
        "audit_log",
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(100)),
        sa.Column("report_id", postgresql.UUID(as_uuid=True)),
        sa.Column("source_platform", sa.String(20)),
        sa.Column("source_module", sa.String(100)),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
        sa.UniqueConstraint("event_id", name="uq_audit_log_event_id"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_report_id", "audit_log", ["report_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_index("ix_reports_created_at_desc", table_name="reports")
    op.drop_table("reports")
