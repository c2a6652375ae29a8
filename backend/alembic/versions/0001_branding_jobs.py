"""Branding jobs and job queue tables"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_branding_jobs"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_type = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")

    op.create_table(
        "branding_jobs",
        sa.Column("job_id", sa.Text(), primary_key=True),
        sa.Column("team_url", sa.Text(), nullable=False),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("instance_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("stage_timestamps", json_type, nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("outputs", json_type, nullable=False),
        sa.Column("autofill_attempted", sa.Boolean(), nullable=True),
        sa.Column("autofill_succeeded", sa.Boolean(), nullable=True),
        sa.Column("wizard_warnings", json_type, nullable=True),
    )
    op.create_index("idx_branding_jobs_stage_updated", "branding_jobs", ["stage", "updated_at"])
    op.create_index("idx_branding_jobs_team_url_stage", "branding_jobs", ["team_url", "stage"])
    op.create_index("idx_branding_jobs_created", "branding_jobs", ["created_at"])

    op.create_table(
        "queue_messages",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("queue_name", sa.Text(), nullable=False),
        sa.Column("body", json_type, nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False, server_default=sa.text("'application/json'")),
        sa.Column("delivery_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dead_lettered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_letter_reason", sa.Text(), nullable=True),
    )
    op.create_index(
        "idx_queue_messages_ready",
        "queue_messages",
        ["queue_name", "dead_lettered", "visible_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_queue_messages_ready", table_name="queue_messages")
    op.drop_table("queue_messages")
    op.drop_index("idx_branding_jobs_created", table_name="branding_jobs")
    op.drop_index("idx_branding_jobs_team_url_stage", table_name="branding_jobs")
    op.drop_index("idx_branding_jobs_stage_updated", table_name="branding_jobs")
    op.drop_table("branding_jobs")
