from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Enum, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from glovebrand.db.base import Base
from glovebrand.db.enums import JobModeEnum, JobStageEnum

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid4())


class BrandingJob(Base):
    __tablename__ = "branding_jobs"
    __table_args__ = (
        sa.Index("idx_branding_jobs_stage_updated", "stage", "updated_at"),
        sa.Index("idx_branding_jobs_team_url_stage", "team_url", "stage"),
        sa.Index("idx_branding_jobs_created", "created_at"),
    )

    job_id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    team_url: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[JobModeEnum] = mapped_column(
        Enum(JobModeEnum, name="branding_job_mode", native_enum=False), nullable=False
    )
    stage: Mapped[JobStageEnum] = mapped_column(
        Enum(JobStageEnum, name="branding_job_stage", native_enum=False),
        nullable=False,
        default=JobStageEnum.received,
    )
    instance_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    stage_timestamps: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    outputs: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    autofill_attempted: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    autofill_succeeded: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    wizard_warnings: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)


class QueueMessage(Base):
    __tablename__ = "queue_messages"
    __table_args__ = (
        sa.Index("idx_queue_messages_ready", "queue_name", "dead_lettered", "visible_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    queue_name: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    content_type: Mapped[str] = mapped_column(Text, nullable=False, default="application/json")
    delivery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    visible_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dead_lettered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dead_lettered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dead_letter_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
