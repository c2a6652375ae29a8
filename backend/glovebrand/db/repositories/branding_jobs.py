from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from glovebrand.db.enums import STAGE_TRANSITIONS, TERMINAL_STAGES, JobModeEnum, JobStageEnum
from glovebrand.db.models import BrandingJob
from glovebrand.db.repositories.base import Repository
from glovebrand.errors import InvalidStageTransitionError

MAX_LIST_LIMIT = 200
UPSERT_COLUMNS = (
    "team_url",
    "mode",
    "stage",
    "instance_id",
    "retry_count",
    "last_retry_at",
    "error",
    "error_details",
    "autofill_attempted",
    "autofill_succeeded",
    "wizard_warnings",
)


@dataclass(frozen=True)
class StageUpdateResult:
    applied: bool
    job: Optional[BrandingJob]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_legal_transition(current: JobStageEnum, target: JobStageEnum, *, allow_from_terminal: bool = False) -> bool:
    if current == target:
        return True
    if allow_from_terminal and target == JobStageEnum.queued:
        return True
    if current in TERMINAL_STAGES:
        return False
    if target in (JobStageEnum.failed, JobStageEnum.canceled):
        return True
    return target in STAGE_TRANSITIONS[current]


class BrandingJobsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, job_id: str) -> Optional[BrandingJob]:
        stmt = select(BrandingJob).where(BrandingJob.job_id == job_id)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        team_url: str,
        mode: JobModeEnum,
        job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BrandingJob:
        now = now or _utcnow()
        job = BrandingJob(
            team_url=team_url,
            mode=mode,
            stage=JobStageEnum.received,
            created_at=now,
            updated_at=now,
            stage_timestamps={JobStageEnum.received.value: now.isoformat()},
            retry_count=0,
            outputs={},
        )
        if job_id:
            job.job_id = job_id
        return self.save(job)

    def upsert(self, job: BrandingJob) -> BrandingJob:
        """
        Insert ``job`` or merge it onto the stored row with the same ``job_id``.

        ``outputs`` and ``stage_timestamps`` are merged key by key, so a partial
        record never drops keys already written.
        """
        existing = self.get(job.job_id) if job.job_id else None
        if existing is None or existing is job:
            return self.save(job)

        for column in UPSERT_COLUMNS:
            value = getattr(job, column)
            if value is not None:
                setattr(existing, column, value)
        existing.outputs = {**(existing.outputs or {}), **(job.outputs or {})}
        existing.stage_timestamps = {**(existing.stage_timestamps or {}), **(job.stage_timestamps or {})}
        existing.updated_at = job.updated_at or _utcnow()
        return self.save(existing)

    def update_stage(
        self,
        job_id: str,
        stage: JobStageEnum,
        *,
        outputs: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        error_details: Optional[str] = None,
        retry_count: Optional[int] = None,
        last_retry_at: Optional[datetime] = None,
        instance_id: Optional[str] = None,
        autofill_attempted: Optional[bool] = None,
        autofill_succeeded: Optional[bool] = None,
        wizard_warnings: Optional[list[str]] = None,
        allow_from_terminal: bool = False,
        now: Optional[datetime] = None,
    ) -> StageUpdateResult:
        """
        Move a job to ``stage`` and merge the supplied fields.

        The write is conditioned on the stage observed when the row was read, so a
        concurrent cancel can never be overwritten by a pipeline checkpoint. Writes
        against a terminal job are skipped (``applied=False``) unless
        ``allow_from_terminal`` is set.
        """
        stage = JobStageEnum(stage)
        job = self.get(job_id)
        if job is None:
            return StageUpdateResult(applied=False, job=None)

        current = JobStageEnum(job.stage)
        if current in TERMINAL_STAGES and not allow_from_terminal:
            return StageUpdateResult(applied=False, job=job)
        if not is_legal_transition(current, stage, allow_from_terminal=allow_from_terminal):
            raise InvalidStageTransitionError(
                f"Illegal stage transition for job {job_id}: {current.value} -> {stage.value}"
            )
        now = now or _utcnow()
        timestamps = dict(job.stage_timestamps or {})
        timestamps[stage.value] = now.isoformat()
        values: dict[str, Any] = {
            "stage": stage,
            "updated_at": now,
            "stage_timestamps": timestamps,
        }
        if outputs:
            merged_outputs = dict(job.outputs or {})
            merged_outputs.update(outputs)
            values["outputs"] = merged_outputs
        if error is not None:
            values["error"] = error[:5000]
        if error_details is not None:
            values["error_details"] = error_details[:20000]
        if retry_count is not None:
            values["retry_count"] = retry_count
        if last_retry_at is not None:
            values["last_retry_at"] = last_retry_at
        if instance_id is not None:
            values["instance_id"] = instance_id
        if autofill_attempted is not None:
            values["autofill_attempted"] = autofill_attempted
        if autofill_succeeded is not None:
            values["autofill_succeeded"] = autofill_succeeded
        if wizard_warnings is not None:
            values["wizard_warnings"] = list(wizard_warnings)

        stmt = (
            update(BrandingJob)
            .where(BrandingJob.job_id == job_id, BrandingJob.stage == current)
            .values(**values)
            .returning(BrandingJob)
        )
        updated = self.session.execute(stmt).scalar_one_or_none()
        if updated is None:
            # Lost a race with another writer; report what is there now.
            self.session.rollback()
            self.session.expire_all()
            return StageUpdateResult(applied=False, job=self.get(job_id))
        self.session.commit()
        self.session.refresh(updated)
        return StageUpdateResult(applied=True, job=updated)

    def list_recent(self, limit: int = 50) -> list[BrandingJob]:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        stmt = select(BrandingJob).order_by(BrandingJob.created_at.desc()).limit(limit)
        return list(self.session.scalars(stmt).all())

    def list_stale(
        self,
        *,
        stages: Iterable[JobStageEnum],
        older_than: datetime,
        limit: int = 25,
    ) -> Sequence[BrandingJob]:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        stmt = (
            select(BrandingJob)
            .where(
                BrandingJob.stage.in_(list(stages)),
                BrandingJob.updated_at < older_than,
            )
            .order_by(BrandingJob.updated_at.asc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def get_latest_completed_by_team_url(self, team_url: str, *, newer_than: datetime) -> Optional[BrandingJob]:
        stmt = (
            select(BrandingJob)
            .where(
                BrandingJob.team_url == team_url,
                BrandingJob.stage == JobStageEnum.completed,
                BrandingJob.updated_at > newer_than,
            )
            .order_by(BrandingJob.updated_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()
