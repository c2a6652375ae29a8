from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from glovebrand.db.enums import TERMINAL_STAGES, JobModeEnum, JobStageEnum, status_for_stage
from glovebrand.db.models import BrandingJob
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository, ensure_utc
from glovebrand.db.repositories.queue_messages import QueueMessagesRepository
from glovebrand.errors import InfrastructureError
from glovebrand.services.url_safety import validate_url

logger = logging.getLogger(__name__)

CANCEL_ERROR = "Job canceled by user."
QUEUE_NOT_CONFIGURED = "Job queue not configured. Job cannot be retried automatically."
DEFAULT_CACHE_TTL_MINUTES = 60

WorkflowTerminator = Callable[[str], Awaitable[None]]
WorkflowStarter = Callable[[BrandingJob], Awaitable[str]]


def workflow_id_for_job(job_id: str) -> str:
    return f"branding-job-{job_id}"


def queue_message_body(job: BrandingJob) -> dict[str, Any]:
    mode = job.mode.value if isinstance(job.mode, JobModeEnum) else str(job.mode)
    return {"job_id": job.job_id, "team_url": job.team_url, "mode": mode}


@dataclass(frozen=True)
class SubmitResult:
    job_id: str
    cached: bool = False


class JobNotFoundError(LookupError):
    pass


def serialize_job(job: BrandingJob) -> dict[str, Any]:
    stage = JobStageEnum(job.stage)
    return {
        "jobId": job.job_id,
        "teamUrl": job.team_url,
        "mode": JobModeEnum(job.mode),
        "stage": stage,
        "status": status_for_stage(stage),
        "createdAt": ensure_utc(job.created_at),
        "updatedAt": ensure_utc(job.updated_at),
        "stageTimestamps": dict(job.stage_timestamps or {}),
        "retryCount": job.retry_count or 0,
        "lastRetryAt": ensure_utc(job.last_retry_at),
        "outputs": dict(job.outputs or {}),
        "error": job.error,
        "errorDetails": job.error_details,
        "instanceId": job.instance_id,
        "autofillAttempted": job.autofill_attempted,
        "autofillSucceeded": job.autofill_succeeded,
        "wizardWarnings": job.wizard_warnings,
    }


class BrandingJobService:
    """Submission, status, cancel and retry for branding jobs, plus the debug operations."""

    def __init__(
        self,
        store: BrandingJobsRepository,
        queue: Optional[QueueMessagesRepository],
        settings: Any = None,
    ) -> None:
        self.store = store
        self.queue = queue
        ttl = getattr(settings, "JOB_CACHE_TTL_MINUTES", DEFAULT_CACHE_TTL_MINUTES)
        self.cache_ttl_minutes = max(0, int(ttl))

    def _require_queue(self) -> QueueMessagesRepository:
        if self.queue is None:
            raise InfrastructureError("queue", QUEUE_NOT_CONFIGURED)
        return self.queue

    def _require_job(self, job_id: str) -> BrandingJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def submit(self, team_url: str, mode: JobModeEnum = JobModeEnum.proposal, *, now: Optional[datetime] = None) -> SubmitResult:
        normalized = validate_url(team_url, resolve_dns=False)
        now = now or datetime.now(timezone.utc)
        if self.cache_ttl_minutes > 0:
            cached = self.store.get_latest_completed_by_team_url(
                normalized, newer_than=now - timedelta(minutes=self.cache_ttl_minutes)
            )
            if cached is not None:
                logger.info(
                    "branding_jobs.cache_hit",
                    extra={"job_id": cached.job_id, "url": normalized},
                )
                return SubmitResult(job_id=cached.job_id, cached=True)

        queue = self._require_queue()
        job = self.store.create(team_url=normalized, mode=JobModeEnum(mode), now=now)
        queue.send(queue_message_body(job), now=now)
        self.store.update_stage(job.job_id, JobStageEnum.queued, now=now)
        logger.info(
            "branding_jobs.submitted",
            extra={"job_id": job.job_id, "url": normalized, "mode": JobModeEnum(mode).value},
        )
        return SubmitResult(job_id=job.job_id, cached=False)

    def get_status(self, job_id: str) -> dict[str, Any]:
        return serialize_job(self._require_job(job_id))

    async def cancel(self, job_id: str, terminate: Optional[WorkflowTerminator] = None) -> dict[str, Any]:
        job = self._require_job(job_id)
        terminated = False
        if terminate is not None and JobStageEnum(job.stage) not in TERMINAL_STAGES:
            try:
                await terminate(job.instance_id or workflow_id_for_job(job_id))
                terminated = True
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "branding_jobs.terminate_failed",
                    extra={"job_id": job_id, "error": str(exc)},
                )
        result = self.store.update_stage(job_id, JobStageEnum.canceled, error=CANCEL_ERROR)
        logger.info(
            "branding_jobs.canceled",
            extra={"job_id": job_id, "applied": result.applied, "terminated": terminated},
        )
        return {"jobId": job_id, "canceled": result.applied, "terminated": terminated}

    def retry(self, job_id: str, *, now: Optional[datetime] = None) -> dict[str, Any]:
        """Put a terminal or stuck job back on the queue."""
        queue = self._require_queue()
        job = self._require_job(job_id)
        now = now or datetime.now(timezone.utc)
        retry_count = (job.retry_count or 0) + 1
        result = self.store.update_stage(
            job_id,
            JobStageEnum.queued,
            retry_count=retry_count,
            last_retry_at=now,
            allow_from_terminal=True,
            now=now,
        )
        queue.send(queue_message_body(job), now=now)
        logger.info("branding_jobs.retried", extra={"job_id": job_id, "retry_count": retry_count})
        return {"jobId": job_id, "stage": JobStageEnum(result.job.stage), "retryCount": retry_count}

    # --- debug ---

    def queue_depth(self) -> dict[str, Any]:
        queue = self._require_queue()
        return {"queue": queue.queue_name, **queue.depth()}

    def peek_dead_letters(self, limit: int = 5) -> list[dict[str, Any]]:
        queue = self._require_queue()
        limit = max(1, min(int(limit), 20))
        return [
            {
                "messageId": message.id,
                "body": message.body,
                "deliveryCount": message.delivery_count,
                "enqueuedAt": ensure_utc(message.enqueued_at),
                "deadLetteredAt": ensure_utc(message.dead_lettered_at),
                "reason": message.dead_letter_reason,
            }
            for message in queue.peek_dead_letters(limit)
        ]

    def requeue_dead_letters(self, limit: int = 1) -> dict[str, Any]:
        from glovebrand.services.job_sweeper import requeue_dead_letters

        return requeue_dead_letters(self.store, self._require_queue(), limit)

    def list_jobs(self, *, limit: int = 50, stale_minutes: Optional[int] = None, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        if stale_minutes is None:
            jobs = self.store.list_recent(limit)
        else:
            now = now or datetime.now(timezone.utc)
            non_terminal = [stage for stage in JobStageEnum if stage not in TERMINAL_STAGES]
            jobs = self.store.list_stale(
                stages=non_terminal,
                older_than=now - timedelta(minutes=max(0, int(stale_minutes))),
                limit=limit,
            )
        return [serialize_job(job) for job in jobs]

    async def start_direct(self, job_id: str, start: WorkflowStarter) -> dict[str, Any]:
        """Start the workflow for a job without going through the queue."""
        job = self._require_job(job_id)
        if JobStageEnum(job.stage) != JobStageEnum.received:
            job = self.store.update_stage(job_id, JobStageEnum.queued, allow_from_terminal=True).job or job
        workflow_id = await start(job)
        logger.info("branding_jobs.direct_start", extra={"job_id": job_id, "workflow_id": workflow_id})
        return {"jobId": job_id, "workflowId": workflow_id}
