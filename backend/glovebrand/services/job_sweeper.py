from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from glovebrand.db.enums import ENQUEUED_STAGES, IN_PROGRESS_STAGES, JobStageEnum
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository
from glovebrand.db.repositories.queue_messages import QueueMessagesRepository
from glovebrand.services.branding_jobs import QUEUE_NOT_CONFIGURED, queue_message_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweeperConfig:
    retry_minutes: int = 5
    fail_minutes: int = 20
    max_retries: int = 2
    limit: int = 25

    @property
    def clamped_limit(self) -> int:
        return min(max(int(self.limit or 25), 1), 200)


def sweeper_config_from_settings(settings: Any) -> SweeperConfig:
    return SweeperConfig(
        retry_minutes=int(settings.SWEEPER_RETRY_MINUTES),
        fail_minutes=int(settings.SWEEPER_FAIL_MINUTES),
        max_retries=int(settings.SWEEPER_MAX_RETRIES),
        limit=int(settings.SWEEPER_LIMIT),
    )


def sweep_stale_jobs(
    store: BrandingJobsRepository,
    queue: Optional[QueueMessagesRepository],
    config: SweeperConfig,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    One reconciliation pass over the job store.

    Jobs still waiting in ``received``/``queued`` past the retry threshold are re-sent
    (or failed once the retry budget is spent); jobs stuck in a pipeline stage past the
    fail threshold are failed outright.
    """
    now = now or datetime.now(timezone.utc)
    limit = config.clamped_limit
    summary: dict[str, Any] = {"requeued": [], "failed": [], "stalled": []}

    retry_jobs = store.list_stale(
        stages=ENQUEUED_STAGES,
        older_than=now - timedelta(minutes=config.retry_minutes),
        limit=limit,
    )
    for job in retry_jobs:
        next_retry = (job.retry_count or 0) + 1
        if next_retry > config.max_retries:
            store.update_stage(
                job.job_id,
                JobStageEnum.failed,
                error=f"Job exceeded auto-retry limit ({config.max_retries}).",
                retry_count=next_retry,
                last_retry_at=now,
                now=now,
            )
            summary["failed"].append(job.job_id)
            logger.warning("job_sweeper.retry_exceeded", extra={"job_id": job.job_id, "retry_count": next_retry})
            continue
        if queue is None:
            store.update_stage(
                job.job_id,
                JobStageEnum.failed,
                error=QUEUE_NOT_CONFIGURED,
                retry_count=next_retry,
                last_retry_at=now,
                now=now,
            )
            summary["failed"].append(job.job_id)
            logger.warning("job_sweeper.retry_no_queue", extra={"job_id": job.job_id})
            continue
        queue.send(queue_message_body(job), now=now)
        store.update_stage(
            job.job_id,
            JobStageEnum.queued,
            retry_count=next_retry,
            last_retry_at=now,
            now=now,
        )
        summary["requeued"].append(job.job_id)
        logger.info("job_sweeper.requeued", extra={"job_id": job.job_id, "retry_count": next_retry})

    stall_jobs = store.list_stale(
        stages=IN_PROGRESS_STAGES,
        older_than=now - timedelta(minutes=config.fail_minutes),
        limit=limit,
    )
    for job in stall_jobs:
        stage = JobStageEnum(job.stage)
        store.update_stage(
            job.job_id,
            JobStageEnum.failed,
            error=f"Job stalled in stage '{stage.value}' for more than {config.fail_minutes} minutes.",
            now=now,
        )
        summary["stalled"].append(job.job_id)
        logger.warning("job_sweeper.stalled", extra={"job_id": job.job_id, "stage": stage.value})

    logger.info(
        "job_sweeper.completed",
        extra={
            "retry_candidates": len(retry_jobs),
            "stall_candidates": len(stall_jobs),
            "requeued": len(summary["requeued"]),
        },
    )
    return summary


def requeue_dead_letters(
    store: BrandingJobsRepository,
    queue: QueueMessagesRepository,
    limit: int = 1,
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Move dead-lettered messages back onto the active queue and reset their jobs to ``queued``."""
    now = now or datetime.now(timezone.utc)
    limit = min(max(int(limit or 1), 1), 10)
    moved = queue.requeue_dead_letters(limit, now=now)
    job_ids: list[str] = []
    for message in moved:
        job_id = (message.body or {}).get("job_id")
        if not job_id:
            continue
        job = store.get(job_id)
        if job is None:
            continue
        store.update_stage(
            job_id,
            JobStageEnum.queued,
            retry_count=(job.retry_count or 0) + 1,
            last_retry_at=now,
            allow_from_terminal=True,
            now=now,
        )
        job_ids.append(job_id)
    logger.info("job_sweeper.dead_letters_requeued", extra={"count": len(moved)})
    return {"requeued": len(moved), "jobIds": job_ids}
