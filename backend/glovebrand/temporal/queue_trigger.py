"""
Queue trigger: receives job messages and starts one ``BrandingJobWorkflow`` per job.

A message is completed once its workflow is started (or already running), and
abandoned for redelivery when the start fails; the queue dead-letters it after
``JOB_QUEUE_MAX_DELIVERY_COUNT`` receives.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session
from temporalio.exceptions import WorkflowAlreadyStartedError

from glovebrand.config import settings
from glovebrand.db.base import SessionLocal
from glovebrand.db.enums import TERMINAL_STAGES, JobModeEnum, JobStageEnum
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository
from glovebrand.db.repositories.queue_messages import QueueMessagesRepository
from glovebrand.services.branding_jobs import workflow_id_for_job
from glovebrand.temporal.client import get_temporal_client
from glovebrand.temporal.workflows.branding_job import BrandingJobInput, BrandingJobWorkflow

logger = logging.getLogger(__name__)


async def start_job_workflow(client: Any, *, job_id: str, team_url: str, mode: str) -> str:
    workflow_id = workflow_id_for_job(job_id)
    handle = await client.start_workflow(
        BrandingJobWorkflow.run,
        BrandingJobInput(job_id=job_id, team_url=team_url, mode=mode),
        id=workflow_id,
        task_queue=settings.TEMPORAL_TASK_QUEUE,
    )
    return getattr(handle, "id", None) or workflow_id


async def process_messages(
    client: Any,
    session: Session,
    *,
    queue_name: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> dict[str, int]:
    """Handle one batch of visible messages; returns counts per outcome."""
    store = BrandingJobsRepository(session)
    queue = QueueMessagesRepository(
        session,
        queue_name=queue_name or settings.JOB_QUEUE_NAME,
        max_delivery_count=settings.JOB_QUEUE_MAX_DELIVERY_COUNT,
        visibility_timeout_seconds=settings.JOB_QUEUE_VISIBILITY_TIMEOUT_SECONDS,
    )
    counts = {"started": 0, "already_started": 0, "ignored": 0, "abandoned": 0}
    for message in queue.receive(batch_size or settings.JOB_QUEUE_BATCH_SIZE):
        body = message.body or {}
        job_id = body.get("job_id")
        job = store.get(job_id) if job_id else None
        if job is None:
            logger.warning("queue_trigger.unknown_job", extra={"message_id": message.id, "job_id": job_id})
            queue.complete(message.id)
            counts["ignored"] += 1
            continue
        if JobStageEnum(job.stage) in TERMINAL_STAGES:
            logger.info(
                "queue_trigger.terminal_job_ignored",
                extra={"job_id": job_id, "stage": JobStageEnum(job.stage).value},
            )
            queue.complete(message.id)
            counts["ignored"] += 1
            continue

        mode = body.get("mode") or JobModeEnum(job.mode).value
        try:
            workflow_id = await start_job_workflow(
                client, job_id=job_id, team_url=body.get("team_url") or job.team_url, mode=mode
            )
        except WorkflowAlreadyStartedError:
            logger.info("queue_trigger.already_started", extra={"job_id": job_id})
            queue.complete(message.id)
            counts["already_started"] += 1
            continue
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "queue_trigger.start_failed",
                extra={"job_id": job_id, "message_id": message.id, "delivery_count": message.delivery_count, "error": str(exc)},
            )
            queue.abandon(message.id)
            counts["abandoned"] += 1
            continue

        queue.complete(message.id)
        counts["started"] += 1
        logger.info("queue_trigger.started", extra={"job_id": job_id, "workflow_id": workflow_id})
    return counts


async def run_forever(
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    poll_interval: Optional[float] = None,
) -> None:
    client = await get_temporal_client()
    interval = poll_interval if poll_interval is not None else settings.JOB_QUEUE_POLL_INTERVAL_SECONDS
    logger.info("queue_trigger.started_polling", extra={"queue": settings.JOB_QUEUE_NAME})
    while True:
        session = session_factory()
        try:
            counts = await process_messages(client, session)
        finally:
            session.close()
        if not any(counts.values()):
            await asyncio.sleep(interval)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    if not settings.JOB_QUEUE_ENABLED:
        raise SystemExit("JOB_QUEUE_ENABLED is false; nothing to poll.")
    asyncio.run(run_forever())


if __name__ == "__main__":
    main()
