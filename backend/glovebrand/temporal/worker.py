from __future__ import annotations

import asyncio
import concurrent.futures
import logging

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.worker import Worker

from glovebrand.config import settings
from glovebrand.temporal.activities.branding_activities import (
    crawl_site_activity,
    extract_colors_activity,
    generate_design_activity,
    run_wizard_activity,
    select_logo_activity,
    sweep_stale_jobs_activity,
    update_job_stage_activity,
    validate_job_activity,
    write_outputs_activity,
)
from glovebrand.temporal.client import get_temporal_client
from glovebrand.temporal.workflows.branding_job import BrandingJobWorkflow
from glovebrand.temporal.workflows.job_sweeper import SWEEPER_WORKFLOW_ID, JobSweeperWorkflow

logger = logging.getLogger(__name__)


async def ensure_sweeper_schedule(client: Client) -> None:
    if not settings.SWEEPER_ENABLED:
        logger.info("worker.sweeper_disabled")
        return
    try:
        await client.start_workflow(
            JobSweeperWorkflow.run,
            id=SWEEPER_WORKFLOW_ID,
            task_queue=settings.TEMPORAL_TASK_QUEUE,
            cron_schedule=settings.SWEEPER_CRON,
        )
        logger.info("worker.sweeper_started", extra={"cron": settings.SWEEPER_CRON})
    except WorkflowAlreadyStartedError:
        logger.info("worker.sweeper_already_running")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    client = await get_temporal_client()
    await ensure_sweeper_schedule(client)
    with concurrent.futures.ThreadPoolExecutor(max_workers=settings.WORKER_ACTIVITY_THREADS) as activity_executor:
        worker = Worker(
            client,
            task_queue=settings.TEMPORAL_TASK_QUEUE,
            workflows=[
                BrandingJobWorkflow,
                JobSweeperWorkflow,
            ],
            activities=[
                validate_job_activity,
                crawl_site_activity,
                select_logo_activity,
                extract_colors_activity,
                generate_design_activity,
                write_outputs_activity,
                run_wizard_activity,
                update_job_stage_activity,
                sweep_stale_jobs_activity,
            ],
            activity_executor=activity_executor,
        )
        await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
