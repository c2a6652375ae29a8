from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from glovebrand.temporal.activities.branding_activities import sweep_stale_jobs_activity

SWEEPER_WORKFLOW_ID = "glovebrand-job-sweeper"


@workflow.defn
class JobSweeperWorkflow:
    """Runs one sweep per cron tick."""

    @workflow.run
    async def run(self) -> Dict[str, Any]:
        summary = await workflow.execute_activity(
            sweep_stale_jobs_activity,
            {},
            start_to_close_timeout=timedelta(minutes=2),
            schedule_to_close_timeout=timedelta(minutes=4),
            retry_policy=RetryPolicy(maximum_attempts=2),
        )
        workflow.logger.info(
            "job_sweeper.tick",
            extra={
                "workflow_id": workflow.info().workflow_id,
                "requeued": len(summary.get("requeued") or []),
                "failed": len(summary.get("failed") or []),
                "stalled": len(summary.get("stalled") or []),
            },
        )
        return summary
