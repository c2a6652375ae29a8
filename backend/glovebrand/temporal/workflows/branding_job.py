from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from glovebrand.config import settings
    from glovebrand.services.failure_classification import classify_failure
    from glovebrand.temporal.activities.branding_activities import (
        crawl_site_activity,
        extract_colors_activity,
        generate_design_activity,
        run_wizard_activity,
        select_logo_activity,
        update_job_stage_activity,
        validate_job_activity,
        write_outputs_activity,
    )

NETWORK_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=2),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(seconds=30),
    maximum_attempts=3,
    non_retryable_error_types=["UrlValidationError", "InfrastructureError"],
)
CHECKPOINT_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(milliseconds=500),
    backoff_coefficient=1.5,
    maximum_interval=timedelta(seconds=5),
    maximum_attempts=6,
    non_retryable_error_types=["InvalidStageTransitionError"],
)
SINGLE_ATTEMPT = RetryPolicy(maximum_attempts=1)

CRAWL_START_TO_CLOSE = timedelta(seconds=int(settings.CRAWL_WALL_CLOCK_SECONDS) + 60)
WIZARD_START_TO_CLOSE = timedelta(milliseconds=settings.WIZARD_NAVIGATION_TIMEOUT_MS * 4)


@dataclass
class BrandingJobInput:
    job_id: str
    team_url: str
    mode: str = "proposal"


class CheckpointSkipped(Exception):
    def __init__(self, stage: str, current_stage: Optional[str]) -> None:
        super().__init__(f"checkpoint {stage} skipped; job is {current_stage}")
        self.stage = stage
        self.current_stage = current_stage


def _failure_message(exc: BaseException) -> str:
    """Innermost message of an activity failure chain."""
    message = str(exc)
    cause = exc
    while cause is not None:
        inner = getattr(cause, "message", None) or str(cause)
        if inner:
            message = inner
        cause = cause.__cause__
    return message


@workflow.defn
class BrandingJobWorkflow:
    """
    Checkpointed pipeline for one branding job.

    Each activity is followed by a stage checkpoint in the job store. A checkpoint
    that is not applied (the job was canceled or failed elsewhere) stops the run.
    Failures are classified and recorded on the job; the workflow itself returns
    normally so the queue trigger never sees a failed execution.
    """

    def __init__(self) -> None:
        self._job_id = ""
        self._instance_id = ""

    async def _checkpoint(self, stage: str, **fields: Any) -> None:
        result = await workflow.execute_activity(
            update_job_stage_activity,
            {"job_id": self._job_id, "stage": stage, "instance_id": self._instance_id, **fields},
            start_to_close_timeout=timedelta(seconds=30),
            schedule_to_close_timeout=timedelta(minutes=2),
            retry_policy=CHECKPOINT_RETRY_POLICY,
        )
        if not result.get("applied"):
            raise CheckpointSkipped(stage, result.get("stage"))

    async def _network(self, activity_fn, params: Dict[str, Any], *, start_to_close: timedelta) -> Dict[str, Any]:
        return await workflow.execute_activity(
            activity_fn,
            params,
            start_to_close_timeout=start_to_close,
            schedule_to_close_timeout=start_to_close * 4,
            retry_policy=NETWORK_RETRY_POLICY,
        )

    @workflow.run
    async def run(self, input: BrandingJobInput) -> Dict[str, Any]:
        info = workflow.info()
        self._job_id = input.job_id
        self._instance_id = info.workflow_id
        log_extra = {"workflow_id": info.workflow_id, "run_id": info.run_id, "job_id": input.job_id}
        step = "validate"
        try:
            validated = await self._network(
                validate_job_activity,
                {"job_id": input.job_id, "team_url": input.team_url},
                start_to_close=timedelta(seconds=30),
            )
            team_url = validated["team_url"]
            await self._checkpoint("validated")

            step = "crawl"
            report = await self._network(
                crawl_site_activity,
                {"job_id": input.job_id, "team_url": team_url},
                start_to_close=CRAWL_START_TO_CLOSE,
            )
            await self._checkpoint("crawled")

            step = "select-logo"
            logo = await self._network(
                select_logo_activity,
                {"job_id": input.job_id, "team_url": team_url, "report": report},
                start_to_close=timedelta(minutes=3),
            )
            outputs: Dict[str, Any] = {}
            if logo.get("path"):
                outputs["logo"] = {"path": logo["path"], "url": logo.get("url")}
            await self._checkpoint("logo_selected", outputs=outputs)

            step = "extract-colors"
            palette = await self._network(
                extract_colors_activity,
                {"job_id": input.job_id, "report": report, "logo": logo},
                start_to_close=timedelta(minutes=3),
            )
            await self._checkpoint("colors_extracted")

            step = "generate-design"
            design = await workflow.execute_activity(
                generate_design_activity,
                {"job_id": input.job_id, "team_url": team_url, "logo": logo, "palette": palette},
                start_to_close_timeout=timedelta(seconds=30),
                retry_policy=SINGLE_ATTEMPT,
            )

            step = "write-outputs"
            output_params = {
                "job_id": input.job_id,
                "report": report,
                "logo": logo,
                "palette": palette,
                "design": design,
            }
            outputs = await self._network(write_outputs_activity, output_params, start_to_close=timedelta(minutes=2))
            await self._checkpoint("design_generated", outputs=outputs)

            if input.mode == "autofill":
                step = "wizard"
                wizard_result = await self._run_wizard(input.job_id, design, logo.get("path"), log_extra)
                await self._checkpoint(
                    "wizard_attempted",
                    autofill_attempted=bool(wizard_result.get("attempted")),
                    autofill_succeeded=bool(wizard_result.get("succeeded")),
                    wizard_warnings=list(wizard_result.get("warnings") or []),
                )
                step = "write-outputs"
                outputs = await self._network(
                    write_outputs_activity,
                    {**output_params, "wizard_result": wizard_result},
                    start_to_close=timedelta(minutes=2),
                )

            step = "complete"
            await self._checkpoint("completed", outputs=outputs)
        except CheckpointSkipped as skipped:
            workflow.logger.info(
                "branding_job.stopped",
                extra={**log_extra, "stage": skipped.stage, "current_stage": skipped.current_stage},
            )
            return {"job_id": input.job_id, "stage": skipped.current_stage, "stopped": True}
        except Exception as exc:  # noqa: BLE001
            return await self._fail(step, exc, log_extra)

        workflow.logger.info("branding_job.completed", extra=log_extra)
        return {"job_id": input.job_id, "stage": "completed", "outputs": outputs}

    async def _run_wizard(
        self, job_id: str, design: Dict[str, Any], logo_path: Optional[str], log_extra: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            return await workflow.execute_activity(
                run_wizard_activity,
                {"job_id": job_id, "design": design, "logo_path": logo_path},
                start_to_close_timeout=WIZARD_START_TO_CLOSE,
                retry_policy=SINGLE_ATTEMPT,
            )
        except Exception as exc:  # noqa: BLE001
            workflow.logger.error("branding_job.wizard_activity_failed", extra={**log_extra, "error": str(exc)})
            return {
                "attempted": True,
                "succeeded": False,
                "warnings": ["Wizard automation failed or was blocked."],
            }

    async def _fail(self, step: str, exc: BaseException, log_extra: Dict[str, Any]) -> Dict[str, Any]:
        classification = classify_failure(step, _failure_message(exc))
        workflow.logger.error(
            "branding_job.failed",
            extra={**log_extra, "stage": step, "category": classification.category, "error": classification.details},
        )
        try:
            await workflow.execute_activity(
                update_job_stage_activity,
                {
                    "job_id": self._job_id,
                    "stage": "failed",
                    "error": classification.message,
                    "error_details": classification.details,
                },
                start_to_close_timeout=timedelta(seconds=30),
                retry_policy=CHECKPOINT_RETRY_POLICY,
            )
        except Exception as checkpoint_exc:  # noqa: BLE001
            workflow.logger.error(
                "branding_job.failed_checkpoint_error",
                extra={**log_extra, "error": str(checkpoint_exc)},
            )
        return {
            "job_id": self._job_id,
            "stage": "failed",
            "error": classification.message,
            "category": classification.category,
        }
