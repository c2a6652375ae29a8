import asyncio
import uuid
from typing import Any, Dict

from temporalio import activity
from temporalio.exceptions import ApplicationError
from temporalio.testing import WorkflowEnvironment
from temporalio.worker import Worker

from glovebrand.temporal.workflows.branding_job import BrandingJobInput, BrandingJobWorkflow

TASK_QUEUE = "branding-tests"
TEAM_URL = "https://tigers.example.org/"
PROPOSAL_STAGES = ["validated", "crawled", "logo_selected", "colors_extracted", "design_generated", "completed"]


class PipelineActivities:
    """In-memory stand-ins registered under the real activity names."""

    def __init__(self, *, fail_step=None, skip_stage=None, fail_checkpoint=None, wizard_error=False):
        self.fail_step = fail_step
        self.skip_stage = skip_stage
        self.fail_checkpoint = fail_checkpoint
        self.wizard_error = wizard_error
        self.calls: list[str] = []
        self.checkpoints: list[Dict[str, Any]] = []

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_step == name:
            raise ApplicationError(f"{name}: connection timed out", non_retryable=True)

    @activity.defn(name="validate_job_activity")
    async def validate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("validate")
        return {"job_id": params["job_id"], "team_url": params["team_url"]}

    @activity.defn(name="crawl_site_activity")
    async def crawl(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("crawl")
        return {"start_url": params["team_url"], "pages": [], "image_candidates": []}

    @activity.defn(name="select_logo_activity")
    async def select_logo(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("select-logo")
        return {"path": f"jobs/{params['job_id']}/logo.png", "url": None}

    @activity.defn(name="extract_colors_activity")
    async def extract_colors(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("extract-colors")
        return {"primary": {"hex": "#112233"}}

    @activity.defn(name="generate_design_activity")
    async def generate_design(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("generate-design")
        return {"variants": [], "palette": params["palette"]}

    @activity.defn(name="write_outputs_activity")
    async def write_outputs(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._step("write-outputs")
        outputs = {"proposal": {"path": f"jobs/{params['job_id']}/proposal.md"}}
        if params.get("wizard_result"):
            outputs["wizard_schema"] = {"path": f"jobs/{params['job_id']}/wizard_schema_snapshot.json"}
        return outputs

    @activity.defn(name="run_wizard_activity")
    async def run_wizard(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append("wizard")
        if self.wizard_error:
            raise ApplicationError("browser crashed", non_retryable=True)
        return {"attempted": True, "succeeded": True, "warnings": []}

    @activity.defn(name="update_job_stage_activity")
    async def update_job_stage(self, params: Dict[str, Any]) -> Dict[str, Any]:
        stage = params["stage"]
        if self.fail_checkpoint == stage:
            raise ApplicationError("store: database unavailable", non_retryable=True)
        if self.skip_stage == stage:
            return {"applied": False, "stage": "canceled"}
        self.checkpoints.append(params)
        return {"applied": True, "stage": stage}

    def all(self):
        return [
            self.validate,
            self.crawl,
            self.select_logo,
            self.extract_colors,
            self.generate_design,
            self.write_outputs,
            self.run_wizard,
            self.update_job_stage,
        ]

    @property
    def stages(self) -> list[str]:
        return [checkpoint["stage"] for checkpoint in self.checkpoints]


def _run(stubs: PipelineActivities, mode: str = "proposal") -> Dict[str, Any]:
    async def run() -> Dict[str, Any]:
        async with await WorkflowEnvironment.start_time_skipping() as env:
            async with Worker(
                env.client,
                task_queue=TASK_QUEUE,
                workflows=[BrandingJobWorkflow],
                activities=stubs.all(),
            ):
                return await env.client.execute_workflow(
                    BrandingJobWorkflow.run,
                    BrandingJobInput(job_id="job-1", team_url=TEAM_URL, mode=mode),
                    id=f"branding-job-{uuid.uuid4()}",
                    task_queue=TASK_QUEUE,
                )

    return asyncio.run(run())


def test_proposal_runs_every_stage_in_order():
    stubs = PipelineActivities()

    result = _run(stubs)

    assert result["stage"] == "completed"
    assert stubs.stages == PROPOSAL_STAGES
    assert "wizard" not in stubs.calls
    assert stubs.checkpoints[2]["outputs"] == {"logo": {"path": "jobs/job-1/logo.png", "url": None}}
    assert stubs.checkpoints[-1]["outputs"] == {"proposal": {"path": "jobs/job-1/proposal.md"}}
    assert all(checkpoint["instance_id"] for checkpoint in stubs.checkpoints)


def test_autofill_records_wizard_attempt_before_completion():
    stubs = PipelineActivities()

    result = _run(stubs, mode="autofill")

    assert result["stage"] == "completed"
    assert stubs.stages == PROPOSAL_STAGES[:-1] + ["wizard_attempted", "completed"]
    wizard_checkpoint = stubs.checkpoints[-2]
    assert wizard_checkpoint["autofill_attempted"] is True
    assert wizard_checkpoint["autofill_succeeded"] is True
    assert "wizard_schema" in stubs.checkpoints[-1]["outputs"]


def test_wizard_failure_never_fails_the_job():
    stubs = PipelineActivities(wizard_error=True)

    result = _run(stubs, mode="autofill")

    assert result["stage"] == "completed"
    assert "failed" not in stubs.stages
    wizard_checkpoint = stubs.checkpoints[-2]
    assert wizard_checkpoint["stage"] == "wizard_attempted"
    assert wizard_checkpoint["autofill_succeeded"] is False
    assert wizard_checkpoint["wizard_warnings"] == ["Wizard automation failed or was blocked."]


def test_crawl_failure_is_classified_and_recorded():
    stubs = PipelineActivities(fail_step="crawl")

    result = _run(stubs)

    assert result["stage"] == "failed"
    assert result["category"] == "timeout"
    assert stubs.stages == ["validated", "failed"]
    failed = stubs.checkpoints[-1]
    assert failed["error"].startswith("The team site took too long to respond.")
    assert failed["error_details"] == "crawl: connection timed out"
    assert "select-logo" not in stubs.calls


def test_middle_failure_leaves_earlier_outputs_alone():
    stubs = PipelineActivities(fail_step="extract-colors")

    result = _run(stubs)

    assert result["stage"] == "failed"
    assert stubs.stages == ["validated", "crawled", "logo_selected", "failed"]
    assert stubs.checkpoints[2]["outputs"]["logo"]["path"] == "jobs/job-1/logo.png"
    assert "outputs" not in stubs.checkpoints[-1]


def test_cancel_before_crawled_stops_the_run():
    stubs = PipelineActivities(skip_stage="crawled")

    result = _run(stubs)

    assert result == {"job_id": "job-1", "stage": "canceled", "stopped": True}
    assert stubs.stages == ["validated"]
    assert stubs.calls == ["validate", "crawl"]


def test_failed_checkpoint_error_still_returns():
    stubs = PipelineActivities(fail_step="crawl", fail_checkpoint="failed")

    result = _run(stubs)

    assert result["stage"] == "failed"
    assert result["category"] == "timeout"
    assert stubs.stages == ["validated"]
