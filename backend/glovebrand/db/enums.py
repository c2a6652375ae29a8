from enum import Enum


class JobModeEnum(str, Enum):
    proposal = "proposal"
    autofill = "autofill"


class JobStageEnum(str, Enum):
    received = "received"
    queued = "queued"
    validated = "validated"
    crawled = "crawled"
    logo_selected = "logo_selected"
    colors_extracted = "colors_extracted"
    design_generated = "design_generated"
    wizard_attempted = "wizard_attempted"
    completed = "completed"
    failed = "failed"
    canceled = "canceled"


TERMINAL_STAGES = frozenset({JobStageEnum.completed, JobStageEnum.failed, JobStageEnum.canceled})

# Stages that only mean "waiting for the coordinator to pick the job up".
ENQUEUED_STAGES = (JobStageEnum.received, JobStageEnum.queued)

IN_PROGRESS_STAGES = (
    JobStageEnum.validated,
    JobStageEnum.crawled,
    JobStageEnum.logo_selected,
    JobStageEnum.colors_extracted,
    JobStageEnum.design_generated,
    JobStageEnum.wizard_attempted,
)

# Happy-path edges. failed/canceled are reachable from every non-terminal stage and
# terminal -> queued only through an explicit operator retry.
STAGE_TRANSITIONS: dict[JobStageEnum, frozenset[JobStageEnum]] = {
    JobStageEnum.received: frozenset({JobStageEnum.queued, JobStageEnum.validated}),
    JobStageEnum.queued: frozenset({JobStageEnum.validated}),
    JobStageEnum.validated: frozenset({JobStageEnum.crawled}),
    JobStageEnum.crawled: frozenset({JobStageEnum.logo_selected}),
    JobStageEnum.logo_selected: frozenset({JobStageEnum.colors_extracted}),
    JobStageEnum.colors_extracted: frozenset({JobStageEnum.design_generated}),
    JobStageEnum.design_generated: frozenset({JobStageEnum.wizard_attempted, JobStageEnum.completed}),
    JobStageEnum.wizard_attempted: frozenset({JobStageEnum.completed}),
    JobStageEnum.completed: frozenset(),
    JobStageEnum.failed: frozenset(),
    JobStageEnum.canceled: frozenset(),
}


class JobStatusEnum(str, Enum):
    Succeeded = "Succeeded"
    Failed = "Failed"
    Running = "Running"


def status_for_stage(stage: JobStageEnum) -> JobStatusEnum:
    if stage == JobStageEnum.completed:
        return JobStatusEnum.Succeeded
    if stage in (JobStageEnum.failed, JobStageEnum.canceled):
        return JobStatusEnum.Failed
    return JobStatusEnum.Running
