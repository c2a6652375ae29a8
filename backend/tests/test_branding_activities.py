import pytest
from temporalio.testing import ActivityEnvironment

from glovebrand.db.enums import JobModeEnum, JobStageEnum
from glovebrand.errors import InvalidStageTransitionError
from glovebrand.temporal.activities.branding_activities import (
    generate_design_activity,
    update_job_stage_activity,
    validate_job_activity,
)

TEAM_URL = "https://tigers.example.org/"


def _palette_payload():
    def color(hex_value):
        return {"hex": hex_value, "confidence": 0.8, "evidence": ["css"]}

    return {
        "primary": color("#112233"),
        "secondary": color("#c8102e"),
        "accent": color("#ffcc00"),
        "neutral": color("#f5f5f5"),
        "raw": [],
    }


def test_checkpoint_applies_and_records_instance(store):
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal)
    env = ActivityEnvironment()

    result = env.run(
        update_job_stage_activity,
        {"job_id": job.job_id, "stage": "validated", "instance_id": "branding-job-x", "error": None},
    )

    assert result == {"applied": True, "stage": "validated"}
    store.session.expire_all()
    refreshed = store.get(job.job_id)
    assert refreshed.instance_id == "branding-job-x"
    assert refreshed.error is None


def test_checkpoint_after_cancel_is_skipped(store):
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal)
    store.update_stage(job.job_id, JobStageEnum.canceled, error="Job canceled by user.")

    result = ActivityEnvironment().run(update_job_stage_activity, {"job_id": job.job_id, "stage": "crawled"})

    assert result == {"applied": False, "stage": "canceled"}


def test_illegal_checkpoint_raises(store):
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal)
    with pytest.raises(InvalidStageTransitionError):
        ActivityEnvironment().run(update_job_stage_activity, {"job_id": job.job_id, "stage": "completed"})


def test_generate_design_activity_returns_variants():
    design = ActivityEnvironment().run(
        generate_design_activity,
        {
            "job_id": "job-1",
            "team_url": TEAM_URL,
            "logo": {"url": None, "path": "jobs/job-1/logo.png", "placeholder": True},
            "palette": _palette_payload(),
        },
    )
    assert [variant["name"] for variant in design["variants"]] == ["A", "B", "C"]
    assert design["logo"]["path"] == "jobs/job-1/logo.png"


def test_validate_activity_uses_ip_literal_check():
    result = ActivityEnvironment().run(validate_job_activity, {"job_id": "job-1", "team_url": "http://93.184.216.34/"})
    assert result == {"team_url": "http://93.184.216.34/"}
