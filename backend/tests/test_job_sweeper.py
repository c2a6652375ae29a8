from datetime import datetime, timedelta, timezone

from glovebrand.db.enums import JobModeEnum, JobStageEnum
from glovebrand.services.branding_jobs import QUEUE_NOT_CONFIGURED
from glovebrand.services.job_sweeper import SweeperConfig, requeue_dead_letters, sweep_stale_jobs

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
TEAM_URL = "https://tigers.example.org/"
CONFIG = SweeperConfig(retry_minutes=5, fail_minutes=20, max_retries=2, limit=25)


def _queued_job(store, *, minutes_ago, retry_count=0):
    at = NOW - timedelta(minutes=minutes_ago)
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal, now=at)
    store.update_stage(job.job_id, JobStageEnum.queued, retry_count=retry_count, now=at)
    return job


def test_stale_queued_job_is_resent(store, queue):
    job = _queued_job(store, minutes_ago=10)
    fresh = _queued_job(store, minutes_ago=1)

    summary = sweep_stale_jobs(store, queue, CONFIG, now=NOW)

    assert summary == {"requeued": [job.job_id], "failed": [], "stalled": []}
    refreshed = store.get(job.job_id)
    assert refreshed.stage == JobStageEnum.queued
    assert refreshed.retry_count == 1
    assert store.get(fresh.job_id).retry_count == 0
    (message,) = queue.receive(now=NOW)
    assert message.body == {"job_id": job.job_id, "team_url": TEAM_URL, "mode": "proposal"}


def test_retry_budget_exhausted_fails_job(store, queue):
    job = _queued_job(store, minutes_ago=10, retry_count=2)

    summary = sweep_stale_jobs(store, queue, CONFIG, now=NOW)

    assert summary["failed"] == [job.job_id]
    failed = store.get(job.job_id)
    assert failed.stage == JobStageEnum.failed
    assert failed.error == "Job exceeded auto-retry limit (2)."
    assert queue.depth()["active"] == 0


def test_missing_queue_fails_job(store):
    job = _queued_job(store, minutes_ago=10)

    summary = sweep_stale_jobs(store, None, CONFIG, now=NOW)

    assert summary["failed"] == [job.job_id]
    assert store.get(job.job_id).error == QUEUE_NOT_CONFIGURED


def test_stalled_pipeline_job_is_failed(store, queue):
    at = NOW - timedelta(minutes=30)
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal, now=at)
    store.update_stage(job.job_id, JobStageEnum.validated, now=at)
    store.update_stage(job.job_id, JobStageEnum.crawled, now=at)

    summary = sweep_stale_jobs(store, queue, CONFIG, now=NOW)

    assert summary["stalled"] == [job.job_id]
    stalled = store.get(job.job_id)
    assert stalled.stage == JobStageEnum.failed
    assert stalled.error == "Job stalled in stage 'crawled' for more than 20 minutes."


def test_terminal_jobs_are_left_alone(store, queue):
    at = NOW - timedelta(hours=2)
    job = store.create(team_url=TEAM_URL, mode=JobModeEnum.proposal, now=at)
    store.update_stage(job.job_id, JobStageEnum.canceled, error="Job canceled by user.", now=at)

    assert sweep_stale_jobs(store, queue, CONFIG, now=NOW) == {"requeued": [], "failed": [], "stalled": []}


def test_clamped_limit():
    assert SweeperConfig(limit=0).clamped_limit == 25
    assert SweeperConfig(limit=-3).clamped_limit == 1
    assert SweeperConfig(limit=5000).clamped_limit == 200


def test_requeue_dead_letters_resets_job(store, queue):
    job = _queued_job(store, minutes_ago=1)
    store.update_stage(job.job_id, JobStageEnum.failed, error="boom", now=NOW)
    queue.send({"job_id": job.job_id, "team_url": TEAM_URL, "mode": "proposal"}, now=NOW)
    (message,) = queue.receive(now=NOW)
    queue.dead_letter(message.id, reason="poison", now=NOW)

    result = requeue_dead_letters(store, queue, limit=50, now=NOW)

    assert result == {"requeued": 1, "jobIds": [job.job_id]}
    requeued = store.get(job.job_id)
    assert requeued.stage == JobStageEnum.queued
    assert requeued.retry_count == 1
    assert queue.depth() == {"active": 1, "dead_letter": 0}
