from glovebrand.db.enums import JobStageEnum
from glovebrand.services.branding_jobs import CANCEL_ERROR, workflow_id_for_job

TEAM_URL = "https://tigers.example.org/"


def _submit(api_client, url=TEAM_URL, mode="proposal"):
    response = api_client.post("/jobs", json={"teamUrl": url, "mode": mode})
    assert response.status_code == 202
    return response.json()


def test_submit_and_get_job(api_client):
    submitted = _submit(api_client, mode="autofill")
    assert submitted["cached"] is False

    response = api_client.get(f"/jobs/{submitted['jobId']}")
    assert response.status_code == 200
    body = response.json()
    assert body["teamUrl"] == TEAM_URL
    assert body["mode"] == "autofill"
    assert body["stage"] == "queued"
    assert body["status"] == "Running"
    assert body["retryCount"] == 0


def test_submit_rejects_private_url(api_client):
    response = api_client.post("/jobs", json={"teamUrl": "http://169.254.169.254/latest/meta-data"})
    assert response.status_code == 400
    assert "not allowed" in response.json()["detail"]


def test_submit_rejects_empty_url(api_client):
    assert api_client.post("/jobs", json={"teamUrl": ""}).status_code == 422


def test_unknown_job_returns_404(api_client):
    assert api_client.get("/jobs/does-not-exist").status_code == 404
    assert api_client.post("/jobs/does-not-exist/retry").status_code == 404


def test_cancel_job_terminates_workflow(api_client, fake_temporal, store):
    job_id = _submit(api_client)["jobId"]

    response = api_client.post(f"/jobs/{job_id}/cancel")

    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "canceled": True, "terminated": True}
    assert fake_temporal.terminated == [(workflow_id_for_job(job_id), CANCEL_ERROR)]
    assert api_client.get(f"/jobs/{job_id}").json()["status"] == "Failed"


def test_cancel_when_workflow_missing(api_client, fake_temporal):
    job_id = _submit(api_client)["jobId"]
    fake_temporal.terminate_error = RuntimeError("workflow not found")

    response = api_client.post(f"/jobs/{job_id}/cancel")

    assert response.json() == {"jobId": job_id, "canceled": True, "terminated": False}


def test_retry_failed_job(api_client, store):
    job_id = _submit(api_client)["jobId"]
    store.update_stage(job_id, JobStageEnum.failed, error="boom")

    response = api_client.post(f"/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "stage": "queued", "retryCount": 1}


def test_debug_queue_and_jobs(api_client):
    job_id = _submit(api_client)["jobId"]

    depth = api_client.get("/debug/queue").json()
    assert depth["active"] == 1
    assert depth["dead_letter"] == 0

    jobs = api_client.get("/debug/jobs", params={"limit": 5}).json()["jobs"]
    assert [job["jobId"] for job in jobs] == [job_id]
    assert api_client.get("/debug/jobs", params={"stale_minutes": 30}).json() == {"jobs": []}
    assert api_client.get("/debug/deadletters", params={"limit": 50}).status_code == 422


def test_debug_requeue_dead_letters(api_client, db_session):
    from glovebrand.config import settings
    from glovebrand.db.repositories.queue_messages import queue_from_settings

    job_id = _submit(api_client)["jobId"]
    queue = queue_from_settings(db_session, settings)
    (message,) = queue.receive()
    queue.dead_letter(message.id, reason="poison")

    dead = api_client.get("/debug/deadletters").json()["messages"]
    assert [m["body"]["job_id"] for m in dead] == [job_id]
    assert dead[0]["reason"] == "poison"

    response = api_client.post("/debug/requeue", json={"limit": 5})
    assert response.json() == {"requeued": 1, "jobIds": [job_id]}
    assert api_client.get("/debug/queue").json()["dead_letter"] == 0


def test_debug_start_direct(api_client, fake_temporal):
    job_id = _submit(api_client)["jobId"]

    response = api_client.post(f"/debug/start/{job_id}")

    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "workflowId": workflow_id_for_job(job_id)}
    assert fake_temporal.started == [workflow_id_for_job(job_id)]


def test_health(api_client):
    body = api_client.get("/health").json()
    assert body["store"] == "ok"
    assert body["queue"].startswith("ok")
    assert body["storage"] == "ok (local)"
    assert body["status"] == "ok"
