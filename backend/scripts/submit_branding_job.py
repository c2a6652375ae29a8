#!/usr/bin/env python3
"""Submit a branding job to the API and poll its status until it finishes or the wait cap is hit."""
from __future__ import annotations

import argparse
import json
import time

import httpx

TERMINAL_STATUSES = {"Succeeded", "Failed"}


def poll_job(
    client: httpx.Client,
    job_id: str,
    *,
    max_wait_seconds: float,
    interval_seconds: float,
    sleep=time.sleep,
    clock=time.monotonic,
) -> dict:
    deadline = clock() + max_wait_seconds
    while True:
        response = client.get(f"/jobs/{job_id}")
        response.raise_for_status()
        status = response.json()
        print(f"{status['stage']} ({status['status']})")
        if status["status"] in TERMINAL_STATUSES or clock() >= deadline:
            return status
        sleep(interval_seconds)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("team_url")
    parser.add_argument("--api", default="http://localhost:8000")
    parser.add_argument("--mode", choices=["proposal", "autofill"], default="proposal")
    parser.add_argument("--max-wait", type=float, default=300.0, help="Seconds to wait before giving up.")
    parser.add_argument("--interval", type=float, default=3.0)
    args = parser.parse_args()

    with httpx.Client(base_url=args.api, timeout=30.0) as client:
        response = client.post("/jobs", json={"teamUrl": args.team_url, "mode": args.mode})
        if response.status_code >= 400:
            print(f"Submit failed ({response.status_code}): {response.text}")
            return 1
        submitted = response.json()
        job_id = submitted["jobId"]
        print(f"job {job_id}{' (cached)' if submitted.get('cached') else ''}")

        status = poll_job(client, job_id, max_wait_seconds=args.max_wait, interval_seconds=args.interval)

    if status["status"] not in TERMINAL_STATUSES:
        print(f"Job {job_id} still running after {args.max_wait:.0f}s; check again later.")
        return 0
    print(json.dumps(status.get("outputs") or {}, indent=2))
    if status["status"] == "Failed":
        print(f"Job failed: {status.get('error')}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
