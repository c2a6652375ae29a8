import pytest

from glovebrand.services.failure_classification import (
    GENERIC,
    QUEUE_MISCONFIGURED,
    ROBOTS_BLOCKED,
    STORAGE_MISCONFIGURED,
    TIMEOUT,
    UNREACHABLE,
    VALIDATION,
    classify_failure,
)
from glovebrand.temporal.workflows.branding_job import _failure_message


@pytest.mark.parametrize(
    ("activity", "message", "category"),
    [
        ("write-outputs", "storage: ARTIFACT_STORAGE_BUCKET is required", STORAGE_MISCONFIGURED),
        ("complete", "queue: Job queue not configured.", QUEUE_MISCONFIGURED),
        ("crawl", "Crawling disallowed by robots.txt for https://tigers.example.org/", ROBOTS_BLOCKED),
        ("crawl", "Request to https://tigers.example.org/ timed out", TIMEOUT),
        ("crawl", "Host 'tigers.example.org' could not be resolved.", UNREACHABLE),
        ("crawl", "HTTP 503 from https://tigers.example.org/", UNREACHABLE),
        ("validate", "Port 22 is not allowed.", VALIDATION),
        ("validate", "something odd", VALIDATION),
        ("generate-design", "list index out of range", GENERIC),
    ],
)
def test_classify_failure(activity, message, category):
    assert classify_failure(activity, message).category == category


def test_generic_message_names_the_step():
    result = classify_failure("extract-colors", "division by zero")
    assert result.message == "Branding job failed during extract-colors: division by zero"
    assert result.details == "division by zero"


def test_empty_message():
    assert classify_failure("crawl", "").details == "Unknown error"


def test_failure_message_uses_innermost_cause():
    try:
        try:
            raise ValueError("Host 'x.example.org' could not be resolved.")
        except ValueError as inner:
            raise RuntimeError("Activity task failed") from inner
    except RuntimeError as outer:
        assert _failure_message(outer) == "Host 'x.example.org' could not be resolved."
