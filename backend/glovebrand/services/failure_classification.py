from __future__ import annotations

import re
from dataclasses import dataclass

STORAGE_MISCONFIGURED = "storage_misconfigured"
QUEUE_MISCONFIGURED = "queue_misconfigured"
STORE_MISCONFIGURED = "store_misconfigured"
ROBOTS_BLOCKED = "robots_blocked"
TIMEOUT = "timeout"
UNREACHABLE = "unreachable"
VALIDATION = "validation"
GENERIC = "generic"

_RULES: tuple[tuple[str, re.Pattern[str], str], ...] = (
    (
        STORAGE_MISCONFIGURED,
        re.compile(r"^storage:|artifact_storage|storage (is )?not configured|nosuchbucket", re.IGNORECASE),
        "Artifact storage is not configured correctly; outputs could not be saved.",
    ),
    (
        QUEUE_MISCONFIGURED,
        re.compile(r"^queue:|queue (is )?not configured", re.IGNORECASE),
        "The job queue is not configured; the job cannot be retried automatically.",
    ),
    (
        STORE_MISCONFIGURED,
        re.compile(r"^store:|job store|database_url|operationalerror|no such table", re.IGNORECASE),
        "The job store is unavailable or misconfigured.",
    ),
    (
        ROBOTS_BLOCKED,
        re.compile(r"robots\.txt", re.IGNORECASE),
        "The team site does not allow automated crawling (robots.txt).",
    ),
    (
        TIMEOUT,
        re.compile(r"timed? ?out|timeout|deadline exceeded", re.IGNORECASE),
        "The team site took too long to respond.",
    ),
    (
        UNREACHABLE,
        re.compile(
            r"could not be resolved|network error|connection (refused|reset)|unreachable|http [45]\d\d|too many redirects",
            re.IGNORECASE,
        ),
        "The team site could not be reached.",
    ),
    (
        VALIDATION,
        re.compile(r"not allowed|invalid url|is required|not a public domain|non-public address", re.IGNORECASE),
        "The team URL is not valid or not allowed.",
    ),
)


@dataclass(frozen=True)
class FailureClassification:
    category: str
    message: str
    details: str


def classify_failure(activity: str, message: str) -> FailureClassification:
    """Map a raw activity failure onto a category and a message fit for the job record."""
    detail = (message or "").strip() or "Unknown error"
    for category, pattern, summary in _RULES:
        if pattern.search(detail):
            return FailureClassification(category=category, message=f"{summary} ({detail[:300]})", details=detail)
    if activity == "validate":
        return FailureClassification(
            category=VALIDATION,
            message=f"The team URL is not valid or not allowed. ({detail[:300]})",
            details=detail,
        )
    return FailureClassification(
        category=GENERIC,
        message=f"Branding job failed during {activity}: {detail[:300]}",
        details=detail,
    )
