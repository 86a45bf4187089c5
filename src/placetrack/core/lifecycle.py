from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

from placetrack.core.errors import ValidationFailed
from placetrack.types import TERMINAL_JOB_STATUSES

# Expired is only entered automatically once the deadline has passed
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "Draft": frozenset({"Active"}),
    "Active": frozenset({"Closed"}),
    "Closed": frozenset(),
    "Expired": frozenset(),
}


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_past_deadline(job: Any, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    deadline = as_utc(job.deadline)
    return deadline is not None and deadline < now


def is_active_and_open(job: Any, now: datetime | None = None) -> bool:
    return job.status == "Active" and not is_past_deadline(job, now)


def days_until_deadline(job: Any, now: datetime | None = None) -> int:
    now = now or datetime.now(UTC)
    if is_past_deadline(job, now):
        return 0
    remaining = (as_utc(job.deadline) - now).total_seconds()
    return math.ceil(remaining / 86400)


def sync_job_lifecycle(job: Any, now: datetime | None = None) -> bool:
    """Apply automatic transitions; returns True when the job was changed."""
    now = now or datetime.now(UTC)
    changed = False

    if job.status == "Active" and is_past_deadline(job, now):
        job.status = "Expired"
        job.closed_at = now
        changed = True

    if job.status == "Active" and job.published_at is None:
        job.published_at = now
        changed = True

    return changed


def validate_transition(current: str, requested: str) -> None:
    if requested == current:
        return
    if current in TERMINAL_JOB_STATUSES:
        raise ValidationFailed(f"Job is {current} and can no longer change status")
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ValidationFailed(f"Cannot change job status from {current} to {requested}")


def apply_transition(job: Any, requested: str, now: datetime | None = None) -> bool:
    """Move ``job`` to ``requested``; returns True when it just became Active."""
    now = now or datetime.now(UTC)
    current = job.status
    validate_transition(current, requested)
    if requested == current:
        return False

    job.status = requested
    if requested == "Active":
        if job.published_at is None:
            job.published_at = now
        return True
    if requested == "Closed":
        job.closed_at = now
    return False
