from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from placetrack.core.errors import ValidationFailed
from placetrack.core.lifecycle import (
    apply_transition,
    as_utc,
    days_until_deadline,
    is_active_and_open,
    sync_job_lifecycle,
    validate_transition,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _job(status: str = "Draft", deadline: datetime | None = None, **values) -> SimpleNamespace:
    return SimpleNamespace(
        status=status,
        deadline=deadline or NOW + timedelta(days=3),
        published_at=values.get("published_at"),
        closed_at=values.get("closed_at"),
    )


def test_active_job_past_deadline_expires_on_sync() -> None:
    job = _job("Active", deadline=NOW - timedelta(minutes=1), published_at=NOW - timedelta(days=5))
    assert sync_job_lifecycle(job, NOW)
    assert job.status == "Expired"
    assert job.closed_at == NOW


def test_sync_leaves_open_jobs_alone() -> None:
    job = _job("Active", published_at=NOW - timedelta(days=1))
    assert not sync_job_lifecycle(job, NOW)
    assert job.status == "Active"


def test_sync_stamps_missing_publish_time() -> None:
    job = _job("Active")
    assert sync_job_lifecycle(job, NOW)
    assert job.published_at == NOW


def test_draft_past_deadline_stays_draft() -> None:
    job = _job("Draft", deadline=NOW - timedelta(days=1))
    assert not sync_job_lifecycle(job, NOW)
    assert job.status == "Draft"


def test_naive_deadline_is_read_as_utc() -> None:
    naive = datetime(2026, 3, 1, 11, 0)
    assert as_utc(naive) == datetime(2026, 3, 1, 11, 0, tzinfo=UTC)
    job = _job("Active", deadline=naive)
    assert not is_active_and_open(job, NOW)


@pytest.mark.parametrize(
    ("current", "requested"),
    [("Draft", "Active"), ("Active", "Closed"), ("Active", "Active"), ("Closed", "Closed")],
)
def test_allowed_transitions(current: str, requested: str) -> None:
    validate_transition(current, requested)


@pytest.mark.parametrize(
    ("current", "requested"),
    [
        ("Draft", "Closed"),
        ("Draft", "Expired"),
        ("Active", "Draft"),
        ("Active", "Expired"),
        ("Closed", "Active"),
        ("Expired", "Active"),
    ],
)
def test_rejected_transitions(current: str, requested: str) -> None:
    with pytest.raises(ValidationFailed):
        validate_transition(current, requested)


def test_publishing_sets_published_at_once() -> None:
    first = NOW - timedelta(days=2)
    job = _job("Draft", published_at=first)
    assert apply_transition(job, "Active", NOW)
    assert job.published_at == first


def test_closing_sets_closed_at() -> None:
    job = _job("Active", published_at=NOW)
    assert not apply_transition(job, "Closed", NOW)
    assert job.status == "Closed"
    assert job.closed_at == NOW


def test_restating_status_is_a_no_op() -> None:
    job = _job("Active", published_at=NOW)
    assert not apply_transition(job, "Active", NOW)
    assert job.closed_at is None


def test_days_until_deadline_rounds_up() -> None:
    assert days_until_deadline(_job(deadline=NOW + timedelta(days=2, hours=1)), NOW) == 3
    assert days_until_deadline(_job(deadline=NOW - timedelta(hours=1)), NOW) == 0
