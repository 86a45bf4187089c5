from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

_TEST_DIR = Path(tempfile.mkdtemp(prefix="placetrack-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'placetrack-test.db'}"
os.environ["DATA_DIR"] = str(_TEST_DIR)
os.environ["APP_ENV"] = "test"

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from placetrack.core.jobs import JobService  # noqa: E402
from placetrack.db.base import Base  # noqa: E402
from placetrack.db.models import Department, Job, Student  # noqa: E402
from placetrack.db.repositories import Repository  # noqa: E402
from placetrack.db.session import SessionLocal, engine  # noqa: E402
from placetrack.types import Identity, JobCreate  # noqa: E402

ADMIN = Identity(user_id=1, role="admin")
DIRECTOR = Identity(user_id=2, role="placement_director")


@pytest.fixture(autouse=True)
def reset_db() -> Iterator[None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db() -> Iterator[Session]:
    with SessionLocal() as session:
        yield session


@pytest.fixture
def departments(db: Session) -> list[Department]:
    repo = Repository(db)
    return [
        repo.create_department(name="Computer Science", code="CSE"),
        repo.create_department(name="Electronics", code="ECE"),
        repo.create_department(name="Mechanical", code="MECH"),
    ]


@pytest.fixture
def make_student(db: Session) -> Callable[..., Student]:
    counter = {"next": 1000}

    def _make(department: Department | int | None, **values: Any) -> Student:
        counter["next"] += 1
        department_id = department.id if isinstance(department, Department) else department
        values.setdefault("full_name", f"Student {counter['next']}")
        values.setdefault("batch", "2026")
        values.setdefault("cgpa", 8.0)
        values.setdefault("backlogs", 0)
        user_id = values.pop("user_id", counter["next"])
        return Repository(db).create_student(user_id=user_id, department_id=department_id, **values)

    return _make


def build_job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Graduate Software Engineer",
        "company": {"name": "Acme Systems", "industry": "Software"},
        "description": "Build and operate backend services.",
        "location": "Bengaluru",
        "application_link": "https://careers.acme.example/apply/123",
        "deadline": (datetime.now(UTC) + timedelta(days=14)).isoformat(),
        "posting_type": "All Departments",
        "status": "Draft",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def job_payload() -> Callable[..., dict[str, Any]]:
    return build_job_payload


@pytest.fixture
def make_job(db: Session) -> Callable[..., Job]:
    def _make(identity: Identity = ADMIN, **overrides: Any) -> Job:
        job, _ = JobService(db).create_job(JobCreate(**build_job_payload(**overrides)), identity)
        return job

    return _make
