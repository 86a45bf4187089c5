from datetime import UTC, datetime, timedelta

import pytest
from conftest import ADMIN, DIRECTOR, build_job_payload
from sqlalchemy import update

from placetrack.core.errors import NotFound, PermissionDenied, ValidationFailed
from placetrack.core.jobs import JobService
from placetrack.db.models import Job
from placetrack.db.repositories import Repository
from placetrack.types import Identity, JobCreate, JobListFilters, JobUpdate

STAFF = Identity(user_id=3, role="placement_staff")
HOD = Identity(user_id=4, role="department_hod")


def test_create_rejects_past_deadline(db) -> None:
    payload = JobCreate(**build_job_payload(deadline=(datetime.now(UTC) - timedelta(minutes=5)).isoformat()))
    with pytest.raises(ValidationFailed, match="Deadline must be in the future"):
        JobService(db).create_job(payload, ADMIN)


def test_create_rejects_unknown_departments(db, departments) -> None:
    service = JobService(db)
    with pytest.raises(ValidationFailed, match="One or more selected departments are invalid"):
        service.create_job(
            JobCreate(**build_job_payload(posting_type="Selected Departments", target_departments=[999])),
            ADMIN,
        )
    with pytest.raises(ValidationFailed, match="One or more eligibility departments are invalid"):
        service.create_job(JobCreate(**build_job_payload(eligibility={"departments": [departments[0].id, 998]})), ADMIN)


def test_create_requires_staff_role(db) -> None:
    with pytest.raises(PermissionDenied):
        JobService(db).create_job(JobCreate(**build_job_payload()), STAFF)


def test_created_job_defaults(db) -> None:
    job, fanout = JobService(db).create_job(JobCreate(**build_job_payload()), DIRECTOR)
    assert job.status == "Draft"
    assert job.max_backlogs == 0
    assert job.published_at is None
    assert job.created_by == DIRECTOR.user_id
    assert fanout is None


def test_naive_deadline_is_stored_as_utc(db) -> None:
    naive = (datetime.now(UTC) + timedelta(days=3)).replace(tzinfo=None, microsecond=0)
    job, _ = JobService(db).create_job(JobCreate(**build_job_payload(deadline=naive.isoformat())), ADMIN)
    assert job.deadline.replace(tzinfo=None) == naive


def test_publishing_a_draft_runs_fanout(db, departments, make_student, make_job) -> None:
    make_student(departments[0])
    make_student(departments[1])
    job = make_job(status="Draft")

    updated, fanout = JobService(db).update_job(job.id, JobUpdate(status="Active"), ADMIN)

    assert updated.status == "Active"
    assert updated.published_at is not None
    assert fanout is not None and fanout.created == 2
    assert len(Repository(db).list_all_applications_for_job(job.id)) == 2


def test_invalid_transition_is_rejected(db, make_job) -> None:
    job = make_job(status="Draft")
    with pytest.raises(ValidationFailed):
        JobService(db).update_job(job.id, JobUpdate(status="Closed"), ADMIN)
    with pytest.raises(ValidationFailed):
        JobService(db).update_job(job.id, JobUpdate(status="Expired"), ADMIN)


def test_closing_is_terminal(db, make_job) -> None:
    job = make_job(status="Active")
    service = JobService(db)
    closed, _ = service.update_job(job.id, JobUpdate(status="Closed"), ADMIN)
    assert closed.closed_at is not None
    with pytest.raises(ValidationFailed):
        service.update_job(job.id, JobUpdate(status="Active"), ADMIN)


def test_only_creator_or_admin_may_update(db, make_job) -> None:
    job = make_job(identity=ADMIN)
    other_director = Identity(user_id=77, role="placement_director")
    with pytest.raises(PermissionDenied):
        JobService(db).update_job(job.id, JobUpdate(title="Renamed"), other_director)

    own = make_job(identity=DIRECTOR)
    renamed, _ = JobService(db).update_job(own.id, JobUpdate(title="Renamed"), DIRECTOR)
    assert renamed.title == "Renamed"
    assert renamed.updated_by == DIRECTOR.user_id


def test_partial_update_keeps_other_fields(db, make_job) -> None:
    job = make_job(company={"name": "Initech", "industry": "Finance"}, benefits=["Health cover"])
    updated, _ = JobService(db).update_job(job.id, JobUpdate(location="Pune"), ADMIN)
    assert updated.location == "Pune"
    assert updated.company_name == "Initech"
    assert updated.benefits_json == ["Health cover"]


def test_delete_cascades(db, departments, make_student, make_job) -> None:
    make_student(departments[0])
    job = make_job(status="Active")
    JobService(db).delete_job(job.id, ADMIN)
    assert Repository(db).get_job(job.id) is None
    assert Repository(db).list_all_applications_for_job(job.id) == []


def test_expired_on_load(db, make_job) -> None:
    job = make_job(status="Active")
    db.execute(update(Job).where(Job.id == job.id).values(deadline=datetime.now(UTC) - timedelta(seconds=1)))
    db.commit()
    db.expire_all()

    loaded = Repository(db).get_job(job.id)
    assert loaded.status == "Expired"
    assert loaded.closed_at is not None


def test_listing_is_scoped_by_role(db, departments, make_student, make_job) -> None:
    cse, ece, _ = departments
    student_row = make_student(cse)
    student = Identity(user_id=student_row.user_id, role="student")

    draft = make_job(title="Draft role")
    open_all = make_job(title="Open to all", status="Active")
    ece_only = make_job(
        title="ECE only",
        status="Active",
        posting_type="Single Department",
        target_departments=[ece.id],
    )
    closed = make_job(title="Closed role", status="Active")
    JobService(db).update_job(closed.id, JobUpdate(status="Closed"), ADMIN)
    expired = make_job(title="Expired role", status="Active")
    db.execute(update(Job).where(Job.id == expired.id).values(deadline=datetime.now(UTC) - timedelta(hours=2)))
    db.commit()

    service = JobService(db)
    filters = JobListFilters(all=True)

    def titles(identity: Identity) -> set[str]:
        jobs, _ = service.list_jobs(identity, filters)
        return {job.title for job in jobs}

    assert titles(student) == {open_all.title}
    assert titles(STAFF) == {open_all.title, ece_only.title, closed.title, expired.title}
    assert titles(HOD) == {open_all.title, ece_only.title, closed.title}
    assert titles(ADMIN) == {draft.title, open_all.title, ece_only.title, closed.title, expired.title}

    drafts, total = service.list_jobs(student, JobListFilters(status="Draft"))
    assert drafts == [] and total == 0


def test_listing_filters_and_pagination(db, departments, make_job) -> None:
    cse = departments[0]
    for index in range(5):
        make_job(title=f"Analyst {index}", status="Active", job_type="Internship")
    make_job(title="Selected", status="Active", posting_type="Selected Departments", target_departments=[cse.id])

    service = JobService(db)
    page, total = service.list_jobs(ADMIN, JobListFilters(page=2, limit=2, job_type="Internship", sort_by="title", sort_order="asc"))
    assert total == 5
    assert [job.title for job in page] == ["Analyst 2", "Analyst 3"]

    searched, total = service.list_jobs(ADMIN, JobListFilters(search="analyst 4"))
    assert total == 1 and searched[0].title == "Analyst 4"

    by_department, total = service.list_jobs(ADMIN, JobListFilters(department=cse.id))
    assert [job.title for job in by_department] == ["Selected"]


def test_student_view_and_dashboard(db, departments, make_student, make_job) -> None:
    student_row = make_student(departments[0], cgpa=6.0)
    student = Identity(user_id=student_row.user_id, role="student")
    job = make_job(status="Active", eligibility={"min_cgpa": 7.5})

    view = JobService(db).student_view(job.id, student)
    assert not view.verdict.eligible
    assert view.verdict.reason == "Minimum CGPA required: 7.5"
    assert view.application is not None

    rows, total = JobService(db).student_dashboard(student, JobListFilters())
    assert total == 1
    assert rows[0].application.status == "Pending Response"


def test_students_cannot_open_hidden_jobs(db, departments, make_student, make_job) -> None:
    student_row = make_student(departments[0])
    student = Identity(user_id=student_row.user_id, role="student")
    hidden = make_job(status="Active", posting_type="Single Department", target_departments=[departments[1].id])
    draft = make_job(status="Draft")

    with pytest.raises(NotFound):
        JobService(db).get_job_for(hidden.id, student)
    with pytest.raises(NotFound):
        JobService(db).get_job_for(draft.id, student)
    with pytest.raises(PermissionDenied):
        JobService(db).get_job_for(draft.id, HOD)
