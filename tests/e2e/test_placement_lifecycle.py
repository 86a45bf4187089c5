from datetime import UTC, datetime, timedelta

from sqlalchemy import update

from placetrack.core.analytics import AnalyticsAggregator
from placetrack.core.jobs import JobService
from placetrack.core.tracking import TrackingService
from placetrack.db.models import Job
from placetrack.db.repositories import Repository
from placetrack.db.session import SessionLocal
from placetrack.types import Identity, JobCreate, JobListFilters, JobUpdate, ViewData

DIRECTOR = Identity(user_id=20, role="placement_director")


def test_job_from_draft_to_expiry() -> None:
    with SessionLocal() as db:
        repo = Repository(db)
        cse = repo.create_department(name="Computer Science", code="CSE")
        ece = repo.create_department(name="Electronics", code="ECE")
        repo.create_department(name="Civil", code="CIV")
        students = [
            repo.create_student(user_id=900 + index, department_id=department.id, cgpa=cgpa, backlogs=backlogs)
            for index, (department, cgpa, backlogs) in enumerate(
                [(cse, 8.1, 0), (cse, 7.2, 0), (ece, 8.8, 2), (ece, 9.4, 0)]
            )
        ]

        service = JobService(db)
        job, fanout = service.create_job(
            JobCreate(
                title="Embedded Systems Intern",
                company={"name": "Volt Labs"},
                description="Firmware and board bring-up.",
                location="Hyderabad",
                application_link="https://volt.example/apply",
                deadline=datetime.now(UTC) + timedelta(days=7),
                posting_type="Selected Departments",
                target_departments=[cse.id, ece.id],
                job_type="Internship",
                eligibility={"min_cgpa": 7.5, "max_backlogs": 1},
            ),
            DIRECTOR,
        )
        assert job.status == "Draft"
        assert fanout is None

        job, fanout = service.update_job(job.id, JobUpdate(status="Active"), DIRECTOR)
        assert fanout.created == 4
        snapshots = {row.student_id: row for row in repo.list_all_applications_for_job(job.id)}
        assert snapshots[students[0].id].eligibility_is_eligible
        assert snapshots[students[1].id].eligibility_reasons_json == ["Minimum CGPA required: 7.5"]
        assert snapshots[students[2].id].eligibility_reasons_json == ["Maximum 1 backlogs allowed"]

        tracker = TrackingService(db)
        for session_id, duration in (("tab-1", 30), ("tab-1", 45)):
            tracker.record_view(
                job_id=job.id,
                student=students[0],
                session_id=session_id,
                view_data=ViewData(duration=duration),
            )
        tracker.record_view(job_id=job.id, student=students[3], session_id="m", view_data=ViewData(duration=15))

        tracker.record_response(application_id=snapshots[students[0].id].id, applied=True)
        tracker.record_response(application_id=snapshots[students[3].id].id, applied=True)
        tracker.record_response(application_id=snapshots[students[1].id].id, applied=False)

        report = AnalyticsAggregator(db).reconcile_counters(job.id)
        assert report.consistent
        assert report.actual_total_views == 2
        assert report.actual_total_applications == 2

        db.execute(update(Job).where(Job.id == job.id).values(deadline=datetime.now(UTC) - timedelta(minutes=1)))
        db.commit()
        db.expire_all()

        student_identity = Identity(user_id=students[2].user_id, role="student")
        visible, total = service.list_jobs(student_identity, JobListFilters())
        assert total == 0 and visible == []

        expired = repo.get_job(job.id)
        assert expired.status == "Expired"
        assert expired.closed_at is not None
