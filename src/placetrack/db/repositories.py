from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from placetrack.core.lifecycle import sync_job_lifecycle
from placetrack.db.models import (
    ApplicationJourneyEntry,
    Department,
    Job,
    JobApplication,
    JobDepartmentStat,
    JobView,
    Student,
)
from placetrack.types import ApplicationStatus, EligibilityCheck, JourneyAction, RequestMeta

logger = logging.getLogger(__name__)

JOB_SORT_COLUMNS = {
    "createdAt": Job.created_at,
    "created_at": Job.created_at,
    "deadline": Job.deadline,
    "title": Job.title,
    "publishedAt": Job.published_at,
    "published_at": Job.published_at,
    "company": Job.company_name,
}


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # departments

    def create_department(self, *, name: str, code: str, description: str = "", is_active: bool = True) -> Department:
        department = Department(name=name.strip(), code=code.strip().upper(), description=description, is_active=is_active)
        self.session.add(department)
        self.session.commit()
        self.session.refresh(department)
        return department

    def get_department(self, department_id: int) -> Department | None:
        return self.session.get(Department, department_id)

    def list_departments(self, *, active_only: bool = False) -> list[Department]:
        statement = select(Department).order_by(Department.name.asc())
        if active_only:
            statement = statement.where(Department.is_active.is_(True))
        return list(self.session.scalars(statement).all())

    def list_active_department_ids(self) -> list[int]:
        statement = select(Department.id).where(Department.is_active.is_(True)).order_by(Department.id.asc())
        return list(self.session.scalars(statement).all())

    def missing_department_ids(self, department_ids: Iterable[int]) -> list[int]:
        wanted = set(department_ids)
        if not wanted:
            return []
        found = set(self.session.scalars(select(Department.id).where(Department.id.in_(wanted))).all())
        return sorted(wanted - found)

    def department_lookup(self, department_ids: Iterable[int]) -> dict[int, Department]:
        ids = {department_id for department_id in department_ids if department_id is not None}
        if not ids:
            return {}
        rows = self.session.scalars(select(Department).where(Department.id.in_(ids))).all()
        return {row.id: row for row in rows}

    # students

    def create_student(self, *, user_id: int, department_id: int | None, **values: Any) -> Student:
        student = Student(user_id=user_id, department_id=department_id, **values)
        self.session.add(student)
        self.session.commit()
        self.session.refresh(student)
        return student

    def update_student(self, student_id: int, values: dict[str, Any]) -> Student:
        student = self.session.get(Student, student_id)
        if not student:
            raise ValueError(f"student {student_id} not found")
        for key, value in values.items():
            setattr(student, key, value)
        self.session.commit()
        self.session.refresh(student)
        return student

    def get_student_by_user(self, user_id: int) -> Student | None:
        return self.session.scalar(select(Student).where(Student.user_id == user_id))

    def list_active_students_in_departments(self, department_ids: Iterable[int]) -> list[Student]:
        ids = list(department_ids)
        if not ids:
            return []
        statement = (
            select(Student)
            .where(and_(Student.department_id.in_(ids), Student.is_active.is_(True)))
            .order_by(Student.id.asc())
        )
        return list(self.session.scalars(statement).all())

    # jobs

    def create_job(self, *, created_by: int, values: dict[str, Any]) -> Job:
        job = Job(created_by=created_by, **values)
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def get_job(self, job_id: int) -> Job | None:
        job = self.session.get(Job, job_id)
        if job is not None and sync_job_lifecycle(job):
            logger.info("Job %s moved to %s on load", job.id, job.status)
            self.session.commit()
            self.session.refresh(job)
        return job

    def update_job(self, job: Job, values: dict[str, Any], *, updated_by: int) -> Job:
        for key, value in values.items():
            setattr(job, key, value)
        job.updated_by = updated_by
        self.session.commit()
        self.session.refresh(job)
        return job

    def delete_job(self, job_id: int) -> None:
        application_ids = select(JobApplication.id).where(JobApplication.job_id == job_id)
        self.session.execute(
            delete(ApplicationJourneyEntry).where(ApplicationJourneyEntry.application_id.in_(application_ids))
        )
        self.session.execute(delete(JobApplication).where(JobApplication.job_id == job_id))
        self.session.execute(delete(JobView).where(JobView.job_id == job_id))
        self.session.execute(delete(JobDepartmentStat).where(JobDepartmentStat.job_id == job_id))
        self.session.execute(delete(Job).where(Job.id == job_id))
        self.session.commit()

    def query_jobs(
        self,
        *,
        statuses: Iterable[str] | None = None,
        open_only: bool = False,
        search: str = "",
        job_type: str = "",
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> list[Job]:
        self.expire_overdue_jobs()
        statement = select(Job)
        if statuses is not None:
            statement = statement.where(Job.status.in_(list(statuses)))
        if open_only:
            statement = statement.where(Job.deadline > datetime.now(UTC))
        if search:
            pattern = f"%{search}%"
            statement = statement.where(
                or_(
                    Job.title.ilike(pattern),
                    Job.company_name.ilike(pattern),
                    Job.description.ilike(pattern),
                    Job.location.ilike(pattern),
                )
            )
        if job_type:
            statement = statement.where(Job.job_type == job_type)

        column = JOB_SORT_COLUMNS.get(sort_by, Job.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        statement = statement.order_by(ordering, Job.id.desc())
        return list(self.session.scalars(statement).all())

    def expire_overdue_jobs(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        result = self.session.execute(
            update(Job)
            .where(and_(Job.status == "Active", Job.deadline < now))
            .values(status="Expired", closed_at=now)
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        if result.rowcount:
            logger.info("Expired %s overdue jobs", result.rowcount)
        return result.rowcount or 0

    # job statistics

    def increment_view_count(self, job_id: int, department_id: int | None) -> None:
        self.session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(total_views=Job.total_views + 1)
            .execution_options(synchronize_session=False)
        )
        if department_id is not None:
            self._bump_department_stat(job_id, department_id, "views")
        self.session.commit()

    def increment_application_count(self, job_id: int, department_id: int | None) -> None:
        self.session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(total_applications=Job.total_applications + 1)
            .execution_options(synchronize_session=False)
        )
        if department_id is not None:
            self._bump_department_stat(job_id, department_id, "applications")
        self.session.commit()

    def _bump_department_stat(self, job_id: int, department_id: int, field: str) -> None:
        column = getattr(JobDepartmentStat, field)
        statement = (
            update(JobDepartmentStat)
            .where(and_(JobDepartmentStat.job_id == job_id, JobDepartmentStat.department_id == department_id))
            .values({field: column + 1})
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(statement).rowcount:
            return

        initial = {"views": 0, "applications": 0}
        initial[field] = 1
        try:
            with self.session.begin_nested():
                self.session.add(JobDepartmentStat(job_id=job_id, department_id=department_id, **initial))
        except IntegrityError:
            # another request created the row first
            self.session.execute(statement)

    def list_department_stats(self, job_id: int) -> list[JobDepartmentStat]:
        statement = (
            select(JobDepartmentStat)
            .where(JobDepartmentStat.job_id == job_id)
            .order_by(JobDepartmentStat.department_id.asc())
        )
        return list(self.session.scalars(statement).all())

    def overwrite_counters(
        self,
        job_id: int,
        *,
        total_views: int,
        total_applications: int,
        department_counts: dict[int, dict[str, int]],
    ) -> None:
        self.session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(total_views=total_views, total_applications=total_applications)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(delete(JobDepartmentStat).where(JobDepartmentStat.job_id == job_id))
        for department_id, counts in sorted(department_counts.items()):
            self.session.add(
                JobDepartmentStat(
                    job_id=job_id,
                    department_id=department_id,
                    views=counts.get("views", 0),
                    applications=counts.get("applications", 0),
                )
            )
        self.session.commit()

    # applications

    def existing_application_student_ids(self, job_id: int) -> set[int]:
        statement = select(JobApplication.student_id).where(JobApplication.job_id == job_id)
        return set(self.session.scalars(statement).all())

    def ensure_application(
        self,
        *,
        job_id: int,
        student: Student,
        check: EligibilityCheck,
    ) -> tuple[JobApplication, bool]:
        application = JobApplication(
            job_id=job_id,
            student_id=student.id,
            user_id=student.user_id,
            department_id=student.department_id,
            batch=student.batch,
            status="Pending Response",
            eligibility_is_eligible=check.is_eligible,
            eligibility_reasons_json=list(check.reasons),
            eligibility_checked_at=check.checked_at,
            eligibility_criteria_json={key: value.model_dump() for key, value in check.criteria.items()},
        )
        try:
            with self.session.begin_nested():
                self.session.add(application)
        except IntegrityError:
            existing = self.get_application_for(job_id, student.id)
            if existing is None:
                raise
            self.session.commit()
            return existing, False

        self.session.commit()
        self.session.refresh(application)
        return application, True

    def get_application(self, application_id: int) -> JobApplication | None:
        return self.session.get(JobApplication, application_id)

    def get_application_for(self, job_id: int, student_id: int) -> JobApplication | None:
        statement = select(JobApplication).where(
            and_(JobApplication.job_id == job_id, JobApplication.student_id == student_id)
        )
        return self.session.scalar(statement)

    def applications_by_job_for_student(self, student_id: int, job_ids: Iterable[int]) -> dict[int, JobApplication]:
        ids = list(job_ids)
        if not ids:
            return {}
        statement = select(JobApplication).where(
            and_(JobApplication.student_id == student_id, JobApplication.job_id.in_(ids))
        )
        return {row.job_id: row for row in self.session.scalars(statement).all()}

    def list_applications_for_job(
        self,
        job_id: int,
        *,
        status: str = "",
        department_id: int | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[JobApplication], int]:
        conditions = [JobApplication.job_id == job_id]
        if status:
            conditions.append(JobApplication.status == status)
        if department_id is not None:
            conditions.append(JobApplication.department_id == department_id)
        return self._paginate_applications(conditions, offset=offset, limit=limit)

    def list_applications_for_student(
        self,
        student_id: int,
        *,
        status: str = "",
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[JobApplication], int]:
        conditions = [JobApplication.student_id == student_id]
        if status:
            conditions.append(JobApplication.status == status)
        return self._paginate_applications(conditions, offset=offset, limit=limit)

    def _paginate_applications(
        self,
        conditions: list[Any],
        *,
        offset: int,
        limit: int | None,
    ) -> tuple[list[JobApplication], int]:
        total = self.session.scalar(select(func.count(JobApplication.id)).where(and_(*conditions))) or 0
        statement = (
            select(JobApplication)
            .where(and_(*conditions))
            .order_by(JobApplication.created_at.desc(), JobApplication.id.desc())
            .offset(offset)
        )
        if limit:
            statement = statement.limit(limit)
        return list(self.session.scalars(statement).all()), total

    def list_all_applications_for_job(self, job_id: int) -> list[JobApplication]:
        statement = select(JobApplication).where(JobApplication.job_id == job_id).order_by(JobApplication.id.asc())
        return list(self.session.scalars(statement).all())

    def application_status_counts(self, job_id: int) -> dict[str, int]:
        statement = (
            select(JobApplication.status, func.count(JobApplication.id))
            .where(JobApplication.job_id == job_id)
            .group_by(JobApplication.status)
        )
        counts = {"total": 0, "applied": 0, "not_applied": 0, "pending": 0}
        keys = {"Applied": "applied", "Not Applied": "not_applied", "Pending Response": "pending"}
        for status, count in self.session.execute(statement).all():
            counts["total"] += count
            if status in keys:
                counts[keys[status]] += count
        return counts

    def store_response(
        self,
        application_id: int,
        *,
        applied: bool,
        notes: str,
        now: datetime,
    ) -> bool:
        status: ApplicationStatus = "Applied" if applied else "Not Applied"
        values: dict[str, Any] = {
            "response_applied": applied,
            "response_date": now,
            "response_notes": notes,
            "response_at": now,
            "status": status,
            "updated_at": now,
        }
        if applied:
            values["applied_at"] = now
        result = self.session.execute(
            update(JobApplication)
            .where(and_(JobApplication.id == application_id, JobApplication.response_applied.is_(None)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return bool(result.rowcount)

    def store_link_click(self, application_id: int, *, now: datetime) -> None:
        self.session.execute(
            update(JobApplication)
            .where(JobApplication.id == application_id)
            .values(
                link_clicked=True,
                click_count=JobApplication.click_count + 1,
                link_clicked_at=func.coalesce(JobApplication.link_clicked_at, now),
                last_clicked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()

    def reload(self, instance: Any) -> Any:
        self.session.refresh(instance)
        return instance

    # journey

    def append_journey(
        self,
        *,
        application_id: int,
        action: JourneyAction,
        details: str = "",
        meta: RequestMeta | None = None,
    ) -> ApplicationJourneyEntry:
        meta = meta or RequestMeta()
        entry = ApplicationJourneyEntry(
            application_id=application_id,
            action=action,
            details=details,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            timestamp=datetime.now(UTC),
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_journey(self, application_id: int) -> list[ApplicationJourneyEntry]:
        statement = (
            select(ApplicationJourneyEntry)
            .where(ApplicationJourneyEntry.application_id == application_id)
            .order_by(ApplicationJourneyEntry.id.asc())
        )
        return list(self.session.scalars(statement).all())

    # views

    def get_view(self, job_id: int, student_id: int, session_id: str) -> JobView | None:
        statement = select(JobView).where(
            and_(
                JobView.job_id == job_id,
                JobView.student_id == student_id,
                JobView.session_id == session_id,
            )
        )
        return self.session.scalar(statement)

    def insert_view(self, view: JobView) -> JobView | None:
        try:
            with self.session.begin_nested():
                self.session.add(view)
        except IntegrityError:
            return None
        self.session.commit()
        self.session.refresh(view)
        return view

    def raise_view_duration(self, view_id: int, duration: float) -> None:
        self.session.execute(
            update(JobView)
            .where(JobView.id == view_id)
            .values(duration=case((JobView.duration < duration, duration), else_=JobView.duration))
            .execution_options(synchronize_session=False)
        )

    def save(self, instance: Any) -> Any:
        self.session.add(instance)
        self.session.commit()
        self.session.refresh(instance)
        return instance

    def list_views_for_job(self, job_id: int) -> list[JobView]:
        statement = select(JobView).where(JobView.job_id == job_id).order_by(JobView.viewed_at.desc())
        return list(self.session.scalars(statement).all())

    def list_views_for_student_job(self, job_id: int, student_id: int) -> list[JobView]:
        statement = (
            select(JobView)
            .where(and_(JobView.job_id == job_id, JobView.student_id == student_id))
            .order_by(JobView.viewed_at.desc())
        )
        return list(self.session.scalars(statement).all())

    def count_views_by_department(self, job_id: int) -> dict[int | None, int]:
        statement = (
            select(JobView.department_id, func.count(JobView.id))
            .where(JobView.job_id == job_id)
            .group_by(JobView.department_id)
        )
        return {department_id: count for department_id, count in self.session.execute(statement).all()}

    def count_applied_by_department(self, job_id: int) -> dict[int | None, int]:
        statement = (
            select(JobApplication.department_id, func.count(JobApplication.id))
            .where(and_(JobApplication.job_id == job_id, JobApplication.status == "Applied"))
            .group_by(JobApplication.department_id)
        )
        return {department_id: count for department_id, count in self.session.execute(statement).all()}
