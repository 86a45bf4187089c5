from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from placetrack.core.eligibility import evaluate, rules_for_job, snapshot_for_student
from placetrack.core.errors import NotFound, PermissionDenied, ValidationFailed
from placetrack.core.fanout import ApplicationFanout
from placetrack.core.lifecycle import apply_transition, as_utc, is_active_and_open, validate_transition
from placetrack.core.targeting import job_mentions_department, job_targets_department
from placetrack.db.models import Job, JobApplication, Student
from placetrack.db.repositories import Repository
from placetrack.types import (
    STAFF_ROLES,
    EligibilityVerdict,
    FanoutResult,
    Identity,
    JobCreate,
    JobFields,
    JobListFilters,
    JobUpdate,
)

logger = logging.getLogger(__name__)

VISIBLE_STATUSES: dict[str, tuple[str, ...] | None] = {
    "admin": None,
    "placement_director": None,
    "placement_staff": ("Active", "Closed", "Expired"),
    "department_hod": ("Active", "Closed"),
    "student": ("Active",),
}

_LIST_COLUMNS = {
    "key_responsibilities": "key_responsibilities_json",
    "requirements": "requirements_json",
    "skills_required": "skills_required_json",
    "other_requirements": "other_requirements_json",
    "work_environment_requirements": "work_environment_json",
    "benefits": "benefits_json",
    "education_qualifications": "education_qualifications_json",
    "target_departments": "target_departments_json",
}
_PLAIN_COLUMNS = (
    "title",
    "description",
    "location",
    "work_mode",
    "job_type",
    "start_date",
    "application_link",
    "number_of_openings",
    "posting_type",
)
_DICT_COLUMNS = {"salary": "salary_json", "stipend": "stipend_json", "probation": "probation_json"}


def job_columns(fields: dict[str, Any]) -> dict[str, Any]:
    # deadline is left to the caller, which takes it from the parsed payload
    values: dict[str, Any] = {}
    for key in _PLAIN_COLUMNS:
        if fields.get(key) is not None:
            values[key] = fields[key]
    for key, column in _LIST_COLUMNS.items():
        if fields.get(key) is not None:
            values[column] = list(fields[key])
    for key, column in _DICT_COLUMNS.items():
        if fields.get(key) is not None:
            values[column] = dict(fields[key])

    if fields.get("documents") is not None:
        values["documents_json"] = list(fields["documents"])

    company = fields.get("company")
    if company is not None:
        for key in ("name", "logo", "website", "about", "size", "industry", "founded"):
            values[f"company_{key}"] = company.get(key)

    eligibility = fields.get("eligibility")
    if eligibility is not None:
        values["eligibility_departments_json"] = list(eligibility.get("departments") or [])
        values["min_cgpa"] = eligibility.get("min_cgpa")
        values["max_backlogs"] = eligibility.get("max_backlogs")
        values["graduation_years_json"] = list(eligibility.get("graduation_years") or [])
        values["eligibility_skills_json"] = list(eligibility.get("skills") or [])
        values["experience_min"] = eligibility.get("experience_min") or 0.0
        values["experience_max"] = eligibility.get("experience_max")
    return values


@dataclass(slots=True)
class StudentJobView:
    job: Job
    verdict: EligibilityVerdict
    application: JobApplication | None = None


class JobService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = Repository(session)
        self.fanout = ApplicationFanout(session)

    # staff operations

    def create_job(self, payload: JobCreate, identity: Identity) -> tuple[Job, FanoutResult | None]:
        if identity.role not in STAFF_ROLES:
            raise PermissionDenied("You do not have permission to create jobs")

        self._check_deadline(payload.deadline)
        self._check_departments(payload)

        values = job_columns(payload.model_dump(mode="json"))
        values["deadline"] = as_utc(payload.deadline)
        values["status"] = payload.status
        values.setdefault("max_backlogs", 0)
        job = self.repo.create_job(created_by=identity.user_id, values=values)
        logger.info("Created job id=%s status=%s by user=%s", job.id, job.status, identity.user_id)

        fanout = None
        if job.status == "Active":
            fanout = self.fanout.fan_out(job.id)
            job = self.repo.reload(job)
        return job, fanout

    def update_job(self, job_id: int, payload: JobUpdate, identity: Identity) -> tuple[Job, FanoutResult | None]:
        job = self._job_for_staff(job_id, identity, action="update")

        fields = payload.model_dump(mode="json", exclude_unset=True)
        self._check_deadline(payload.deadline)
        self._check_departments(payload)

        requested = fields.pop("status", None)
        values = job_columns(fields)
        if payload.deadline is not None:
            values["deadline"] = as_utc(payload.deadline)
        became_active = False
        if requested is not None:
            validate_transition(job.status, requested)
            if requested == "Active" and job.status != "Active":
                self._check_deadline(values.get("deadline", job.deadline))
            became_active = apply_transition(job, requested)

        job = self.repo.update_job(job, values, updated_by=identity.user_id)
        logger.info("Updated job id=%s status=%s by user=%s", job.id, job.status, identity.user_id)

        fanout = None
        if became_active:
            fanout = self.fanout.fan_out(job.id)
            job = self.repo.reload(job)
        return job, fanout

    def delete_job(self, job_id: int, identity: Identity) -> None:
        self._job_for_staff(job_id, identity, action="delete")
        self.repo.delete_job(job_id)
        logger.info("Deleted job id=%s by user=%s", job_id, identity.user_id)

    # reads

    def list_jobs(self, identity: Identity, filters: JobListFilters) -> tuple[list[Job], int]:
        allowed = VISIBLE_STATUSES.get(identity.role, ("Active",))
        statuses: tuple[str, ...] | None = allowed
        if filters.status:
            if allowed is not None and filters.status not in allowed:
                return [], 0
            statuses = (filters.status,)

        student = self.student_for(identity) if identity.role == "student" else None
        jobs = self.repo.query_jobs(
            statuses=statuses,
            open_only=student is not None,
            search=filters.search.strip(),
            job_type=filters.job_type,
            sort_by=filters.sort_by,
            sort_order=filters.sort_order,
        )
        if student is not None:
            jobs = [job for job in jobs if job_targets_department(job, student.department_id)]
        if filters.department is not None:
            jobs = [job for job in jobs if job_mentions_department(job, filters.department)]

        total = len(jobs)
        if filters.all:
            return jobs, total
        offset = (filters.page - 1) * filters.limit
        return jobs[offset : offset + filters.limit], total

    def get_job_for(self, job_id: int, identity: Identity) -> Job:
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")

        if identity.role == "student":
            student = self.student_for(identity)
            if not is_active_and_open(job) or not job_targets_department(job, student.department_id):
                raise NotFound("Job not found")
            return job

        allowed = VISIBLE_STATUSES.get(identity.role, ("Active",))
        if allowed is not None and job.status not in allowed:
            raise PermissionDenied("You do not have access to this job")
        return job

    def student_view(self, job_id: int, identity: Identity) -> StudentJobView:
        student = self.student_for(identity)
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")
        if job.status != "Active":
            raise NotFound("Job not found")
        verdict = evaluate(rules_for_job(job), snapshot_for_student(student))
        application = self.repo.get_application_for(job.id, student.id)
        return StudentJobView(job=job, verdict=verdict, application=application)

    def student_dashboard(self, identity: Identity, filters: JobListFilters) -> tuple[list[StudentJobView], int]:
        student = self.student_for(identity)
        jobs, total = self.list_jobs(identity, filters)
        applications = self.repo.applications_by_job_for_student(student.id, [job.id for job in jobs])
        snapshot = snapshot_for_student(student)
        rows = [
            StudentJobView(
                job=job,
                verdict=evaluate(rules_for_job(job), snapshot),
                application=applications.get(job.id),
            )
            for job in jobs
        ]
        return rows, total

    def student_for(self, identity: Identity) -> Student:
        if identity.role != "student":
            raise PermissionDenied("Only students can perform this action")
        student = self.repo.get_student_by_user(identity.user_id)
        if student is None or not student.is_active:
            raise NotFound("Student profile not found")
        return student

    # helpers

    def _job_for_staff(self, job_id: int, identity: Identity, *, action: str) -> Job:
        if identity.role not in STAFF_ROLES:
            raise PermissionDenied(f"You do not have permission to {action} jobs")
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")
        if identity.role != "admin" and job.created_by != identity.user_id:
            raise PermissionDenied(f"You can only {action} jobs you created")
        return job

    def _check_deadline(self, deadline: datetime | None) -> None:
        if deadline is None:
            return
        if as_utc(deadline) <= datetime.now(UTC):
            raise ValidationFailed("Deadline must be in the future")

    def _check_departments(self, payload: JobFields) -> None:
        if payload.target_departments and self.repo.missing_department_ids(payload.target_departments):
            raise ValidationFailed("One or more selected departments are invalid")
        eligibility = payload.eligibility
        if eligibility is not None and eligibility.departments:
            if self.repo.missing_department_ids(eligibility.departments):
                raise ValidationFailed("One or more eligibility departments are invalid")
        if payload.posting_type == "Single Department" and payload.target_departments is not None:
            if len(set(payload.target_departments)) != 1:
                raise ValidationFailed("Single Department postings must target exactly one department")
