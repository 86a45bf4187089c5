from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from placetrack.core.engagement import engagement_score, format_duration
from placetrack.core.lifecycle import as_utc, days_until_deadline, is_active_and_open
from placetrack.db.models import ApplicationJourneyEntry, Job, JobApplication, JobView
from placetrack.types import ApplicationStatus, EligibilityVerdict, FanoutResult, JourneyAction


class DepartmentResponse(BaseModel):
    id: int
    name: str
    code: str
    description: str = ""


class DepartmentStatResponse(BaseModel):
    department_id: int
    views: int
    applications: int


class JobResponse(BaseModel):
    id: int
    title: str
    company: dict[str, Any]
    description: str
    key_responsibilities: list[str]
    requirements: list[str]
    skills_required: list[str]
    other_requirements: list[str]
    location: str
    work_mode: str
    job_type: str
    start_date: str
    application_link: str
    deadline: datetime
    salary: dict[str, Any]
    stipend: dict[str, Any]
    probation: dict[str, Any]
    number_of_openings: int
    work_environment_requirements: list[str]
    benefits: list[str]
    education_qualifications: list[str]
    documents: list[dict[str, Any]]
    eligibility: dict[str, Any]
    posting_type: str
    target_departments: list[int]
    status: str
    total_views: int
    total_applications: int
    department_stats: list[DepartmentStatResponse] = Field(default_factory=list)
    created_by: int
    updated_by: int | None = None
    published_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    days_until_deadline: int
    is_open: bool

    @classmethod
    def from_row(cls, job: Job) -> JobResponse:
        return cls(
            id=job.id,
            title=job.title,
            company={
                "name": job.company_name,
                "logo": job.company_logo,
                "website": job.company_website,
                "about": job.company_about,
                "size": job.company_size,
                "industry": job.company_industry,
                "founded": job.company_founded,
            },
            description=job.description,
            key_responsibilities=job.key_responsibilities_json or [],
            requirements=job.requirements_json or [],
            skills_required=job.skills_required_json or [],
            other_requirements=job.other_requirements_json or [],
            location=job.location,
            work_mode=job.work_mode,
            job_type=job.job_type,
            start_date=job.start_date,
            application_link=job.application_link,
            deadline=as_utc(job.deadline),
            salary=job.salary_json or {},
            stipend=job.stipend_json or {},
            probation=job.probation_json or {},
            number_of_openings=job.number_of_openings,
            work_environment_requirements=job.work_environment_json or [],
            benefits=job.benefits_json or [],
            education_qualifications=job.education_qualifications_json or [],
            documents=job.documents_json or [],
            eligibility={
                "departments": job.eligibility_departments_json or [],
                "min_cgpa": job.min_cgpa,
                "max_backlogs": job.max_backlogs,
                "graduation_years": job.graduation_years_json or [],
                "skills": job.eligibility_skills_json or [],
                "experience_min": job.experience_min,
                "experience_max": job.experience_max,
            },
            posting_type=job.posting_type,
            target_departments=job.target_departments_json or [],
            status=job.status,
            total_views=job.total_views,
            total_applications=job.total_applications,
            department_stats=[
                DepartmentStatResponse(
                    department_id=row.department_id,
                    views=row.views,
                    applications=row.applications,
                )
                for row in job.department_stats
            ],
            created_by=job.created_by,
            updated_by=job.updated_by,
            published_at=as_utc(job.published_at),
            closed_at=as_utc(job.closed_at),
            created_at=as_utc(job.created_at),
            updated_at=as_utc(job.updated_at),
            days_until_deadline=days_until_deadline(job),
            is_open=is_active_and_open(job),
        )


class JobWriteResponse(BaseModel):
    job: JobResponse
    fanout: FanoutResult | None = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    limit: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total: int, show_all: bool = False) -> Pagination:
        if show_all:
            return cls(
                current_page=1,
                total_pages=1,
                total_items=total,
                limit=total,
                has_next_page=False,
                has_prev_page=False,
            )
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            limit=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    pagination: Pagination


class StudentJobResponse(BaseModel):
    job: JobResponse
    eligibility: EligibilityVerdict
    application_id: int | None = None
    application_status: ApplicationStatus | None = None
    has_responded: bool = False


class StudentDashboardResponse(BaseModel):
    jobs: list[StudentJobResponse]
    pagination: Pagination


class ResponseRequest(BaseModel):
    # checked by the tracking service so a non-boolean gets the domain message
    applied: Any = None
    notes: str = ""


class JourneyEntryResponse(BaseModel):
    action: JourneyAction
    details: str
    timestamp: datetime
    ip_address: str
    user_agent: str

    @classmethod
    def from_row(cls, entry: ApplicationJourneyEntry) -> JourneyEntryResponse:
        return cls(
            action=entry.action,
            details=entry.details,
            timestamp=as_utc(entry.timestamp),
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
        )


class ApplicationResponse(BaseModel):
    id: int
    job_id: int
    student_id: int
    user_id: int
    department_id: int | None
    batch: str
    status: ApplicationStatus
    applied_at: datetime | None = None
    response_at: datetime | None = None
    student_response: dict[str, Any]
    link_clicked: bool
    link_clicked_at: datetime | None = None
    click_count: int
    last_clicked_at: datetime | None = None
    eligibility_check: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def fields_from_row(cls, application: JobApplication) -> dict[str, Any]:
        return {
            "id": application.id,
            "job_id": application.job_id,
            "student_id": application.student_id,
            "user_id": application.user_id,
            "department_id": application.department_id,
            "batch": application.batch,
            "status": application.status,
            "applied_at": as_utc(application.applied_at),
            "response_at": as_utc(application.response_at),
            "student_response": {
                "applied": application.response_applied,
                "response_date": as_utc(application.response_date),
                "notes": application.response_notes,
            },
            "link_clicked": application.link_clicked,
            "link_clicked_at": as_utc(application.link_clicked_at),
            "click_count": application.click_count,
            "last_clicked_at": as_utc(application.last_clicked_at),
            "eligibility_check": {
                "is_eligible": application.eligibility_is_eligible,
                "reasons": application.eligibility_reasons_json or [],
                "checked_at": as_utc(application.eligibility_checked_at),
                "criteria": application.eligibility_criteria_json or {},
            },
            "created_at": as_utc(application.created_at),
            "updated_at": as_utc(application.updated_at),
        }

    @classmethod
    def from_row(cls, application: JobApplication) -> ApplicationResponse:
        return cls(**cls.fields_from_row(application))


class JobViewResponse(BaseModel):
    id: int
    view_type: str
    session_id: str
    duration: float
    duration_label: str
    engagement_score: int
    device: dict[str, str]
    interactions: dict[str, Any]
    referrer: dict[str, str]
    viewed_at: datetime
    last_interaction_at: datetime | None = None

    @classmethod
    def from_row(cls, view: JobView) -> JobViewResponse:
        return cls(
            id=view.id,
            view_type=view.view_type,
            session_id=view.session_id,
            duration=view.duration,
            duration_label=format_duration(view.duration),
            engagement_score=engagement_score(view),
            device={"type": view.device_type, "browser": view.device_browser, "os": view.device_os},
            interactions={
                "scrolled_to_bottom": view.scrolled_to_bottom,
                "clicked_apply_button": view.clicked_apply_button,
                "clicked_company_link": view.clicked_company_link,
                "downloaded_documents": view.downloaded_documents_json or [],
                "time_spent_on_sections": view.section_time_json or {},
            },
            referrer={"source": view.referrer_source, "url": view.referrer_url},
            viewed_at=as_utc(view.viewed_at),
            last_interaction_at=as_utc(view.last_interaction_at),
        )


class ApplicationDetailResponse(ApplicationResponse):
    job_title: str
    company_name: str
    journey: list[JourneyEntryResponse]
    views: list[JobViewResponse]


class MyApplicationResponse(ApplicationResponse):
    job_title: str
    company_name: str
    job_status: str
    deadline: datetime


class MyApplicationListResponse(BaseModel):
    applications: list[MyApplicationResponse]
    pagination: Pagination


class ApplicationStatistics(BaseModel):
    total: int
    applied: int
    not_applied: int
    pending: int


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    pagination: Pagination
    statistics: ApplicationStatistics
