from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from placetrack.api.deps import get_db, get_identity, get_request_meta, get_session_id, require_roles
from placetrack.api.schemas import (
    ApplicationDetailResponse,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationStatistics,
    DepartmentResponse,
    JobListResponse,
    JobResponse,
    JobViewResponse,
    JobWriteResponse,
    JourneyEntryResponse,
    MyApplicationListResponse,
    MyApplicationResponse,
    Pagination,
    ResponseRequest,
    StudentDashboardResponse,
    StudentJobResponse,
)
from placetrack.config import get_settings
from placetrack.core.analytics import AnalyticsAggregator
from placetrack.core.errors import NotFound, PermissionDenied
from placetrack.core.jobs import JobService, StudentJobView
from placetrack.core.lifecycle import as_utc
from placetrack.core.tracking import TrackingService
from placetrack.db.repositories import Repository
from placetrack.types import (
    JOB_STATUSES,
    JOB_TYPES,
    MONITOR_ROLES,
    STAFF_ROLES,
    CounterReport,
    Identity,
    JobCreate,
    JobListFilters,
    JobUpdate,
    RequestMeta,
    ViewData,
    ViewOutcome,
)

router = APIRouter(prefix="/api", tags=["api"])

require_staff = require_roles(*STAFF_ROLES)
require_monitor = require_roles(*MONITOR_ROLES)
require_student = require_roles("student")


def _page_size(limit: int | None) -> int:
    settings = get_settings()
    if limit is None:
        return settings.default_page_size
    return min(limit, settings.max_page_size)


def _student_job(row: StudentJobView) -> StudentJobResponse:
    application = row.application
    return StudentJobResponse(
        job=JobResponse.from_row(row.job),
        eligibility=row.verdict,
        application_id=application.id if application else None,
        application_status=application.status if application else None,
        has_responded=application is not None and application.response_applied is not None,
    )


def _list_filters(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    all: bool = False,
    search: str = "",
    status: str = "",
    department: int | None = None,
    job_type: str = "",
    sort_by: str = "createdAt",
    sort_order: Literal["asc", "desc"] = "desc",
) -> JobListFilters:
    return JobListFilters(
        page=page,
        limit=_page_size(limit),
        all=all,
        search=search,
        status=status,
        department=department,
        job_type=job_type,
        sort_by=sort_by,
        sort_order=sort_order,
    )


# job management


@router.post("/jobs", response_model=JobWriteResponse, status_code=201)
def create_job(
    payload: JobCreate,
    identity: Identity = Depends(require_staff),
    db: Session = Depends(get_db),
) -> JobWriteResponse:
    job, fanout = JobService(db).create_job(payload, identity)
    return JobWriteResponse(job=JobResponse.from_row(job), fanout=fanout)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    filters: JobListFilters = Depends(_list_filters),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> JobListResponse:
    jobs, total = JobService(db).list_jobs(identity, filters)
    return JobListResponse(
        jobs=[JobResponse.from_row(job) for job in jobs],
        pagination=Pagination.build(page=filters.page, limit=filters.limit, total=total, show_all=filters.all),
    )


@router.get("/jobs/student", response_model=StudentDashboardResponse)
def student_dashboard(
    filters: JobListFilters = Depends(_list_filters),
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
) -> StudentDashboardResponse:
    rows, total = JobService(db).student_dashboard(identity, filters)
    return StudentDashboardResponse(
        jobs=[_student_job(row) for row in rows],
        pagination=Pagination.build(page=filters.page, limit=filters.limit, total=total, show_all=filters.all),
    )


# lookups


@router.get("/jobs/utils/departments", response_model=list[DepartmentResponse])
def list_departments(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> list[DepartmentResponse]:
    rows = Repository(db).list_departments(active_only=True)
    return [
        DepartmentResponse(id=row.id, name=row.name, code=row.code, description=row.description)
        for row in rows
    ]


@router.get("/jobs/utils/job-types")
def list_job_types(identity: Identity = Depends(get_identity)) -> dict[str, list[str]]:
    return {"job_types": list(JOB_TYPES)}


@router.get("/jobs/utils/job-statuses")
def list_job_statuses(identity: Identity = Depends(get_identity)) -> dict[str, list[str]]:
    return {"job_statuses": list(JOB_STATUSES)}


# applications


@router.get("/jobs/applications/my", response_model=MyApplicationListResponse)
def my_applications(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    status: str = "",
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
) -> MyApplicationListResponse:
    student = JobService(db).student_for(identity)
    size = _page_size(limit)
    rows, total = Repository(db).list_applications_for_student(
        student.id,
        status=status,
        offset=(page - 1) * size,
        limit=size,
    )
    return MyApplicationListResponse(
        applications=[
            MyApplicationResponse(
                **ApplicationResponse.fields_from_row(row),
                job_title=row.job.title,
                company_name=row.job.company_name,
                job_status=row.job.status,
                deadline=as_utc(row.job.deadline),
            )
            for row in rows
        ],
        pagination=Pagination.build(page=page, limit=size, total=total),
    )


@router.get("/jobs/applications/{application_id}", response_model=ApplicationDetailResponse)
def get_application(
    application_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> ApplicationDetailResponse:
    repo = Repository(db)
    application = repo.get_application(application_id)
    if application is None:
        raise NotFound("Job application record not found")
    if identity.role not in MONITOR_ROLES and application.user_id != identity.user_id:
        raise PermissionDenied("You do not have access to this application")

    views = repo.list_views_for_student_job(application.job_id, application.student_id)
    return ApplicationDetailResponse(
        **ApplicationResponse.fields_from_row(application),
        job_title=application.job.title,
        company_name=application.job.company_name,
        journey=[JourneyEntryResponse.from_row(entry) for entry in repo.list_journey(application.id)],
        views=[JobViewResponse.from_row(view) for view in views],
    )


# single job


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> JobResponse:
    return JobResponse.from_row(JobService(db).get_job_for(job_id, identity))


@router.put("/jobs/{job_id}", response_model=JobWriteResponse)
def update_job(
    job_id: int,
    payload: JobUpdate,
    identity: Identity = Depends(require_staff),
    db: Session = Depends(get_db),
) -> JobWriteResponse:
    job, fanout = JobService(db).update_job(job_id, payload, identity)
    return JobWriteResponse(job=JobResponse.from_row(job), fanout=fanout)


@router.delete("/jobs/{job_id}")
def delete_job(
    job_id: int,
    identity: Identity = Depends(require_staff),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    JobService(db).delete_job(job_id, identity)
    return {"job_id": job_id, "deleted": True}


@router.get("/jobs/{job_id}/student-view", response_model=StudentJobResponse)
def student_view(
    job_id: int,
    identity: Identity = Depends(require_student),
    db: Session = Depends(get_db),
) -> StudentJobResponse:
    return _student_job(JobService(db).student_view(job_id, identity))


# tracking


@router.post("/jobs/{job_id}/view", response_model=ViewOutcome)
def record_view(
    job_id: int,
    payload: ViewData,
    identity: Identity = Depends(require_student),
    session_id: str = Depends(get_session_id),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
) -> ViewOutcome:
    student = JobService(db).student_for(identity)
    return TrackingService(db).record_view(
        job_id=job_id,
        student=student,
        session_id=session_id,
        view_data=payload,
        meta=meta,
    )


@router.post("/jobs/{job_id}/application-click", response_model=ApplicationResponse)
def record_application_click(
    job_id: int,
    identity: Identity = Depends(require_student),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
) -> ApplicationResponse:
    student = JobService(db).student_for(identity)
    application = Repository(db).get_application_for(job_id, student.id)
    if application is None:
        raise NotFound("Job application record not found")
    updated = TrackingService(db).record_link_click(application_id=application.id, meta=meta)
    return ApplicationResponse.from_row(updated)


@router.post("/jobs/{job_id}/response", response_model=ApplicationResponse)
def record_response(
    job_id: int,
    payload: ResponseRequest,
    identity: Identity = Depends(require_student),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
) -> ApplicationResponse:
    student = JobService(db).student_for(identity)
    application = Repository(db).get_application_for(job_id, student.id)
    if application is None:
        raise NotFound("Job application record not found")
    updated = TrackingService(db).record_response(
        application_id=application.id,
        applied=payload.applied,
        notes=payload.notes,
        meta=meta,
    )
    return ApplicationResponse.from_row(updated)


# monitoring


@router.get("/jobs/{job_id}/applications", response_model=ApplicationListResponse)
def list_job_applications(
    job_id: int,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    status: str = "",
    department: int | None = None,
    identity: Identity = Depends(require_monitor),
    db: Session = Depends(get_db),
) -> ApplicationListResponse:
    repo = Repository(db)
    if repo.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    size = _page_size(limit)
    rows, total = repo.list_applications_for_job(
        job_id,
        status=status,
        department_id=department,
        offset=(page - 1) * size,
        limit=size,
    )
    return ApplicationListResponse(
        applications=[ApplicationResponse.from_row(row) for row in rows],
        pagination=Pagination.build(page=page, limit=size, total=total),
        statistics=ApplicationStatistics(**repo.application_status_counts(job_id)),
    )


@router.get("/jobs/{job_id}/analytics")
def job_analytics(
    job_id: int,
    identity: Identity = Depends(require_monitor),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return AnalyticsAggregator(db).job_analytics(job_id)


@router.get("/jobs/{job_id}/reconciliation", response_model=CounterReport)
def check_job_counters(
    job_id: int,
    identity: Identity = Depends(require_staff),
    db: Session = Depends(get_db),
) -> CounterReport:
    return AnalyticsAggregator(db).reconcile_counters(job_id)


@router.post("/jobs/{job_id}/reconciliation", response_model=CounterReport)
def repair_job_counters(
    job_id: int,
    identity: Identity = Depends(require_staff),
    db: Session = Depends(get_db),
) -> CounterReport:
    return AnalyticsAggregator(db).reconcile_counters(job_id, repair=True)
