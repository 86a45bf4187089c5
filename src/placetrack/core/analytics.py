from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from placetrack.config import Settings, get_settings
from placetrack.core.engagement import engagement_score
from placetrack.core.errors import NotFound
from placetrack.core.lifecycle import as_utc
from placetrack.db.models import Job, JobApplication, JobView
from placetrack.db.repositories import Repository
from placetrack.types import CounterReport

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def response_time_hours(application: JobApplication) -> float | None:
    responded = as_utc(application.response_at)
    created = as_utc(application.created_at)
    if responded is None or created is None:
        return None
    return (responded - created).total_seconds() / 3600


class AnalyticsAggregator:
    def __init__(self, session: Session, *, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)

    def job_analytics(self, job_id: int) -> dict[str, Any]:
        job = self._job(job_id)
        applications = self.repo.list_all_applications_for_job(job_id)
        views = self.repo.list_views_for_job(job_id)
        return {
            "job": {
                "id": job.id,
                "title": job.title,
                "company": job.company_name,
                "status": job.status,
                "deadline": as_utc(job.deadline),
                "created_at": as_utc(job.created_at),
            },
            "overall_stats": self.overall_stats(job),
            "department_stats": self.department_application_stats(applications),
            "view_analytics": self.view_analytics(views),
            "department_view_stats": self.department_view_stats(views),
        }

    def overall_stats(self, job: Job) -> dict[str, Any]:
        return {
            "total_views": job.total_views,
            "total_applications": job.total_applications,
            "conversion_rate": _rate(job.total_applications, job.total_views),
        }

    def department_application_stats(self, applications: list[JobApplication]) -> list[dict[str, Any]]:
        grouped: dict[int | None, list[JobApplication]] = defaultdict(list)
        for application in applications:
            grouped[application.department_id].append(application)

        departments = self.repo.department_lookup(grouped.keys())
        rows: list[dict[str, Any]] = []
        for department_id, items in grouped.items():
            department = departments.get(department_id) if department_id is not None else None
            statuses = Counter(item.status for item in items)
            response_times = [hours for hours in map(response_time_hours, items) if hours is not None]
            rows.append(
                {
                    "department_id": department_id,
                    "department_name": department.name if department else "Unassigned",
                    "department_code": department.code if department else "",
                    "total_students": len(items),
                    "applied_count": statuses.get("Applied", 0),
                    "not_applied_count": statuses.get("Not Applied", 0),
                    "pending_count": statuses.get("Pending Response", 0),
                    "eligible_count": sum(1 for item in items if item.eligibility_is_eligible),
                    "application_rate": _rate(statuses.get("Applied", 0), len(items)),
                    "avg_response_time_hours": _mean(response_times),
                }
            )
        rows.sort(key=lambda row: row["department_name"])
        return rows

    def view_analytics(self, views: list[JobView]) -> dict[str, Any]:
        total = len(views)
        if not total:
            return {
                "total_views": 0,
                "unique_student_count": 0,
                "avg_duration": None,
                "avg_engagement_score": None,
                "scroll_completion_rate": 0.0,
                "apply_click_rate": 0.0,
                "company_click_rate": 0.0,
                "device_distribution": {},
                "hourly_distribution": {},
            }

        hours = Counter(as_utc(view.viewed_at).hour for view in views)
        return {
            "total_views": total,
            "unique_student_count": len({view.student_id for view in views}),
            "avg_duration": _mean([float(view.duration or 0) for view in views]),
            "avg_engagement_score": _mean([float(engagement_score(view)) for view in views]),
            "scroll_completion_rate": _rate(sum(1 for view in views if view.scrolled_to_bottom), total),
            "apply_click_rate": _rate(sum(1 for view in views if view.clicked_apply_button), total),
            "company_click_rate": _rate(sum(1 for view in views if view.clicked_company_link), total),
            "device_distribution": dict(Counter(view.device_type for view in views)),
            "hourly_distribution": {str(hour): count for hour, count in sorted(hours.items())},
        }

    def department_view_stats(self, views: list[JobView], now: datetime | None = None) -> list[dict[str, Any]]:
        now = now or datetime.now(UTC)
        recent_cutoff = now - timedelta(hours=self.settings.recent_view_window_hours)

        grouped: dict[int | None, list[JobView]] = defaultdict(list)
        for view in views:
            grouped[view.department_id].append(view)

        departments = self.repo.department_lookup(grouped.keys())
        rows: list[dict[str, Any]] = []
        for department_id, items in grouped.items():
            department = departments.get(department_id) if department_id is not None else None
            students = {item.student_id for item in items}
            rows.append(
                {
                    "department_id": department_id,
                    "department_name": department.name if department else "Unassigned",
                    "department_code": department.code if department else "",
                    "total_views": len(items),
                    "unique_student_count": len(students),
                    "avg_duration": _mean([float(item.duration or 0) for item in items]),
                    "avg_engagement_score": _mean([float(engagement_score(item)) for item in items]),
                    "recent_views": sum(1 for item in items if as_utc(item.viewed_at) >= recent_cutoff),
                    "views_per_student": round(len(items) / len(students), 2),
                }
            )
        rows.sort(key=lambda row: row["total_views"], reverse=True)
        return rows

    def reconcile_counters(self, job_id: int, *, repair: bool = False) -> CounterReport:
        job = self._job(job_id)
        views_by_department = self.repo.count_views_by_department(job_id)
        applied_by_department = self.repo.count_applied_by_department(job_id)

        actual: dict[int, dict[str, int]] = defaultdict(lambda: {"views": 0, "applications": 0})
        for department_id, count in views_by_department.items():
            if department_id is not None:
                actual[department_id]["views"] = count
        for department_id, count in applied_by_department.items():
            if department_id is not None:
                actual[department_id]["applications"] = count

        stored = {row.department_id: {"views": row.views, "applications": row.applications}
                  for row in self.repo.list_department_stats(job_id)}

        drift: dict[int, dict[str, int]] = {}
        for department_id in sorted(set(actual) | set(stored)):
            want = actual.get(department_id, {"views": 0, "applications": 0})
            have = stored.get(department_id, {"views": 0, "applications": 0})
            if want != have:
                drift[department_id] = {
                    "views": have["views"] - want["views"],
                    "applications": have["applications"] - want["applications"],
                }

        report = CounterReport(
            job_id=job_id,
            stored_total_views=job.total_views,
            actual_total_views=sum(views_by_department.values()),
            stored_total_applications=job.total_applications,
            actual_total_applications=sum(applied_by_department.values()),
            department_drift=drift,
            consistent=False,
        )
        report.consistent = (
            report.stored_total_views == report.actual_total_views
            and report.stored_total_applications == report.actual_total_applications
            and not drift
        )

        if not report.consistent:
            logger.warning(
                "Counter drift job_id=%s views=%s/%s applications=%s/%s departments=%s",
                job_id,
                report.stored_total_views,
                report.actual_total_views,
                report.stored_total_applications,
                report.actual_total_applications,
                len(drift),
            )
            if repair:
                self.repo.overwrite_counters(
                    job_id,
                    total_views=report.actual_total_views,
                    total_applications=report.actual_total_applications,
                    department_counts=dict(actual),
                )
                report.repaired = True
        return report

    def _job(self, job_id: int) -> Job:
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")
        return job
