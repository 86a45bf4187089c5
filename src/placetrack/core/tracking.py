from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from placetrack.core.eligibility import build_eligibility_check, rules_for_job, snapshot_for_student
from placetrack.core.errors import NotFound, StateConflict, ValidationFailed
from placetrack.core.lifecycle import is_active_and_open
from placetrack.db.models import JobApplication, JobView, Student
from placetrack.db.repositories import Repository
from placetrack.types import RequestMeta, ViewData, ViewInteractions, ViewOutcome

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 500


@dataclass(slots=True)
class RespondCheck:
    can_respond: bool
    reason: str | None = None


def can_respond(application: JobApplication, now: datetime | None = None) -> RespondCheck:
    job = application.job
    if job is None or not is_active_and_open(job, now):
        return RespondCheck(False, "Job is no longer active or has expired")
    if application.response_applied is not None:
        return RespondCheck(False, "Student has already responded")
    return RespondCheck(True)


def _merge_interactions(view: JobView, interactions: ViewInteractions) -> None:
    # flags only ever switch on; section times and downloads take the newer report
    view.scrolled_to_bottom = view.scrolled_to_bottom or interactions.scrolled_to_bottom
    view.clicked_apply_button = view.clicked_apply_button or interactions.clicked_apply_button
    view.clicked_company_link = view.clicked_company_link or interactions.clicked_company_link
    if interactions.downloaded_documents:
        view.downloaded_documents_json = [
            doc.model_dump(mode="json") for doc in interactions.downloaded_documents
        ]
    sections = dict(view.section_time_json or {})
    for section, seconds in interactions.time_spent_on_sections.model_dump().items():
        if seconds:
            sections[section] = seconds
    view.section_time_json = sections


class TrackingService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = Repository(session)

    def record_view(
        self,
        *,
        job_id: int,
        student: Student,
        session_id: str,
        view_data: ViewData,
        meta: RequestMeta | None = None,
    ) -> ViewOutcome:
        meta = meta or RequestMeta()
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")

        now = datetime.now(UTC)
        interactions = view_data.interactions or ViewInteractions()
        view = self.repo.get_view(job_id, student.id, session_id)
        view_created = False
        if view is None:
            candidate = JobView(
                job_id=job_id,
                student_id=student.id,
                user_id=student.user_id,
                department_id=student.department_id,
                batch=student.batch,
                view_type=view_data.view_type,
                session_id=session_id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                device_type=view_data.device.type,
                device_browser=view_data.device.browser,
                device_os=view_data.device.os,
                duration=view_data.duration,
                referrer_source=view_data.referrer.source,
                referrer_url=view_data.referrer.url,
                context_json=view_data.context.model_dump(),
                viewed_at=now,
                last_interaction_at=now,
            )
            _merge_interactions(candidate, interactions)
            view = self.repo.insert_view(candidate)
            if view is not None:
                view_created = True
            else:
                view = self.repo.get_view(job_id, student.id, session_id)
                if view is None:
                    raise StateConflict("Job view could not be recorded")

        if not view_created:
            clicked_before = view.clicked_apply_button
            _merge_interactions(view, interactions)
            view.last_interaction_at = now
            self.repo.raise_view_duration(view.id, view_data.duration)
            view = self.repo.save(view)
        else:
            clicked_before = False

        application, application_created = self._ensure_application(job_id=job_id, student=student)

        if view_created:
            self.repo.increment_view_count(job_id, student.department_id)

        self.repo.append_journey(
            application_id=application.id,
            action="Viewed",
            details=f"Job viewed - {view_data.view_type}",
            meta=meta,
        )
        if view.clicked_apply_button and not clicked_before:
            self.repo.append_journey(
                application_id=application.id,
                action="Clicked Apply",
                details="Student clicked the apply button",
                meta=meta,
            )

        logger.info(
            "Recorded view job_id=%s student_id=%s new_view=%s new_application=%s",
            job_id,
            student.id,
            view_created,
            application_created,
        )
        return ViewOutcome(
            view_id=view.id,
            application_id=application.id,
            eligibility_status="Eligible" if application.eligibility_is_eligible else "Not Eligible",
            view_created=view_created,
            application_created=application_created,
        )

    def _ensure_application(self, *, job_id: int, student: Student) -> tuple[JobApplication, bool]:
        existing = self.repo.get_application_for(job_id, student.id)
        if existing is not None:
            return existing, False
        job = self.repo.get_job(job_id)
        check = build_eligibility_check(rules_for_job(job), snapshot_for_student(student))
        return self.repo.ensure_application(job_id=job_id, student=student, check=check)

    def record_response(
        self,
        *,
        application_id: int,
        applied: bool,
        notes: str = "",
        meta: RequestMeta | None = None,
    ) -> JobApplication:
        if not isinstance(applied, bool):
            raise ValidationFailed("Applied status must be true or false")
        notes = (notes or "").strip()
        if len(notes) > NOTES_MAX_LENGTH:
            raise ValidationFailed(f"Notes cannot exceed {NOTES_MAX_LENGTH} characters")

        application = self.repo.get_application(application_id)
        if application is None:
            raise NotFound("Job application record not found")
        # expiry is applied on load before the response window is checked
        self.repo.get_job(application.job_id)

        now = datetime.now(UTC)
        check = can_respond(application, now)
        if not check.can_respond:
            raise StateConflict(check.reason or "Response not allowed")

        if not self.repo.store_response(application_id, applied=applied, notes=notes, now=now):
            raise StateConflict("Student has already responded")

        outcome = "Applied" if applied else "Not Applied"
        self.repo.append_journey(
            application_id=application_id,
            action="Responded",
            details=f"Student responded: {outcome}",
            meta=meta,
        )
        if applied:
            self.repo.increment_application_count(application.job_id, application.department_id)

        logger.info("Recorded response application_id=%s applied=%s", application_id, applied)
        return self.repo.reload(application)

    def record_link_click(self, *, application_id: int, meta: RequestMeta | None = None) -> JobApplication:
        application = self.repo.get_application(application_id)
        if application is None:
            raise NotFound("Job application record not found")

        self.repo.store_link_click(application_id, now=datetime.now(UTC))
        self.repo.append_journey(
            application_id=application_id,
            action="Visited External Link",
            details="Student clicked on application link",
            meta=meta,
        )
        return self.repo.reload(application)
