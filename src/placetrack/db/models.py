from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from placetrack.core.lifecycle import sync_job_lifecycle
from placetrack.db.base import Base, TimestampMixin, utcnow


class Department(TimestampMixin, Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)


class Student(TimestampMixin, Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    student_code: Mapped[str] = mapped_column(String(60), default="", nullable=False)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"), index=True, nullable=True
    )
    cgpa: Mapped[float | None] = mapped_column(Float, nullable=True)
    backlogs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    batch: Mapped[str] = mapped_column(String(60), default="", nullable=False)
    graduation_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)


class Job(TimestampMixin, Base):
    __tablename__ = "jobs"
    __table_args__ = (Index("ix_jobs_status_deadline", "status", "deadline"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    company_logo: Mapped[str] = mapped_column(String(600), default="", nullable=False)
    company_website: Mapped[str] = mapped_column(String(600), default="", nullable=False)
    company_about: Mapped[str] = mapped_column(Text, default="", nullable=False)
    company_size: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    company_industry: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    company_founded: Mapped[int | None] = mapped_column(Integer, nullable=True)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    key_responsibilities_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    requirements_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    skills_required_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    other_requirements_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    work_mode: Mapped[str] = mapped_column(String(40), default="Work from office", nullable=False)
    job_type: Mapped[str] = mapped_column(String(40), default="Full-time", nullable=False)
    start_date: Mapped[str] = mapped_column(String(40), default="Immediately", nullable=False)
    application_link: Mapped[str] = mapped_column(String(800), nullable=False)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    salary_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    stipend_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    probation_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    number_of_openings: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    work_environment_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    benefits_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    education_qualifications_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    documents_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    eligibility_departments_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    min_cgpa: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_backlogs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    graduation_years_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    eligibility_skills_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    experience_min: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    experience_max: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="Draft", nullable=False, index=True)
    posting_type: Mapped[str] = mapped_column(String(40), nullable=False)
    target_departments_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)

    total_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_applications: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_by: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    updated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    department_stats: Mapped[list[JobDepartmentStat]] = relationship(
        order_by="JobDepartmentStat.department_id", viewonly=True
    )


class JobDepartmentStat(Base):
    __tablename__ = "job_department_stats"
    __table_args__ = (UniqueConstraint("job_id", "department_id", name="uq_job_department_stat"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    department_id: Mapped[int] = mapped_column(Integer, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    applications: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class JobApplication(TimestampMixin, Base):
    __tablename__ = "job_applications"
    __table_args__ = (
        UniqueConstraint("job_id", "student_id", name="uq_job_application_student"),
        Index("ix_job_applications_job_status", "job_id", "status"),
        Index("ix_job_applications_job_department", "job_id", "department_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    department_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    batch: Mapped[str] = mapped_column(String(60), default="", nullable=False)

    status: Mapped[str] = mapped_column(String(30), default="Pending Response", nullable=False)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    response_applied: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    response_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_notes: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    link_clicked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    link_clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    eligibility_is_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False)
    eligibility_reasons_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    eligibility_checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    eligibility_criteria_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    job: Mapped[Job] = relationship()
    journey: Mapped[list[ApplicationJourneyEntry]] = relationship(
        order_by="ApplicationJourneyEntry.id", viewonly=True
    )


class ApplicationJourneyEntry(Base):
    __tablename__ = "application_journey"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("job_applications.id", ondelete="CASCADE"), index=True
    )
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    details: Mapped[str] = mapped_column(Text, default="", nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class JobView(TimestampMixin, Base):
    __tablename__ = "job_views"
    __table_args__ = (
        UniqueConstraint("job_id", "student_id", "session_id", name="uq_job_view_session"),
        Index("ix_job_views_job_department", "job_id", "department_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    department_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    batch: Mapped[str] = mapped_column(String(60), default="", nullable=False)

    view_type: Mapped[str] = mapped_column(String(30), default="Detail View", nullable=False)
    session_id: Mapped[str] = mapped_column(String(255), default="", nullable=False, index=True)
    ip_address: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    device_type: Mapped[str] = mapped_column(String(20), default="Unknown", nullable=False)
    device_browser: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    device_os: Mapped[str] = mapped_column(String(120), default="", nullable=False)

    duration: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    scrolled_to_bottom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    clicked_apply_button: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    clicked_company_link: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    downloaded_documents_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    section_time_json: Mapped[dict[str, float]] = mapped_column(JSON, default=dict, nullable=False)

    referrer_source: Mapped[str] = mapped_column(String(40), default="Direct", nullable=False)
    referrer_url: Mapped[str] = mapped_column(String(800), default="", nullable=False)
    context_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_interaction_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


@event.listens_for(Job, "before_insert")
@event.listens_for(Job, "before_update")
def _job_lifecycle_on_save(mapper, connection, target: Job) -> None:
    sync_job_lifecycle(target)
