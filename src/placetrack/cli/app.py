from __future__ import annotations

import json

import typer
import uvicorn
from sqlalchemy.exc import IntegrityError

from placetrack.api.app import create_app
from placetrack.config import get_settings
from placetrack.core.analytics import AnalyticsAggregator
from placetrack.core.errors import PlacementError
from placetrack.core.fanout import ApplicationFanout
from placetrack.db.init import init_database
from placetrack.db.repositories import Repository
from placetrack.db.session import SessionLocal
from placetrack.logging_config import configure_logging

app = typer.Typer(help="PlaceTrack CLI")
departments_app = typer.Typer(help="Department directory")
students_app = typer.Typer(help="Student directory")
jobs_app = typer.Typer(help="Job maintenance commands")

app.add_typer(departments_app, name="departments")
app.add_typer(students_app, name="students")
app.add_typer(jobs_app, name="jobs")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


@app.command("init")
def init_cmd() -> None:
    """Initialize the data directory and database schema."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@departments_app.command("add")
def departments_add(
    name: str = typer.Option(..., "--name"),
    code: str = typer.Option(..., "--code"),
    description: str = typer.Option("", "--description"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            department = Repository(db).create_department(name=name, code=code, description=description)
        except IntegrityError as exc:
            raise typer.BadParameter(f"department {name!r} or code {code!r} already exists") from exc
        typer.echo(json.dumps({"id": department.id, "name": department.name, "code": department.code}, indent=2))


@departments_app.command("list")
def departments_list(active_only: bool = typer.Option(False, "--active-only")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = Repository(db).list_departments(active_only=active_only)
        typer.echo(
            json.dumps(
                [{"id": row.id, "name": row.name, "code": row.code, "is_active": row.is_active} for row in rows],
                indent=2,
            )
        )


@students_app.command("add")
def students_add(
    user_id: int = typer.Option(..., "--user-id"),
    department_id: int = typer.Option(..., "--department-id"),
    full_name: str = typer.Option("", "--name"),
    cgpa: float | None = typer.Option(None, "--cgpa"),
    backlogs: int | None = typer.Option(None, "--backlogs"),
    batch: str = typer.Option("", "--batch"),
    graduation_year: int | None = typer.Option(None, "--graduation-year"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        repo = Repository(db)
        if repo.get_department(department_id) is None:
            raise typer.BadParameter(f"department {department_id} not found")
        try:
            student = repo.create_student(
                user_id=user_id,
                department_id=department_id,
                full_name=full_name,
                cgpa=cgpa,
                backlogs=backlogs,
                batch=batch,
                graduation_year=graduation_year,
            )
        except IntegrityError as exc:
            raise typer.BadParameter(f"student with user id {user_id} already exists") from exc
        typer.echo(json.dumps({"id": student.id, "user_id": student.user_id}, indent=2))


@jobs_app.command("list")
def jobs_list(
    status: str = typer.Option("", "--status"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        jobs = Repository(db).query_jobs(statuses=[status] if status else None)[:limit]
        typer.echo(
            json.dumps(
                [
                    {
                        "id": job.id,
                        "title": job.title,
                        "company": job.company_name,
                        "status": job.status,
                        "deadline": job.deadline.isoformat() if job.deadline else None,
                        "total_views": job.total_views,
                        "total_applications": job.total_applications,
                    }
                    for job in jobs
                ],
                indent=2,
            )
        )


@jobs_app.command("fanout")
def jobs_fanout(job_id: int = typer.Option(..., "--job-id")) -> None:
    """Re-run application fan-out for a job; existing applications are skipped."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            result = ApplicationFanout(db).fan_out(job_id)
        except PlacementError as exc:
            raise typer.BadParameter(str(exc)) from exc
        typer.echo(result.model_dump_json(indent=2))


@jobs_app.command("expire")
def jobs_expire() -> None:
    """Move every Active job whose deadline has passed to Expired."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        expired = Repository(db).expire_overdue_jobs()
        typer.echo(json.dumps({"expired": expired}, indent=2))


@jobs_app.command("reconcile")
def jobs_reconcile(
    job_id: int = typer.Option(..., "--job-id"),
    repair: bool = typer.Option(False, "--repair"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            report = AnalyticsAggregator(db).reconcile_counters(job_id, repair=repair)
        except PlacementError as exc:
            raise typer.BadParameter(str(exc)) from exc
        typer.echo(report.model_dump_json(indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
