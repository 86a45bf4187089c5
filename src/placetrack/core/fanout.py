from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from placetrack.core.eligibility import build_eligibility_check, rules_for_job, snapshot_for_student
from placetrack.core.errors import NotFound
from placetrack.core.targeting import resolve_target_departments
from placetrack.db.repositories import Repository
from placetrack.types import FanoutResult

logger = logging.getLogger(__name__)


class ApplicationFanout:
    def __init__(self, session: Session):
        self.session = session
        self.repo = Repository(session)

    def fan_out(self, job_id: int) -> FanoutResult:
        job = self.repo.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")

        result = FanoutResult(job_id=job_id)
        department_ids = resolve_target_departments(job, self.repo.list_active_department_ids())
        students = self.repo.list_active_students_in_departments(department_ids)
        result.candidates = len(students)
        logger.info(
            "Fan-out job_id=%s departments=%s candidates=%s",
            job_id,
            len(department_ids),
            len(students),
        )

        existing = self.repo.existing_application_student_ids(job_id)
        rules = rules_for_job(job)
        now = datetime.now(UTC)

        for student in students:
            if student.id in existing:
                result.skipped += 1
                continue
            try:
                check = build_eligibility_check(rules, snapshot_for_student(student), now=now)
                _, created = self.repo.ensure_application(job_id=job_id, student=student, check=check)
            except Exception:
                logger.exception("Fan-out insert failed job_id=%s student_id=%s", job_id, student.id)
                self.session.rollback()
                result.failed += 1
                result.failed_student_ids.append(student.id)
                continue

            if created:
                result.created += 1
            else:
                result.skipped += 1

        logger.info(
            "Fan-out finished job_id=%s created=%s skipped=%s failed=%s",
            job_id,
            result.created,
            result.skipped,
            result.failed,
        )
        return result
