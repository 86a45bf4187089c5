from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from placetrack.types import (
    CriterionCheck,
    EligibilityCheck,
    EligibilityRules,
    EligibilityVerdict,
    StudentSnapshot,
)


def _format_number(value: float) -> str:
    return f"{value:g}"


def evaluate(rules: EligibilityRules, student: StudentSnapshot) -> EligibilityVerdict:
    # first failing rule wins; unknown student values never fail a rule
    if rules.departments and student.department_id not in rules.departments:
        return EligibilityVerdict(eligible=False, reason="Department not eligible")

    if rules.min_cgpa and student.cgpa is not None and student.cgpa < rules.min_cgpa:
        return EligibilityVerdict(
            eligible=False,
            reason=f"Minimum CGPA required: {_format_number(rules.min_cgpa)}",
        )

    if rules.max_backlogs is not None and student.backlogs is not None and student.backlogs > rules.max_backlogs:
        return EligibilityVerdict(
            eligible=False,
            reason=f"Maximum {rules.max_backlogs} backlogs allowed",
        )

    return EligibilityVerdict(eligible=True, reason=None)


def rules_for_job(job: Any) -> EligibilityRules:
    return EligibilityRules(
        departments=list(job.eligibility_departments_json or []),
        min_cgpa=job.min_cgpa,
        max_backlogs=job.max_backlogs,
    )


def snapshot_for_student(student: Any) -> StudentSnapshot:
    return StudentSnapshot(
        department_id=student.department_id,
        cgpa=student.cgpa,
        backlogs=student.backlogs,
    )


def build_eligibility_check(
    rules: EligibilityRules,
    student: StudentSnapshot,
    now: datetime | None = None,
) -> EligibilityCheck:
    verdict = evaluate(rules, student)

    department_passed = not rules.departments or student.department_id in rules.departments
    cgpa_passed = not (rules.min_cgpa and student.cgpa is not None and student.cgpa < rules.min_cgpa)
    backlogs_passed = not (
        rules.max_backlogs is not None and student.backlogs is not None and student.backlogs > rules.max_backlogs
    )

    return EligibilityCheck(
        is_eligible=verdict.eligible,
        reasons=[] if verdict.eligible else [verdict.reason or ""],
        checked_at=now or datetime.now(UTC),
        criteria={
            "department": CriterionCheck(
                required=list(rules.departments),
                student=student.department_id,
                passed=department_passed,
            ),
            "cgpa": CriterionCheck(required=rules.min_cgpa, student=student.cgpa, passed=cgpa_passed),
            "backlogs": CriterionCheck(
                required=rules.max_backlogs,
                student=student.backlogs,
                passed=backlogs_passed,
            ),
        },
    )
