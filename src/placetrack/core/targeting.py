from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def explicit_departments(job: Any) -> list[int]:
    """Union of target and eligibility departments, first-seen order, de-duplicated."""
    seen: dict[int, None] = {}
    for department_id in list(job.target_departments_json or []) + list(job.eligibility_departments_json or []):
        seen.setdefault(int(department_id), None)
    return list(seen)


def resolve_target_departments(job: Any, active_department_ids: Iterable[int]) -> list[int]:
    if job.posting_type == "All Departments":
        return list(dict.fromkeys(active_department_ids))
    return explicit_departments(job)


def job_targets_department(job: Any, department_id: int | None) -> bool:
    if job.posting_type == "All Departments":
        return True
    if department_id is None:
        return False
    return department_id in explicit_departments(job)


def job_mentions_department(job: Any, department_id: int) -> bool:
    return department_id in explicit_departments(job)
