from __future__ import annotations

from typing import Any

DURATION_POINTS_CAP = 40
SECTION_POINTS_CAP = 15
SCROLL_BONUS = 10
APPLY_CLICK_BONUS = 20
COMPANY_CLICK_BONUS = 5
DOWNLOAD_BONUS = 10


def engagement_score(view: Any) -> int:
    """Heuristic 0-100 score for a single job view. Analytics only."""
    score = min(float(view.duration or 0) / 60, DURATION_POINTS_CAP)

    if view.scrolled_to_bottom:
        score += SCROLL_BONUS
    if view.clicked_apply_button:
        score += APPLY_CLICK_BONUS
    if view.clicked_company_link:
        score += COMPANY_CLICK_BONUS
    if view.downloaded_documents_json:
        score += DOWNLOAD_BONUS

    section_seconds = sum(float(value or 0) for value in (view.section_time_json or {}).values())
    score += min(section_seconds / 30, SECTION_POINTS_CAP)

    return round(score)


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
