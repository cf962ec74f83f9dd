"""Presentation rules for progress records shared by both dashboards."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from models import PROGRESS_STATUSES

_STATUS_INFO: dict[str, dict[str, object]] = {
    "completed": {"label": "Completed", "badge": "success", "percent": 100},
    "in_progress": {"label": "In Progress", "badge": "info", "percent": 60},
    "pending": {"label": "Pending", "badge": "warning", "percent": 20},
}
_UNKNOWN_STATUS = {"badge": "secondary", "percent": 0}

STATUS_CHOICES = [(status, _STATUS_INFO[status]["label"]) for status in PROGRESS_STATUSES]


def normalize_status(value: object) -> str:
    """Return a known status value or raise ``ValueError``."""
    normalized = str(value or "").strip().lower().replace(" ", "_")
    if normalized not in PROGRESS_STATUSES:
        raise ValueError("Status must be 'pending', 'in_progress', or 'completed'.")
    return normalized


def status_info(status: object) -> dict[str, object]:
    """Return label, badge style and completion percentage for a status."""
    key = str(status or "").strip().lower()
    info = _STATUS_INFO.get(key)
    if info is None:
        return {"label": key.replace("_", " ") or "unknown", **_UNKNOWN_STATUS}
    return dict(info)


def parse_score(value: object) -> Optional[float]:
    """Parse an optional 0-100 score from a form or JSON payload."""
    if value in (None, "", "null"):
        return None
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValueError("Score must be a number between 0 and 100.")
    if score < 0 or score > 100:
        raise ValueError("Score must be a number between 0 and 100.")
    return score


def summarize_progress(records: Iterable[Mapping[str, object]]) -> dict[str, int]:
    """Return total, completed and completion rate (whole percent)."""
    items = list(records)
    total = len(items)
    completed = sum(1 for record in items if record.get("status") == "completed")
    rate = round(completed / total * 100) if total else 0
    return {"total": total, "completed": completed, "completion_rate": rate}


def teacher_stats(
    students: Iterable[object],
    classrooms: Iterable[object],
    progress: Iterable[Mapping[str, object]],
) -> dict[str, int]:
    progress_items = list(progress)
    return {
        "students": len(list(students)),
        "classrooms": len(list(classrooms)),
        "progress": len(progress_items),
        "completed": summarize_progress(progress_items)["completed"],
    }


def display_name(profile: Optional[Mapping[str, object]]) -> str:
    if not profile:
        return "Unknown student"
    full_name = profile.get("full_name")
    if full_name:
        return str(full_name)
    name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return name or str(profile.get("email") or "Unknown student")


def grade_label(score: Optional[float], criteria: Mapping[str, float]) -> Optional[str]:
    """Return the label of the highest threshold the score reaches."""
    if score is None:
        return None
    reached = [(minimum, label) for label, minimum in criteria.items() if score >= minimum]
    if not reached:
        return None
    return max(reached)[1]
