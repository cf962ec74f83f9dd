"""Teacher dashboard preferences and their validation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Mapping

DASHBOARD_LAYOUTS = ("grid", "list")
STUDENT_VIEWS = ("progress", "classrooms", "students")
NOTIFICATION_KEYS = ("email_updates", "progress_alerts", "new_student_registrations")

DEFAULT_CATEGORIES = ["Math", "Science", "English", "History"]
DEFAULT_GRADE_TEMPLATE = {
    "name": "Standard",
    "criteria": {
        "Excellent": 90,
        "Good": 80,
        "Satisfactory": 70,
        "Needs Improvement": 60,
    },
}


@dataclass
class TeacherPreferences:
    user_id: str
    dashboard_layout: str = "grid"
    default_student_view: str = "progress"
    notification_settings: dict[str, bool] = field(
        default_factory=lambda: {key: True for key in NOTIFICATION_KEYS}
    )
    custom_categories: list[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    grade_templates: list[dict[str, object]] = field(
        default_factory=lambda: [
            {
                "name": DEFAULT_GRADE_TEMPLATE["name"],
                "criteria": dict(DEFAULT_GRADE_TEMPLATE["criteria"]),
            }
        ]
    )

    def to_document(self) -> dict[str, object]:
        return asdict(self)

    @property
    def primary_criteria(self) -> dict[str, float]:
        if not self.grade_templates:
            return {}
        return dict(self.grade_templates[0].get("criteria") or {})  # type: ignore[arg-type]


def default_preferences(user_id: str) -> TeacherPreferences:
    return TeacherPreferences(user_id=user_id)


def _parse_flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def _parse_categories(value: object) -> list[str]:
    if isinstance(value, str):
        items = value.replace("\n", ",").split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError("custom_categories must be a list or comma separated text.")
    categories: list[str] = []
    for item in items:
        name = item.strip()
        if name and name not in categories:
            categories.append(name)
    return categories


def _parse_grade_templates(value: object) -> list[dict[str, object]]:
    if not isinstance(value, list):
        raise ValueError("grade_templates must be a list.")
    templates: list[dict[str, object]] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            raise ValueError("Each grade template must be an object.")
        name = str(entry.get("name") or "").strip()
        if not name:
            raise ValueError("Each grade template needs a name.")
        raw_criteria = entry.get("criteria")
        if not isinstance(raw_criteria, Mapping) or not raw_criteria:
            raise ValueError(f"Grade template '{name}' needs criteria.")
        criteria: dict[str, float] = {}
        for label, minimum in raw_criteria.items():
            try:
                threshold = float(minimum)
            except (TypeError, ValueError):
                raise ValueError(f"Criterion '{label}' must have a numeric minimum.")
            if threshold < 0 or threshold > 100:
                raise ValueError(f"Criterion '{label}' must be between 0 and 100.")
            criteria[str(label)] = threshold
        templates.append({"name": name, "criteria": criteria})
    return templates


def from_mapping(user_id: str, payload: Mapping[str, object]) -> TeacherPreferences:
    """Build preferences from user input, keeping defaults for missing keys."""
    preferences = default_preferences(user_id)

    layout = payload.get("dashboard_layout")
    if layout is not None:
        if layout not in DASHBOARD_LAYOUTS:
            raise ValueError("dashboard_layout must be 'grid' or 'list'.")
        preferences.dashboard_layout = str(layout)

    view = payload.get("default_student_view")
    if view is not None:
        if view not in STUDENT_VIEWS:
            raise ValueError("default_student_view must be 'progress', 'classrooms', or 'students'.")
        preferences.default_student_view = str(view)

    notifications = payload.get("notification_settings")
    if notifications is not None:
        if not isinstance(notifications, Mapping):
            raise ValueError("notification_settings must be an object.")
        preferences.notification_settings = {
            key: _parse_flag(notifications.get(key, False)) for key in NOTIFICATION_KEYS
        }

    categories = payload.get("custom_categories")
    if categories is not None:
        preferences.custom_categories = _parse_categories(categories)

    templates = payload.get("grade_templates")
    if templates is not None:
        preferences.grade_templates = _parse_grade_templates(templates)

    return preferences


def from_document(document: Mapping[str, object]) -> TeacherPreferences:
    """Rebuild preferences from a stored document (ignores Mongo's ``_id``)."""
    fields = {key: value for key, value in document.items() if key != "_id"}
    user_id = str(fields.pop("user_id"))
    return from_mapping(user_id, fields)
