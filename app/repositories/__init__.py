"""Repository helpers that add retries and audit logging to the data layer."""

from .profiles_repo import fetch_profile, fetch_profile_with_retry, list_students
from .classrooms_repo import (
    create_classroom,
    delete_classroom,
    list_classrooms,
    update_classroom,
)
from .progress_repo import (
    create_progress,
    delete_progress,
    list_progress,
    update_progress,
)

__all__ = [
    "fetch_profile",
    "fetch_profile_with_retry",
    "list_students",
    "create_classroom",
    "delete_classroom",
    "list_classrooms",
    "update_classroom",
    "create_progress",
    "delete_progress",
    "list_progress",
    "update_progress",
]
