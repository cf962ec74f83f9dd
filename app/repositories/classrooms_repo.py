from __future__ import annotations

from typing import Optional

from app.services.audit import record_action
from models import (
    User,
    create_classroom as _create_classroom,
    delete_classroom as _delete_classroom,
    get_classroom,
    list_classrooms as _list_classrooms,
    update_classroom as _update_classroom,
)

TABLE = "classrooms"


def list_classrooms(*, student_id: Optional[str] = None) -> list[dict[str, object]]:
    """Return classroom enrollments with the embedded student profile."""
    return _list_classrooms(student_id=student_id)


def create_classroom(
    *,
    actor: User,
    class_name: str,
    student_id: str,
    grade: Optional[str] = None,
) -> dict[str, object]:
    """Create an enrollment and record it in the audit log."""
    row = _create_classroom(class_name=class_name, student_id=student_id, grade=grade)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="create",
        table=TABLE,
        record_id=str(row.get("id")),
        new_data=row,
    )
    return row


def update_classroom(
    *,
    actor: User,
    classroom_id: str,
    updates: dict[str, object],
) -> dict[str, object]:
    """Apply updates and audit the before/after rows."""
    previous = get_classroom(classroom_id)
    row = _update_classroom(classroom_id, updates)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="update",
        table=TABLE,
        record_id=classroom_id,
        old_data=previous,
        new_data=row,
    )
    return row


def delete_classroom(*, actor: User, classroom_id: str) -> dict[str, object]:
    """Delete an enrollment and audit the removed row."""
    row = _delete_classroom(classroom_id)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="delete",
        table=TABLE,
        record_id=classroom_id,
        old_data=row,
    )
    return row
