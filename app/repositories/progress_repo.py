from __future__ import annotations

from typing import Optional

from app.services.audit import record_action
from models import (
    User,
    create_progress as _create_progress,
    delete_progress as _delete_progress,
    get_progress,
    list_progress as _list_progress,
    update_progress as _update_progress,
)

TABLE = "progress"


def list_progress(*, student_id: Optional[str] = None) -> list[dict[str, object]]:
    """Return progress records, most recently updated first."""
    return _list_progress(student_id=student_id)


def create_progress(
    *,
    actor: User,
    student_id: str,
    topic: str,
    status: str = "pending",
    score: Optional[float] = None,
) -> dict[str, object]:
    """Create a progress record and record it in the audit log."""
    row = _create_progress(student_id=student_id, topic=topic, status=status, score=score)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="create",
        table=TABLE,
        record_id=str(row.get("id")),
        new_data=row,
    )
    return row


def update_progress(
    *,
    actor: User,
    progress_id: str,
    updates: dict[str, object],
) -> dict[str, object]:
    """Apply updates and audit the before/after rows."""
    previous = get_progress(progress_id)
    row = _update_progress(progress_id, updates)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="update",
        table=TABLE,
        record_id=progress_id,
        old_data=previous,
        new_data=row,
    )
    return row


def delete_progress(*, actor: User, progress_id: str) -> dict[str, object]:
    """Delete a progress record and audit the removed row."""
    row = _delete_progress(progress_id)
    record_action(
        user_id=actor.id,
        user_role=actor.role,
        action="delete",
        table=TABLE,
        record_id=progress_id,
        old_data=row,
    )
    return row
