"""Task activity log helpers."""
from typing import Optional

from sqlalchemy.orm import Session

from . import models


def task_label(task: models.Task) -> str:
    """Human-readable reference used in activity messages, e.g. ``task #12: Fix login``."""
    return f"task #{task.number}: {task.title}"


def log_task_activity(
    db: Session,
    task_id: str,
    action: models.TaskActivityType,
    user_id: Optional[str] = None,
    message: Optional[str] = None,
    details: Optional[dict] = None,
) -> models.TaskActivity:
    """Add an activity row to the session. The caller commits."""
    entry = models.TaskActivity(
        task_id=task_id,
        user_id=user_id,
        action=action,
        message=message,
        details=details or {},
    )
    db.add(entry)
    return entry


def get_task_activity(db: Session, task_id: str, limit: int = 50) -> list[models.TaskActivity]:
    """Newest-first activity for a task."""
    return (
        db.query(models.TaskActivity)
        .filter(models.TaskActivity.task_id == task_id)
        .order_by(models.TaskActivity.created_at.desc())
        .limit(limit)
        .all()
    )
