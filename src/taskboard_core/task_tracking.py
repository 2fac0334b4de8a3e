"""Checklists and time tracking on tasks.

Checklist items keep a dense position within their checklist through the
ordering helpers. A user may have at most one running time entry per task.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .activity import log_task_activity
from .errors import AccessDeniedError, ConflictError, NotFoundError, ValidationFailedError
from .models import TaskActivityType
from .ordering import next_position, reorder_scope, resequence_scope

logger = logging.getLogger("taskboard-core.task_tracking")


def _require_task(db: Session, task_id: str) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    return task


def _require_checklist(db: Session, checklist_id: str) -> models.Checklist:
    checklist = db.query(models.Checklist).filter(models.Checklist.id == checklist_id).first()
    if not checklist:
        raise NotFoundError(f"Checklist {checklist_id} not found")
    return checklist


def _require_item(db: Session, item_id: str) -> models.ChecklistItem:
    item = db.query(models.ChecklistItem).filter(models.ChecklistItem.id == item_id).first()
    if not item:
        raise NotFoundError(f"Checklist item {item_id} not found")
    return item


# ============================================================================
# Checklists
# ============================================================================

def add_checklist(
    db: Session,
    task_id: str,
    title: str,
    items: Optional[list[str]] = None,
    user_id: Optional[str] = None,
) -> models.Checklist:
    """Create a checklist with items at positions 0..N-1."""
    _require_task(db, task_id)
    checklist = models.Checklist(task_id=task_id, title=title)
    db.add(checklist)
    db.flush()
    for position, content in enumerate(items or []):
        db.add(models.ChecklistItem(checklist_id=checklist.id, content=content, position=position))

    log_task_activity(
        db, task_id, TaskActivityType.CHECKLIST_ADDED, user_id,
        message=f"Added checklist '{title}'",
        details={"checklist_id": checklist.id, "items": len(items or [])},
    )
    db.commit()
    db.refresh(checklist)
    return checklist


def get_task_checklists(db: Session, task_id: str) -> list[models.Checklist]:
    _require_task(db, task_id)
    return (
        db.query(models.Checklist)
        .filter(models.Checklist.task_id == task_id)
        .order_by(models.Checklist.created_at)
        .all()
    )


def add_checklist_item(
    db: Session,
    checklist_id: str,
    content: str,
    user_id: Optional[str] = None,
) -> models.ChecklistItem:
    """Append an item to a checklist."""
    checklist = _require_checklist(db, checklist_id)
    item = models.ChecklistItem(
        checklist_id=checklist_id,
        content=content,
        position=next_position(db, models.ChecklistItem, models.ChecklistItem.checklist_id, checklist_id),
    )
    db.add(item)
    log_task_activity(
        db, checklist.task_id, TaskActivityType.CHECKLIST_UPDATED, user_id,
        message=f"Added item to checklist '{checklist.title}'",
        details={"checklist_id": checklist_id, "content": content},
    )
    db.commit()
    db.refresh(item)
    return item


def update_checklist_item(
    db: Session,
    item_id: str,
    patch: dict,
    user_id: Optional[str] = None,
) -> models.ChecklistItem:
    """Change an item's content and/or completion state."""
    item = _require_item(db, item_id)
    if "content" in patch:
        item.content = patch["content"]
    if "is_completed" in patch and patch["is_completed"] != item.is_completed:
        item.is_completed = patch["is_completed"]
        item.completed_at = datetime.utcnow() if item.is_completed else None

    log_task_activity(
        db, item.checklist.task_id, TaskActivityType.CHECKLIST_UPDATED, user_id,
        message=f"{'Completed' if item.is_completed else 'Updated'} checklist item '{item.content}'",
        details={"item_id": item_id, **patch},
    )
    db.commit()
    db.refresh(item)
    return item


def delete_checklist_item(db: Session, item_id: str, user_id: Optional[str] = None) -> None:
    """Delete an item and close the gap it leaves."""
    item = _require_item(db, item_id)
    checklist = item.checklist
    resequence_scope(
        db, models.ChecklistItem, models.ChecklistItem.checklist_id, checklist.id, exclude_id=item_id
    )
    log_task_activity(
        db, checklist.task_id, TaskActivityType.CHECKLIST_UPDATED, user_id,
        message=f"Removed item '{item.content}' from checklist '{checklist.title}'",
        details={"checklist_id": checklist.id, "item_id": item_id},
    )
    db.delete(item)
    db.commit()


def reorder_checklist_items(
    db: Session,
    checklist_id: str,
    ordered_ids: list[str],
) -> list[models.ChecklistItem]:
    """Reorder every item of a checklist. The id set must match exactly."""
    _require_checklist(db, checklist_id)
    ordered = reorder_scope(
        db, models.ChecklistItem, models.ChecklistItem.checklist_id, checklist_id, ordered_ids
    )
    db.commit()
    return ordered


def delete_checklist(db: Session, checklist_id: str, user_id: Optional[str] = None) -> None:
    checklist = _require_checklist(db, checklist_id)
    log_task_activity(
        db, checklist.task_id, TaskActivityType.CHECKLIST_REMOVED, user_id,
        message=f"Removed checklist '{checklist.title}'",
        details={"checklist_id": checklist_id},
    )
    db.delete(checklist)
    db.commit()


# ============================================================================
# Time tracking
# ============================================================================

def format_duration(seconds: int) -> str:
    """``"2h 5m"`` for durations of an hour or more, otherwise ``"5m"``."""
    hours, remainder = divmod(int(seconds), 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def get_active_time_entry(db: Session, task_id: str, user_id: str) -> Optional[models.TimeEntry]:
    return (
        db.query(models.TimeEntry)
        .filter(
            models.TimeEntry.task_id == task_id,
            models.TimeEntry.user_id == user_id,
            models.TimeEntry.ended_at.is_(None),
        )
        .first()
    )


def _require_own_entry(db: Session, entry_id: str, user_id: str, action: str) -> models.TimeEntry:
    entry = db.query(models.TimeEntry).filter(models.TimeEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError(f"Time entry {entry_id} not found")
    if entry.user_id != user_id:
        raise AccessDeniedError(f"Only the owner can {action} a time entry")
    return entry


def start_time_entry(
    db: Session,
    task_id: str,
    user_id: str,
    description: Optional[str] = None,
) -> models.TimeEntry:
    """
    Start a running time entry.

    Raises:
        NotFoundError: If the task does not exist
        ConflictError: If the user already has a running entry on the task
    """
    _require_task(db, task_id)
    if get_active_time_entry(db, task_id, user_id):
        raise ConflictError("User already has an active time entry for this task")

    entry = models.TimeEntry(task_id=task_id, user_id=user_id, description=description)
    db.add(entry)
    log_task_activity(
        db, task_id, TaskActivityType.TIME_STARTED, user_id,
        message="Started time tracking",
    )
    db.commit()
    db.refresh(entry)
    logger.info(f"User {user_id} started time tracking on task {task_id}")
    return entry


def stop_time_entry(
    db: Session,
    entry_id: str,
    user_id: str,
    ended_at: Optional[datetime] = None,
) -> models.TimeEntry:
    """
    Stop a running entry owned by ``user_id``.

    Raises:
        NotFoundError: If the entry does not exist
        AccessDeniedError: If the entry belongs to another user
        ConflictError: If the entry is already stopped
        ValidationFailedError: If the end time is not after the start
    """
    entry = _require_own_entry(db, entry_id, user_id, "stop")
    if not entry.is_running:
        raise ConflictError(f"Time entry {entry_id} is already stopped")

    ended_at = ended_at or datetime.utcnow()
    if ended_at <= entry.started_at:
        raise ValidationFailedError("Time entry end must be after its start")

    entry.ended_at = ended_at
    entry.duration_seconds = int((ended_at - entry.started_at).total_seconds())
    log_task_activity(
        db, entry.task_id, TaskActivityType.TIME_STOPPED, user_id,
        message=f"Stopped time tracking ({format_duration(entry.duration_seconds)})",
        details={"entry_id": entry.id, "duration_seconds": entry.duration_seconds},
    )
    db.commit()
    db.refresh(entry)
    return entry


def log_time_entry(
    db: Session,
    task_id: str,
    user_id: str,
    started_at: datetime,
    ended_at: datetime,
    description: Optional[str] = None,
) -> models.TimeEntry:
    """Record a finished period of work."""
    _require_task(db, task_id)
    if ended_at <= started_at:
        raise ValidationFailedError("Time entry end must be after its start")

    duration = int((ended_at - started_at).total_seconds())
    entry = models.TimeEntry(
        task_id=task_id,
        user_id=user_id,
        description=description,
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration,
    )
    db.add(entry)
    log_task_activity(
        db, task_id, TaskActivityType.TIME_LOGGED, user_id,
        message=f"Logged {format_duration(duration)}",
        details={"duration_seconds": duration},
    )
    db.commit()
    db.refresh(entry)
    return entry


def update_time_entry(db: Session, entry_id: str, patch: dict, user_id: str) -> models.TimeEntry:
    """
    Correct an entry's start, end or description.

    The duration is recomputed from the resulting start and end. Setting
    ``ended_at`` on a running entry stops it.

    Raises:
        NotFoundError: If the entry does not exist
        AccessDeniedError: If the entry belongs to another user
        ValidationFailedError: If the end would not be after the start
    """
    entry = _require_own_entry(db, entry_id, user_id, "update")

    started_at = patch.get("started_at", entry.started_at)
    ended_at = patch.get("ended_at", entry.ended_at)
    if ended_at is not None and ended_at <= started_at:
        raise ValidationFailedError("Time entry end must be after its start")

    changed = sorted(field for field, value in patch.items() if getattr(entry, field) != value)
    for field, value in patch.items():
        setattr(entry, field, value)
    entry.duration_seconds = None if ended_at is None else int((ended_at - started_at).total_seconds())

    log_task_activity(
        db, entry.task_id, TaskActivityType.TIME_UPDATED, user_id,
        message="Updated a time entry",
        details={"entry_id": entry.id, "fields": changed, "duration_seconds": entry.duration_seconds},
    )
    db.commit()
    db.refresh(entry)
    return entry


def delete_time_entry(db: Session, entry_id: str, user_id: str) -> None:
    """
    Delete one of the user's time entries, running or not.

    Raises:
        NotFoundError: If the entry does not exist
        AccessDeniedError: If the entry belongs to another user
    """
    entry = _require_own_entry(db, entry_id, user_id, "delete")
    log_task_activity(
        db, entry.task_id, TaskActivityType.TIME_DELETED, user_id,
        message="Deleted a time entry",
        details={"entry_id": entry.id, "duration_seconds": entry.duration_seconds},
    )
    db.delete(entry)
    db.commit()
    logger.info(f"User {user_id} deleted time entry {entry_id}")


def get_task_time_summary(db: Session, task_id: str) -> dict:
    """Total tracked time on a task, counting finished entries only."""
    _require_task(db, task_id)
    total, entry_count = (
        db.query(
            func.coalesce(func.sum(models.TimeEntry.duration_seconds), 0),
            func.count(models.TimeEntry.id),
        )
        .filter(models.TimeEntry.task_id == task_id)
        .one()
    )
    active = (
        db.query(func.count(models.TimeEntry.id))
        .filter(models.TimeEntry.task_id == task_id, models.TimeEntry.ended_at.is_(None))
        .scalar()
    )
    return {
        "task_id": task_id,
        "total_seconds": int(total),
        "formatted": format_duration(total),
        "entry_count": entry_count,
        "active_entries": active,
    }
