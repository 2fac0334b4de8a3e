"""Read-only task and project reporting.

Breakdowns are computed with ``GROUP BY`` in the database rather than by
loading rows.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from . import models
from .errors import NotFoundError, ValidationFailedError
from .models import TERMINAL_TASK_STATUSES
from .task_tracking import format_duration


TASK_COUNT_FIELDS = {
    "status": models.Task.status,
    "priority": models.Task.priority,
    "assignee": models.Task.assignee_id,
}


def _group_key(value):
    return value.value if hasattr(value, "value") else value


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


def count_tasks_by(db: Session, project_id: str, field: str) -> list[dict]:
    """
    Task counts in a project grouped by ``status``, ``priority`` or ``assignee``.

    Only groups with at least one task are returned. Unassigned tasks are
    counted under a ``None`` key.

    Returns:
        List of ``{"key": value, "count": n}``

    Raises:
        ValidationFailedError: If ``field`` is not a supported grouping
    """
    column = TASK_COUNT_FIELDS.get(field)
    if column is None:
        raise ValidationFailedError(
            f"Cannot group tasks by '{field}'. Use one of: {', '.join(sorted(TASK_COUNT_FIELDS))}"
        )
    rows = (
        db.query(column, func.count(models.Task.id))
        .filter(models.Task.project_id == project_id)
        .group_by(column)
        .all()
    )
    counts = [{"key": _group_key(key), "count": count} for key, count in rows]
    return sorted(counts, key=lambda entry: (-entry["count"], str(entry["key"])))


def get_project_stats(db: Session, project_id: str, recent_limit: int = 10) -> dict:
    """
    Project overview: task counts by status, requirement counts by type and
    status, completion rate and the latest task activity.

    Raises:
        NotFoundError: If the project does not exist
    """
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if not project:
        raise NotFoundError(f"Project {project_id} not found")

    tasks_by_status = count_tasks_by(db, project_id, "status")
    total_tasks = sum(entry["count"] for entry in tasks_by_status)
    done_tasks = sum(
        entry["count"] for entry in tasks_by_status if entry["key"] == models.TaskStatus.DONE.value
    )

    requirement_rows = (
        db.query(models.Requirement.type, models.Requirement.status, func.count(models.Requirement.id))
        .filter(models.Requirement.project_id == project_id)
        .group_by(models.Requirement.type, models.Requirement.status)
        .all()
    )
    requirements = sorted(
        (
            {"type": _group_key(req_type), "status": _group_key(status), "count": count}
            for req_type, status, count in requirement_rows
        ),
        key=lambda entry: (entry["type"], entry["status"]),
    )

    recent_activity = (
        db.query(models.TaskActivity)
        .join(models.Task, models.Task.id == models.TaskActivity.task_id)
        .filter(models.Task.project_id == project_id)
        .order_by(models.TaskActivity.created_at.desc())
        .limit(recent_limit)
        .all()
    )

    return {
        "project_id": project_id,
        "total_tasks": total_tasks,
        "completed_tasks": done_tasks,
        "completion_rate": _percent(done_tasks, total_tasks),
        "tasks_by_status": tasks_by_status,
        "requirements": requirements,
        "recent_activity": recent_activity,
    }


def get_task_metrics(db: Session, task_id: str) -> dict:
    """
    Counts and completion rates for one task.

    Checklist completion is completed items over all items; subtask
    completion is ``done`` subtasks over all subtasks. Both are whole
    percentages, 0 when there is nothing to complete. Time spent counts
    finished entries only.

    Raises:
        NotFoundError: If the task does not exist
    """
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        raise NotFoundError(f"Task {task_id} not found")

    def count(model, *criteria) -> int:
        return db.query(func.count(model.id)).filter(*criteria).scalar()

    counts = {
        "comments": count(models.TaskComment, models.TaskComment.task_id == task_id),
        "checklists": count(models.Checklist, models.Checklist.task_id == task_id),
        "time_entries": count(models.TimeEntry, models.TimeEntry.task_id == task_id),
        "depends_on": count(models.TaskDependency, models.TaskDependency.dependent_id == task_id),
        "dependents": count(models.TaskDependency, models.TaskDependency.depends_on_id == task_id),
        "subtasks": count(models.Task, models.Task.parent_id == task_id),
    }

    items = (
        db.query(func.count(models.ChecklistItem.id))
        .join(models.Checklist, models.Checklist.id == models.ChecklistItem.checklist_id)
        .filter(models.Checklist.task_id == task_id)
    )
    items_total = items.scalar()
    items_done = items.filter(models.ChecklistItem.is_completed.is_(True)).scalar()
    subtasks_done = count(
        models.Task, models.Task.parent_id == task_id, models.Task.status == models.TaskStatus.DONE
    )
    seconds = (
        db.query(func.coalesce(func.sum(models.TimeEntry.duration_seconds), 0))
        .filter(models.TimeEntry.task_id == task_id, models.TimeEntry.ended_at.isnot(None))
        .scalar()
    )

    return {
        "task_id": task_id,
        "counts": counts,
        "checklist_completion": _percent(items_done, items_total),
        "subtask_completion": _percent(subtasks_done, counts["subtasks"]),
        "time_spent_seconds": int(seconds),
        "time_spent": format_duration(seconds),
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


def get_overdue_tasks(
    db: Session,
    project_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[models.Task]:
    """Open tasks whose due date has passed, most overdue first."""
    now = now or datetime.utcnow()
    query = (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .filter(models.Task.due_date.isnot(None))
        .filter(models.Task.due_date < now)
        .filter(models.Task.status.notin_(TERMINAL_TASK_STATUSES))
    )
    if project_id:
        query = query.filter(models.Task.project_id == project_id)
    return query.order_by(models.Task.due_date, models.Task.number).all()
