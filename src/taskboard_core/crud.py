"""CRUD operations for workspaces, projects, lists, tasks and requirements."""
import logging
import re
from typing import Callable, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .activity import log_task_activity, task_label
from .analysis_jobs import AnalysisDispatcher, get_analysis_dispatcher
from .config import get_settings
from .errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    TaskboardError,
    ValidationFailedError,
)
from .models import TaskActivityType
from .ordering import move_to_scope, next_position, reorder_scope, resequence_scope
from .quality import build_test_cases, is_potential_duplicate, perform_ai_analysis
from .state_machine import validate_transition
from .versioning import (
    check_expected_version,
    compute_field_changes,
    create_history_entry,
    needs_reanalysis,
    next_version,
    normalize_value,
)

logger = logging.getLogger("taskboard-core.crud")


# ============================================================================
# Sequence counters
# ============================================================================

TASK_SEQUENCE = "task"


def requirement_sequence_name(requirement_type: models.RequirementType) -> str:
    return f"requirement:{models.RequirementType(requirement_type).value}"


def _next_sequence_value(
    db: Session,
    project_id: str,
    name: str,
    seed: Callable[[], int],
) -> int:
    """
    Take the next value of a per-project counter.

    The counter row is locked for the rest of the transaction. A missing
    row is created from ``seed()``, the highest value already in use.

    Raises:
        ConflictError: If another transaction created the same counter first
    """
    sequence = (
        db.query(models.ProjectSequence)
        .filter(
            models.ProjectSequence.project_id == project_id,
            models.ProjectSequence.name == name,
        )
        .with_for_update()
        .first()
    )
    if sequence is None:
        sequence = models.ProjectSequence(project_id=project_id, name=name, next_number=seed() + 1)
        db.add(sequence)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ConflictError(f"Concurrent creation while initialising counter '{name}'. Retry the request.")

    value = sequence.next_number
    sequence.next_number = value + 1
    return value


# ============================================================================
# User / Workspace CRUD Operations
# ============================================================================

def create_user(db: Session, user_data: schemas.UserCreate) -> models.User:
    """Create a user. Emails are unique."""
    if db.query(models.User).filter(models.User.email == user_data.email).first():
        raise ConflictError(f"A user with email {user_data.email} already exists")
    user = models.User(email=user_data.email, full_name=user_data.full_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.email}")
    return user


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def create_workspace(
    db: Session,
    workspace_data: schemas.WorkspaceCreate,
    owner_id: str,
) -> models.Workspace:
    """
    Create a workspace and make ``owner_id`` its owner.

    Raises:
        NotFoundError: If the owner does not exist
        ConflictError: If the slug is taken
    """
    if not get_user(db, owner_id):
        raise NotFoundError(f"User {owner_id} not found")
    if db.query(models.Workspace).filter(models.Workspace.slug == workspace_data.slug).first():
        raise ConflictError(f"Workspace slug '{workspace_data.slug}' is already taken")

    workspace = models.Workspace(
        name=workspace_data.name,
        slug=workspace_data.slug,
        description=workspace_data.description,
    )
    db.add(workspace)
    db.flush()
    db.add(models.WorkspaceMember(
        workspace_id=workspace.id,
        user_id=owner_id,
        permission=models.MemberPermission.OWNER,
    ))
    db.commit()
    db.refresh(workspace)
    logger.info(f"Created workspace {workspace.slug} owned by {owner_id}")
    return workspace


def get_workspace(db: Session, workspace_id: str) -> Optional[models.Workspace]:
    return db.query(models.Workspace).filter(models.Workspace.id == workspace_id).first()


def get_user_workspaces(db: Session, user_id: str) -> list[models.Workspace]:
    """Workspaces the user is a member of, newest first."""
    return (
        db.query(models.Workspace)
        .join(models.WorkspaceMember, models.WorkspaceMember.workspace_id == models.Workspace.id)
        .filter(models.WorkspaceMember.user_id == user_id)
        .order_by(models.Workspace.created_at.desc())
        .all()
    )


def add_workspace_member(
    db: Session,
    workspace_id: str,
    user_id: str,
    permission: models.MemberPermission,
) -> models.WorkspaceMember:
    """
    Add a user to a workspace.

    Raises:
        NotFoundError: If the workspace or user does not exist
        ConflictError: If the user is already a member
    """
    if not get_workspace(db, workspace_id):
        raise NotFoundError(f"Workspace {workspace_id} not found")
    if not get_user(db, user_id):
        raise NotFoundError(f"User {user_id} not found")

    existing = (
        db.query(models.WorkspaceMember)
        .filter(
            models.WorkspaceMember.workspace_id == workspace_id,
            models.WorkspaceMember.user_id == user_id,
        )
        .first()
    )
    if existing:
        raise ConflictError(f"User {user_id} is already a member of this workspace")

    member = models.WorkspaceMember(workspace_id=workspace_id, user_id=user_id, permission=permission)
    db.add(member)
    db.commit()
    db.refresh(member)
    logger.info(f"Added {user_id} to workspace {workspace_id} as {permission.value}")
    return member


def get_workspace_members(db: Session, workspace_id: str) -> list[models.WorkspaceMember]:
    return (
        db.query(models.WorkspaceMember)
        .filter(models.WorkspaceMember.workspace_id == workspace_id)
        .order_by(models.WorkspaceMember.joined_at)
        .all()
    )


def _get_member_or_raise(db: Session, workspace_id: str, user_id: str) -> models.WorkspaceMember:
    member = (
        db.query(models.WorkspaceMember)
        .filter(
            models.WorkspaceMember.workspace_id == workspace_id,
            models.WorkspaceMember.user_id == user_id,
        )
        .first()
    )
    if not member:
        raise NotFoundError(f"User {user_id} is not a member of workspace {workspace_id}")
    return member


def update_member_permission(
    db: Session,
    workspace_id: str,
    user_id: str,
    permission: models.MemberPermission,
) -> models.WorkspaceMember:
    """
    Change a member's permission level.

    An owner's level cannot be lowered; granting ownership is allowed.

    Raises:
        NotFoundError: If the user is not a member
        ValidationFailedError: If the member is an owner and the new level is not
    """
    member = _get_member_or_raise(db, workspace_id, user_id)
    previous = models.MemberPermission(member.permission)
    if previous == models.MemberPermission.OWNER and permission != models.MemberPermission.OWNER:
        raise ValidationFailedError("Cannot change the permission of a workspace owner")

    member.permission = permission
    db.commit()
    db.refresh(member)
    logger.info(f"Changed {user_id} in workspace {workspace_id} from {previous.value} to {permission.value}")
    return member


def remove_workspace_member(db: Session, workspace_id: str, user_id: str) -> None:
    """
    Remove a member. Their access to every project in the workspace ends.

    Raises:
        NotFoundError: If the user is not a member
        ValidationFailedError: If the member is an owner
    """
    member = _get_member_or_raise(db, workspace_id, user_id)
    if models.MemberPermission(member.permission) == models.MemberPermission.OWNER:
        raise ValidationFailedError("Cannot remove a workspace owner")
    db.delete(member)
    db.commit()
    logger.info(f"Removed {user_id} from workspace {workspace_id}")


# ============================================================================
# Project / List CRUD Operations
# ============================================================================

DEFAULT_LISTS = [
    ("Backlog", "#6b7280"),
    ("To Do", "#3b82f6"),
    ("In Progress", "#f59e0b"),
    ("In Review", "#8b5cf6"),
    ("Done", "#10b981"),
]


def create_project(
    db: Session,
    project_data: schemas.ProjectCreate,
    user_id: Optional[str] = None,
) -> models.Project:
    """
    Create a project with its default lists and counters.

    Raises:
        NotFoundError: If the workspace does not exist
        ConflictError: If the key is already used in the workspace
    """
    if not get_workspace(db, project_data.workspace_id):
        raise NotFoundError(f"Workspace {project_data.workspace_id} not found")
    duplicate = (
        db.query(models.Project)
        .filter(
            models.Project.workspace_id == project_data.workspace_id,
            models.Project.key == project_data.key,
        )
        .first()
    )
    if duplicate:
        raise ConflictError(f"Project key '{project_data.key}' is already used in this workspace")

    project = models.Project(
        workspace_id=project_data.workspace_id,
        name=project_data.name,
        key=project_data.key,
        description=project_data.description,
        created_by=user_id,
    )
    db.add(project)
    db.flush()

    for position, (name, color) in enumerate(DEFAULT_LISTS):
        db.add(models.TaskList(project_id=project.id, name=name, color=color, position=position))

    db.add(models.ProjectSequence(project_id=project.id, name=TASK_SEQUENCE, next_number=1))
    for requirement_type in models.RequirementType:
        db.add(models.ProjectSequence(
            project_id=project.id,
            name=requirement_sequence_name(requirement_type),
            next_number=1,
        ))

    db.commit()
    db.refresh(project)
    logger.info(f"Created project {project.key} in workspace {project.workspace_id}")
    return project


def get_project(db: Session, project_id: str) -> Optional[models.Project]:
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def get_projects(db: Session, workspace_id: str) -> list[models.Project]:
    return (
        db.query(models.Project)
        .filter(models.Project.workspace_id == workspace_id)
        .order_by(models.Project.created_at)
        .all()
    )


def get_list(db: Session, list_id: str) -> Optional[models.TaskList]:
    return db.query(models.TaskList).filter(models.TaskList.id == list_id).first()


def get_lists(db: Session, project_id: str) -> list[models.TaskList]:
    return (
        db.query(models.TaskList)
        .filter(models.TaskList.project_id == project_id)
        .order_by(models.TaskList.position)
        .all()
    )


def create_list(db: Session, project_id: str, list_data: schemas.TaskListCreate) -> models.TaskList:
    """Append a list to the end of the project's board."""
    if not get_project(db, project_id):
        raise NotFoundError(f"Project {project_id} not found")
    task_list = models.TaskList(
        project_id=project_id,
        name=list_data.name,
        color=list_data.color,
        position=next_position(db, models.TaskList, models.TaskList.project_id, project_id),
    )
    db.add(task_list)
    db.commit()
    db.refresh(task_list)
    logger.info(f"Created list '{task_list.name}' at position {task_list.position} in project {project_id}")
    return task_list


def update_list(db: Session, list_id: str, patch: dict) -> models.TaskList:
    task_list = get_list(db, list_id)
    if not task_list:
        raise NotFoundError(f"List {list_id} not found")
    for field, value in patch.items():
        setattr(task_list, field, value)
    db.commit()
    db.refresh(task_list)
    return task_list


def delete_list(db: Session, list_id: str) -> None:
    """
    Delete an empty list and close the gap it leaves.

    Raises:
        NotFoundError: If the list does not exist
        PreconditionFailedError: If the list still has tasks
    """
    task_list = get_list(db, list_id)
    if not task_list:
        raise NotFoundError(f"List {list_id} not found")
    task_count = db.query(func.count(models.Task.id)).filter(models.Task.list_id == list_id).scalar()
    if task_count:
        raise PreconditionFailedError(
            f"Cannot delete list '{task_list.name}' with {task_count} task(s). Move or delete the tasks first."
        )

    resequence_scope(db, models.TaskList, models.TaskList.project_id, task_list.project_id, exclude_id=list_id)
    db.delete(task_list)
    db.commit()
    logger.info(f"Deleted list {list_id}")


def reorder_lists(db: Session, project_id: str, ordered_ids: list[str]) -> list[models.TaskList]:
    """Reorder all lists of a project. The id set must match exactly."""
    if not get_project(db, project_id):
        raise NotFoundError(f"Project {project_id} not found")
    ordered = reorder_scope(db, models.TaskList, models.TaskList.project_id, project_id, ordered_ids)
    db.commit()
    return ordered


# ============================================================================
# Task CRUD Operations
# ============================================================================

UPDATABLE_TASK_FIELDS = {
    "title", "description", "status", "priority", "type",
    "list_id", "parent_id", "assignee_id", "due_date", "estimated_hours",
}


def _validate_list_in_project(db: Session, list_id: Optional[str], project_id: str) -> None:
    if list_id is None:
        return
    task_list = get_list(db, list_id)
    if not task_list:
        raise NotFoundError(f"List {list_id} not found")
    if task_list.project_id != project_id:
        raise ValidationFailedError(f"List {list_id} belongs to a different project")


def _validate_parent(db: Session, parent_id: Optional[str], project_id: str, task_id: Optional[str] = None) -> None:
    """Parent must exist in the same project and must not be the task or one of its subtasks."""
    if parent_id is None:
        return
    parent = get_task(db, parent_id)
    if not parent:
        raise NotFoundError(f"Parent task {parent_id} not found")
    if parent.project_id != project_id:
        raise ValidationFailedError(f"Parent task {parent_id} belongs to a different project")

    ancestor = parent
    while ancestor is not None:
        if ancestor.id == task_id:
            raise ValidationFailedError("A task cannot be its own parent or the parent of its ancestor")
        ancestor = ancestor.parent


def _validate_assignee(db: Session, assignee_id: Optional[str]) -> None:
    if assignee_id is not None and not get_user(db, assignee_id):
        raise NotFoundError(f"Assignee {assignee_id} not found")


def _next_task_number(db: Session, project_id: str) -> int:
    return _next_sequence_value(
        db,
        project_id,
        TASK_SEQUENCE,
        seed=lambda: db.query(func.max(models.Task.number)).filter(
            models.Task.project_id == project_id
        ).scalar() or 0,
    )


def create_task(
    db: Session,
    task_data: schemas.TaskCreate,
    reporter_id: Optional[str] = None,
) -> models.Task:
    """
    Create a task at the end of its list.

    The task number comes from the project's locked task counter.

    Args:
        db: Database session
        task_data: Task creation data
        reporter_id: User creating the task (immutable afterwards)

    Returns:
        Created Task object

    Raises:
        NotFoundError: If the project, list, parent or assignee does not exist
        ValidationFailedError: If the list or parent is in another project
    """
    project = get_project(db, task_data.project_id)
    if not project:
        raise NotFoundError(f"Project {task_data.project_id} not found")
    _validate_list_in_project(db, task_data.list_id, project.id)
    _validate_parent(db, task_data.parent_id, project.id)
    _validate_assignee(db, task_data.assignee_id)

    number = _next_task_number(db, project.id)
    position = 0
    if task_data.list_id is not None:
        position = next_position(db, models.Task, models.Task.list_id, task_data.list_id)

    task = models.Task(
        project_id=project.id,
        list_id=task_data.list_id,
        parent_id=task_data.parent_id,
        number=number,
        title=task_data.title,
        description=task_data.description,
        status=task_data.status,
        priority=task_data.priority,
        type=task_data.type,
        position=position,
        assignee_id=task_data.assignee_id,
        reporter_id=reporter_id,
        due_date=task_data.due_date,
        estimated_hours=task_data.estimated_hours,
    )
    db.add(task)
    db.flush()

    log_task_activity(
        db, task.id, TaskActivityType.CREATED, reporter_id,
        message=f"Created {task_label(task)}",
        details={"list_id": task.list_id, "position": position},
    )

    db.commit()
    db.refresh(task)
    logger.info(f"Created task #{task.number} in project {project.key}: {task.title}")
    return task


def get_task(db: Session, task_id: str) -> Optional[models.Task]:
    return (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .filter(models.Task.id == task_id)
        .first()
    )


def get_tasks(
    db: Session,
    project_id: Optional[str] = None,
    list_id: Optional[str] = None,
    status: Optional[models.TaskStatus] = None,
    priority: Optional[models.TaskPriority] = None,
    assignee_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Task], int]:
    """
    List tasks with filtering and pagination.

    Returns:
        Tuple of (tasks, total count) ordered by list position, then age
    """
    query = db.query(models.Task).options(joinedload(models.Task.assignee))

    if project_id:
        query = query.filter(models.Task.project_id == project_id)
    if list_id:
        query = query.filter(models.Task.list_id == list_id)
    if status:
        query = query.filter(models.Task.status == status)
    if priority:
        query = query.filter(models.Task.priority == priority)
    if assignee_id:
        query = query.filter(models.Task.assignee_id == assignee_id)
    if parent_id:
        query = query.filter(models.Task.parent_id == parent_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.Task.title.ilike(pattern), models.Task.description.ilike(pattern)))

    total = query.count()
    tasks = (
        query.order_by(models.Task.list_id, models.Task.position, models.Task.created_at)
        .offset(skip)
        .limit(limit)
        .all()
    )
    return tasks, total


def _apply_task_patch(db: Session, task: models.Task, patch: dict) -> dict:
    """Apply a validated patch; returns ``{field: {from, to}}`` for changed fields."""
    unknown = set(patch) - UPDATABLE_TASK_FIELDS
    if unknown:
        raise ValidationFailedError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    changes = {}
    if "list_id" in patch and patch["list_id"] != task.list_id:
        _validate_list_in_project(db, patch["list_id"], task.project_id)
        old_list_id = task.list_id
        move_to_scope(db, task, "list_id", patch["list_id"])
        changes["list_id"] = {"from": old_list_id, "to": task.list_id}
    if "parent_id" in patch:
        _validate_parent(db, patch["parent_id"], task.project_id, task_id=task.id)
    if "assignee_id" in patch:
        _validate_assignee(db, patch["assignee_id"])

    for field, value in patch.items():
        if field == "list_id":
            continue
        old = normalize_value(getattr(task, field))
        new = normalize_value(value)
        if old != new:
            changes[field] = {"from": old, "to": new}
            setattr(task, field, value)
    return changes


def update_task(
    db: Session,
    task_id: str,
    patch: dict,
    user_id: Optional[str] = None,
) -> models.Task:
    """
    Update a task.

    Changing ``list_id`` moves the task to the end of the new list and
    closes the gap in the old one. ``number`` and ``reporter_id`` cannot be
    changed.

    Args:
        db: Database session
        task_id: Task id
        patch: Fields to change (only the keys present are applied)
        user_id: Acting user

    Returns:
        Updated Task

    Raises:
        NotFoundError: If the task (or a referenced list/parent) is missing
        ValidationFailedError: If the patch is malformed
    """
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")

    changes = _apply_task_patch(db, task, patch)
    if changes:
        log_task_activity(
            db, task.id, TaskActivityType.UPDATED, user_id,
            message=f"Updated {', '.join(sorted(changes))}",
            details=changes,
        )
    db.commit()
    db.refresh(task)
    if changes:
        logger.info(f"Updated task #{task.number}: {', '.join(sorted(changes))}")
    return task


def move_task(
    db: Session,
    task_id: str,
    list_id: Optional[str],
    position: Optional[int] = None,
    user_id: Optional[str] = None,
) -> models.Task:
    """
    Move a task to ``position`` in ``list_id`` (appended when omitted).

    All position shifts in both lists commit together with the move.
    """
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    _validate_list_in_project(db, list_id, task.project_id)

    from_list_id, from_position = task.list_id, task.position
    new_position = move_to_scope(db, task, "list_id", list_id, position)
    log_task_activity(
        db, task.id, TaskActivityType.MOVED, user_id,
        message=f"Moved {task_label(task)}",
        details={
            "from_list_id": from_list_id,
            "from_position": from_position,
            "to_list_id": list_id,
            "to_position": new_position,
        },
    )
    db.commit()
    db.refresh(task)
    return task


def reorder_tasks(db: Session, list_id: str, ordered_ids: list[str]) -> list[models.Task]:
    """
    Reorder every task in a list.

    Raises:
        NotFoundError: If the list does not exist
        ValidationFailedError: If ``ordered_ids`` is not exactly the list's tasks
    """
    if not get_list(db, list_id):
        raise NotFoundError(f"List {list_id} not found")
    ordered = reorder_scope(db, models.Task, models.Task.list_id, list_id, ordered_ids)
    db.commit()
    return ordered


def delete_task(db: Session, task_id: str) -> None:
    """
    Delete a task without subtasks.

    Dependency edges, links, checklists, comments, time entries and activity
    go with it. The gap in its list is closed.

    Raises:
        NotFoundError: If the task does not exist
        PreconditionFailedError: If the task has subtasks
    """
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")

    subtask_count = db.query(func.count(models.Task.id)).filter(models.Task.parent_id == task_id).scalar()
    if subtask_count:
        raise PreconditionFailedError(
            f"Cannot delete {task_label(task)}: it has {subtask_count} subtask(s). Delete subtasks first."
        )

    if task.list_id is not None:
        resequence_scope(db, models.Task, models.Task.list_id, task.list_id, exclude_id=task.id)
    db.delete(task)
    db.commit()
    logger.info(f"Deleted task #{task.number} ({task_id})")


def duplicate_task(
    db: Session,
    task_id: str,
    user_id: Optional[str] = None,
    title: Optional[str] = None,
    list_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    include_checklists: bool = False,
    include_comments: bool = False,
) -> models.Task:
    """
    Copy a task into a new one with the next task number.

    The copy starts as ``todo`` at the end of its list (the source's list
    unless ``list_id`` is given) and is titled ``"<title> (Copy)"`` by
    default. Checklists are copied with every item unchecked. Copied
    comments keep their author and are marked as copies. Dependency edges,
    links and time entries are never copied.

    Raises:
        NotFoundError: If the task, list or assignee does not exist
        ValidationFailedError: If the list is in another project
    """
    source = get_task(db, task_id)
    if not source:
        raise NotFoundError(f"Task {task_id} not found")
    target_list_id = list_id if list_id is not None else source.list_id
    _validate_list_in_project(db, target_list_id, source.project_id)
    _validate_assignee(db, assignee_id)

    number = _next_task_number(db, source.project_id)
    position = 0
    if target_list_id is not None:
        position = next_position(db, models.Task, models.Task.list_id, target_list_id)

    copy = models.Task(
        project_id=source.project_id,
        list_id=target_list_id,
        parent_id=source.parent_id,
        number=number,
        title=title or f"{source.title} (Copy)",
        description=source.description,
        status=models.TaskStatus.TODO,
        priority=source.priority,
        type=source.type,
        position=position,
        assignee_id=assignee_id or source.assignee_id,
        reporter_id=source.reporter_id,
        due_date=source.due_date,
        estimated_hours=source.estimated_hours,
    )
    db.add(copy)
    db.flush()

    if include_checklists:
        for checklist in source.checklists:
            checklist_copy = models.Checklist(task_id=copy.id, title=checklist.title)
            db.add(checklist_copy)
            db.flush()
            for index, item in enumerate(checklist.items):
                db.add(models.ChecklistItem(checklist_id=checklist_copy.id, content=item.content, position=index))
    if include_comments:
        for comment in source.comments:
            db.add(models.TaskComment(
                task_id=copy.id,
                author_id=comment.author_id,
                content=f"[Copied from original task] {comment.content}",
                mentions=list(comment.mentions or []),
            ))

    log_task_activity(
        db, copy.id, TaskActivityType.CREATED, user_id,
        message=f"Duplicated from {task_label(source)}",
        details={"source_task_id": source.id, "list_id": copy.list_id, "position": position},
    )
    db.commit()
    db.refresh(copy)
    logger.info(f"Duplicated task #{source.number} as #{copy.number}")
    return copy


def archive_task(db: Session, task_id: str, user_id: Optional[str] = None) -> models.Task:
    """
    Archive a task by cancelling it. It stops blocking its dependents.

    Raises:
        NotFoundError: If the task does not exist
        ConflictError: If the task is already cancelled
    """
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    previous = models.TaskStatus(task.status)
    if previous == models.TaskStatus.CANCELLED:
        raise ConflictError(f"{task_label(task)} is already archived")

    task.status = models.TaskStatus.CANCELLED
    log_task_activity(
        db, task.id, TaskActivityType.ARCHIVED, user_id,
        message=f"Archived {task_label(task)}",
        details={"status": {"from": previous.value, "to": models.TaskStatus.CANCELLED.value}},
    )
    db.commit()
    db.refresh(task)
    return task


def unarchive_task(db: Session, task_id: str, user_id: Optional[str] = None) -> models.Task:
    """
    Bring an archived (cancelled) task back as ``todo``.

    Raises:
        NotFoundError: If the task does not exist
        ConflictError: If the task is not archived
    """
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    if models.TaskStatus(task.status) != models.TaskStatus.CANCELLED:
        raise ConflictError(f"{task_label(task)} is not archived")

    task.status = models.TaskStatus.TODO
    log_task_activity(
        db, task.id, TaskActivityType.UNARCHIVED, user_id,
        message=f"Unarchived {task_label(task)}",
        details={"status": {"from": models.TaskStatus.CANCELLED.value, "to": models.TaskStatus.TODO.value}},
    )
    db.commit()
    db.refresh(task)
    return task


def bulk_update_tasks(
    db: Session,
    task_ids: list[str],
    patch: dict,
    user_id: Optional[str] = None,
) -> dict:
    """
    Apply the same patch to many tasks, one transaction per task.

    Returns:
        ``{"successful": [Task], "failed": [{"task_id", "error"}]}``
    """
    successful = []
    failed = []
    for task_id in task_ids:
        try:
            successful.append(update_task(db, task_id, patch, user_id))
        except TaskboardError as e:
            db.rollback()
            failed.append({"task_id": task_id, "error": e.message})
    logger.info(f"Bulk update: {len(successful)} updated, {len(failed)} failed")
    return {"successful": successful, "failed": failed}


# ============================================================================
# Requirement CRUD Operations
# ============================================================================

REQUIREMENT_TYPE_PREFIXES = {
    models.RequirementType.FUNCTIONAL: "FR",
    models.RequirementType.NON_FUNCTIONAL: "NFR",
    models.RequirementType.TECHNICAL: "TR",
    models.RequirementType.BUSINESS_RULE: "BR",
    models.RequirementType.CONSTRAINT: "CR",
}

UPDATABLE_REQUIREMENT_FIELDS = {
    "title", "description", "type", "status", "priority",
    "acceptance_criteria", "dependencies", "tags",
}

_CODE_SEQUENCE = re.compile(r"-(\d+)$")


def requirement_code_prefix(requirement_type: models.RequirementType) -> str:
    return REQUIREMENT_TYPE_PREFIXES.get(models.RequirementType(requirement_type), "REQ")


def format_requirement_code(project_key: str, requirement_type: models.RequirementType, sequence: int) -> str:
    """E.g. ``PROJ-FR-001``."""
    return f"{project_key}-{requirement_code_prefix(requirement_type)}-{sequence:03d}"


def _highest_requirement_sequence(db: Session, project: models.Project, requirement_type) -> int:
    prefix = f"{project.key}-{requirement_code_prefix(requirement_type)}-"
    codes = (
        db.query(models.Requirement.code)
        .filter(
            models.Requirement.project_id == project.id,
            models.Requirement.code.like(f"{prefix}%"),
        )
        .all()
    )
    highest = 0
    for (code,) in codes:
        match = _CODE_SEQUENCE.search(code)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _schedule_analysis(dispatcher: Optional[AnalysisDispatcher], requirement_id: str) -> None:
    dispatcher = dispatcher or get_analysis_dispatcher()
    dispatcher.submit(f"analyze-requirement-{requirement_id}", analyze_requirement, requirement_id)


def create_requirement(
    db: Session,
    requirement_data: schemas.RequirementCreate,
    author_id: Optional[str] = None,
    dispatcher: Optional[AnalysisDispatcher] = None,
) -> models.Requirement:
    """
    Create a requirement at version 1 with a generated code.

    The code sequence is taken from the locked per-project, per-type
    counter. Quality analysis is scheduled after commit and cannot fail
    the creation.

    Args:
        db: Database session
        requirement_data: Requirement creation data
        author_id: Creating user
        dispatcher: Background job dispatcher (process default if None)

    Returns:
        Created Requirement object

    Raises:
        NotFoundError: If the project does not exist
    """
    project = get_project(db, requirement_data.project_id)
    if not project:
        raise NotFoundError(f"Project {requirement_data.project_id} not found")

    requirement_type = requirement_data.type
    sequence = _next_sequence_value(
        db,
        project.id,
        requirement_sequence_name(requirement_type),
        seed=lambda: _highest_requirement_sequence(db, project, requirement_type),
    )

    requirement = models.Requirement(
        project_id=project.id,
        code=format_requirement_code(project.key, requirement_type, sequence),
        title=requirement_data.title,
        description=requirement_data.description,
        type=requirement_type,
        priority=requirement_data.priority,
        status=models.RequirementStatus.DRAFT,
        version=1,
        acceptance_criteria=list(requirement_data.acceptance_criteria),
        dependencies=list(requirement_data.dependencies),
        tags=list(requirement_data.tags),
        test_cases=[],
        author_id=author_id,
    )
    db.add(requirement)
    db.flush()

    create_history_entry(
        db,
        requirement.id,
        version=1,
        action="created",
        changes={
            "title": requirement.title,
            "description": requirement.description,
            "type": normalize_value(requirement.type),
            "priority": normalize_value(requirement.priority),
        },
        changed_by=author_id,
    )

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Requirement code {requirement.code} is already in use. Retry the request.")
    db.refresh(requirement)
    logger.info(f"Created requirement {requirement.code}: {requirement.title}")

    _schedule_analysis(dispatcher, requirement.id)
    return requirement


def get_requirement(db: Session, requirement_id: str) -> Optional[models.Requirement]:
    return db.query(models.Requirement).filter(models.Requirement.id == requirement_id).first()


def get_requirements(
    db: Session,
    project_id: Optional[str] = None,
    requirement_type: Optional[models.RequirementType] = None,
    status: Optional[models.RequirementStatus] = None,
    priority: Optional[models.RequirementPriority] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Requirement], int]:
    """
    List requirements with filtering and pagination.

    Returns:
        Tuple of (requirements, total count), newest first
    """
    query = db.query(models.Requirement)
    if project_id:
        query = query.filter(models.Requirement.project_id == project_id)
    if requirement_type:
        query = query.filter(models.Requirement.type == requirement_type)
    if status:
        query = query.filter(models.Requirement.status == status)
    if priority:
        query = query.filter(models.Requirement.priority == priority)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Requirement.title.ilike(pattern),
            models.Requirement.description.ilike(pattern),
            models.Requirement.code.ilike(pattern),
        ))

    total = query.count()
    items = query.order_by(models.Requirement.created_at.desc()).offset(skip).limit(limit).all()
    return items, total


def update_requirement(
    db: Session,
    requirement_id: str,
    patch: dict,
    changed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
    dispatcher: Optional[AnalysisDispatcher] = None,
) -> models.Requirement:
    """
    Update a requirement, versioning and auditing the change.

    The version goes up by one when the patch carries any significant field
    (title, description, type, acceptance_criteria, dependencies). One
    history entry holds every field that actually changed. Quality analysis
    is re-scheduled when title, description or acceptance criteria change.

    Args:
        db: Database session
        requirement_id: Requirement id
        patch: Fields to change (only the keys present are applied)
        changed_by: Acting user
        expected_version: Version the caller read, for optimistic locking
        dispatcher: Background job dispatcher (process default if None)

    Returns:
        Updated Requirement

    Raises:
        NotFoundError: If the requirement does not exist
        ConflictError: If ``expected_version`` is stale
        ValidationFailedError: If the patch is malformed or the status
            transition is disallowed (when transitions are enforced)
    """
    unknown = set(patch) - UPDATABLE_REQUIREMENT_FIELDS
    if unknown:
        raise ValidationFailedError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    requirement = (
        db.query(models.Requirement)
        .filter(models.Requirement.id == requirement_id)
        .with_for_update()
        .first()
    )
    if not requirement:
        raise NotFoundError(f"Requirement {requirement_id} not found")

    check_expected_version(requirement, expected_version)

    if "status" in patch and get_settings().enforce_requirement_transitions:
        validate_transition(
            models.RequirementStatus(requirement.status),
            models.RequirementStatus(patch["status"]),
        )

    changes = compute_field_changes(requirement, patch)
    new_version = next_version(requirement, patch)

    for field, value in patch.items():
        setattr(requirement, field, list(value) if isinstance(value, (list, tuple)) else value)
    requirement.version = new_version

    if changes:
        create_history_entry(db, requirement.id, new_version, "updated", changes, changed_by)

    db.commit()
    db.refresh(requirement)
    logger.info(
        f"Updated requirement {requirement.code} to v{requirement.version}: "
        f"{', '.join(sorted(changes)) or 'no changes'}"
    )

    if needs_reanalysis(changes):
        _schedule_analysis(dispatcher, requirement.id)
    return requirement


def delete_requirement(db: Session, requirement_id: str) -> None:
    """
    Delete a requirement and its history.

    Raises:
        NotFoundError: If the requirement does not exist
        PreconditionFailedError: If tasks are still linked to it
    """
    requirement = get_requirement(db, requirement_id)
    if not requirement:
        raise NotFoundError(f"Requirement {requirement_id} not found")

    link_count = (
        db.query(func.count(models.TaskLink.id))
        .filter(models.TaskLink.requirement_id == requirement_id)
        .scalar()
    )
    if link_count:
        raise PreconditionFailedError(
            f"Cannot delete requirement {requirement.code} with {link_count} linked task(s). "
            f"Remove task links first."
        )

    db.delete(requirement)
    db.commit()
    logger.info(f"Deleted requirement {requirement.code}")


def get_requirement_history(
    db: Session, requirement_id: str, limit: int = 50
) -> list[models.RequirementHistory]:
    """
    Get history for a requirement, newest first.

    Raises:
        NotFoundError: If the requirement does not exist
    """
    if not get_requirement(db, requirement_id):
        raise NotFoundError(f"Requirement {requirement_id} not found")
    return (
        db.query(models.RequirementHistory)
        .filter(models.RequirementHistory.requirement_id == requirement_id)
        .order_by(models.RequirementHistory.version.desc(), models.RequirementHistory.changed_at.desc())
        .limit(limit)
        .all()
    )


def analyze_requirement(db: Session, requirement_id: str) -> dict:
    """
    Run quality analysis and store the score on the requirement.

    Returns:
        The analysis (score, suggestions, completeness, potential issues)
    """
    requirement = get_requirement(db, requirement_id)
    if not requirement:
        raise NotFoundError(f"Requirement {requirement_id} not found")

    analysis = perform_ai_analysis(
        requirement.title,
        requirement.description,
        requirement.type,
        requirement.acceptance_criteria,
    )
    requirement.quality_score = analysis["quality_score"]
    db.commit()
    logger.info(f"Analyzed requirement {requirement.code}: score {analysis['quality_score']}")
    return analysis


def generate_test_cases(db: Session, requirement_id: str) -> list[dict]:
    """Generate test cases from acceptance criteria and record their ids."""
    requirement = get_requirement(db, requirement_id)
    if not requirement:
        raise NotFoundError(f"Requirement {requirement_id} not found")

    test_cases = build_test_cases(requirement.title, requirement.type, requirement.acceptance_criteria)
    requirement.test_cases = [test_case["id"] for test_case in test_cases]
    db.commit()
    logger.info(f"Generated {len(test_cases)} test case(s) for requirement {requirement.code}")
    return test_cases


def detect_duplicates(
    db: Session,
    project_id: str,
    title: str,
    description: str = "",
) -> list[models.Requirement]:
    """Requirements in the project whose title or description closely match."""
    requirements = db.query(models.Requirement).filter(models.Requirement.project_id == project_id).all()
    return [
        requirement for requirement in requirements
        if is_potential_duplicate(title, description, requirement.title, requirement.description)
    ]


def get_requirement_coverage(db: Session, project_id: str) -> dict:
    """
    Implementation and test coverage for a project's requirements.

    A requirement counts as tested once test cases were generated for it.
    Percentages are 0 for a project without requirements.
    """
    rows = (
        db.query(models.Requirement.status, models.Requirement.test_cases)
        .filter(models.Requirement.project_id == project_id)
        .all()
    )
    total = len(rows)
    implemented = sum(1 for status, _ in rows if status == models.RequirementStatus.IMPLEMENTED)
    tested = sum(1 for _, test_cases in rows if test_cases)
    return {
        "total": total,
        "implemented": implemented,
        "tested": tested,
        "implementation_coverage": (implemented / total) * 100 if total else 0.0,
        "test_coverage": (tested / total) * 100 if total else 0.0,
    }


def link_requirement_to_task(
    db: Session,
    requirement_id: str,
    task_id: str,
    link_type: str = "implements",
    user_id: Optional[str] = None,
) -> models.TaskLink:
    """
    Link a task to a requirement.

    Raises:
        NotFoundError: If the requirement or task does not exist
        ConflictError: If the pair is already linked
    """
    requirement = get_requirement(db, requirement_id)
    if not requirement:
        raise NotFoundError(f"Requirement {requirement_id} not found")
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task {task_id} not found")

    existing = (
        db.query(models.TaskLink)
        .filter(models.TaskLink.requirement_id == requirement_id, models.TaskLink.task_id == task_id)
        .first()
    )
    if existing:
        raise ConflictError(f"{task_label(task)} is already linked to requirement {requirement.code}")

    link = models.TaskLink(requirement_id=requirement_id, task_id=task_id, link_type=link_type)
    db.add(link)
    log_task_activity(
        db, task_id, TaskActivityType.REQUIREMENT_LINKED, user_id,
        message=f"Linked to requirement {requirement.code} ({link_type})",
        details={"requirement_id": requirement_id, "link_type": link_type},
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"{task_label(task)} is already linked to requirement {requirement.code}")
    db.refresh(link)
    return link


def unlink_requirement_from_task(
    db: Session,
    requirement_id: str,
    task_id: str,
    user_id: Optional[str] = None,
) -> None:
    """
    Remove the link between a requirement and a task.

    Raises:
        NotFoundError: If no such link exists
    """
    link = (
        db.query(models.TaskLink)
        .filter(models.TaskLink.requirement_id == requirement_id, models.TaskLink.task_id == task_id)
        .first()
    )
    if not link:
        raise NotFoundError(f"Task {task_id} is not linked to requirement {requirement_id}")

    log_task_activity(
        db, task_id, TaskActivityType.REQUIREMENT_UNLINKED, user_id,
        message=f"Unlinked from requirement {link.requirement.code}",
        details={"requirement_id": requirement_id},
    )
    db.delete(link)
    db.commit()


def get_requirement_links(db: Session, requirement_id: str) -> list[models.TaskLink]:
    return (
        db.query(models.TaskLink)
        .filter(models.TaskLink.requirement_id == requirement_id)
        .order_by(models.TaskLink.created_at)
        .all()
    )
