"""Workspace membership and permission checks.

Every engine call made through the API is wrapped in one of these guards.
A permission is checked by membership in an allowed set: a caller needing
``ADMIN_PERMISSIONS`` is not satisfied by ``WRITE``.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import AccessDeniedError, NotFoundError
from .models import MemberPermission

logger = logging.getLogger("taskboard-core.permissions")


READ_PERMISSIONS = frozenset({
    MemberPermission.OWNER,
    MemberPermission.ADMIN,
    MemberPermission.WRITE,
    MemberPermission.READ,
})
WRITE_PERMISSIONS = frozenset({
    MemberPermission.OWNER,
    MemberPermission.ADMIN,
    MemberPermission.WRITE,
})
ADMIN_PERMISSIONS = frozenset({
    MemberPermission.OWNER,
    MemberPermission.ADMIN,
})


def _membership(db: Session, workspace_id: str, user_id: str) -> Optional[models.WorkspaceMember]:
    return (
        db.query(models.WorkspaceMember)
        .filter(
            models.WorkspaceMember.workspace_id == workspace_id,
            models.WorkspaceMember.user_id == user_id,
        )
        .first()
    )


def check_user_access(db: Session, workspace_id: str, user_id: str) -> bool:
    """Any membership in the workspace grants access."""
    return _membership(db, workspace_id, user_id) is not None


def check_user_permission(
    db: Session,
    workspace_id: str,
    user_id: str,
    allowed: Iterable[MemberPermission],
) -> bool:
    """
    Check that the user's permission level is one of ``allowed``.

    Args:
        db: Database session
        workspace_id: Workspace to check
        user_id: User to check
        allowed: Accepted permission levels

    Returns:
        True if the user is a member with one of the allowed levels
    """
    member = _membership(db, workspace_id, user_id)
    if member is None:
        return False
    return MemberPermission(member.permission) in set(allowed)


def get_user_permission(db: Session, workspace_id: str, user_id: str) -> Optional[MemberPermission]:
    """Return the user's permission level, or None for non-members."""
    member = _membership(db, workspace_id, user_id)
    return MemberPermission(member.permission) if member else None


def require_access(db: Session, workspace_id: str, user_id: str) -> None:
    """Raise AccessDeniedError unless the user is a workspace member."""
    if not check_user_access(db, workspace_id, user_id):
        logger.warning(f"User {user_id} denied access to workspace {workspace_id}")
        raise AccessDeniedError("You do not have access to this workspace")


def require_permission(
    db: Session,
    workspace_id: str,
    user_id: str,
    allowed: Iterable[MemberPermission],
) -> MemberPermission:
    """
    Raise AccessDeniedError unless the user holds one of ``allowed``.

    Returns:
        The user's permission level
    """
    allowed = frozenset(allowed)
    permission = get_user_permission(db, workspace_id, user_id)
    if permission is None:
        logger.warning(f"User {user_id} denied access to workspace {workspace_id}")
        raise AccessDeniedError("You do not have access to this workspace")
    if permission not in allowed:
        needed = ", ".join(sorted(p.value for p in allowed))
        logger.warning(
            f"User {user_id} with permission {permission.value} denied in workspace {workspace_id}"
        )
        raise AccessDeniedError(
            f"Insufficient permissions: requires one of [{needed}], you have {permission.value}"
        )
    return permission


# ============================================================================
# Entity → workspace resolution
# ============================================================================

def workspace_id_for_project(db: Session, project_id: str) -> str:
    workspace_id = (
        db.query(models.Project.workspace_id).filter(models.Project.id == project_id).scalar()
    )
    if workspace_id is None:
        raise NotFoundError(f"Project {project_id} not found")
    return workspace_id


def workspace_id_for_task(db: Session, task_id: str) -> str:
    workspace_id = (
        db.query(models.Project.workspace_id)
        .join(models.Task, models.Task.project_id == models.Project.id)
        .filter(models.Task.id == task_id)
        .scalar()
    )
    if workspace_id is None:
        raise NotFoundError(f"Task {task_id} not found")
    return workspace_id


def workspace_id_for_list(db: Session, list_id: str) -> str:
    workspace_id = (
        db.query(models.Project.workspace_id)
        .join(models.TaskList, models.TaskList.project_id == models.Project.id)
        .filter(models.TaskList.id == list_id)
        .scalar()
    )
    if workspace_id is None:
        raise NotFoundError(f"List {list_id} not found")
    return workspace_id


def workspace_id_for_requirement(db: Session, requirement_id: str) -> str:
    workspace_id = (
        db.query(models.Project.workspace_id)
        .join(models.Requirement, models.Requirement.project_id == models.Project.id)
        .filter(models.Requirement.id == requirement_id)
        .scalar()
    )
    if workspace_id is None:
        raise NotFoundError(f"Requirement {requirement_id} not found")
    return workspace_id
