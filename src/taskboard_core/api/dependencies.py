"""Shared request dependencies: caller identity, permission gates, error mapping."""
import logging
from typing import Iterable, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .. import crud, permissions
from ..analysis_jobs import AnalysisDispatcher, get_analysis_dispatcher
from ..database import get_db
from ..errors import CircularDependencyError, TaskboardError
from ..models import MemberPermission

logger = logging.getLogger("taskboard-core.api.dependencies")


def http_error(error: TaskboardError) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(error, CircularDependencyError):
        return HTTPException(
            status_code=error.status_code,
            detail={
                "error": "circular_dependency",
                "message": error.message,
                "cycle": error.cycle,
            },
        )
    return HTTPException(status_code=error.status_code, detail=error.message)


def get_current_user_id(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> str:
    """
    Identify the caller from the ``X-User-Id`` header.

    Token verification happens in front of this service; the header
    carries the already-authenticated user id.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if not crud.get_user(db, x_user_id):
        raise HTTPException(status_code=401, detail=f"Unknown user: {x_user_id}")
    return x_user_id


def get_dispatcher() -> AnalysisDispatcher:
    return get_analysis_dispatcher()


def authorize(
    db: Session,
    workspace_id: str,
    user_id: str,
    allowed: Iterable[MemberPermission],
) -> MemberPermission:
    """Permission gate run before any engine call."""
    try:
        return permissions.require_permission(db, workspace_id, user_id, allowed)
    except TaskboardError as e:
        raise http_error(e)


def _resolve(resolver, db: Session, entity_id: str) -> str:
    try:
        return resolver(db, entity_id)
    except TaskboardError as e:
        raise http_error(e)


def authorize_project(db: Session, project_id: str, user_id: str, allowed) -> str:
    workspace_id = _resolve(permissions.workspace_id_for_project, db, project_id)
    authorize(db, workspace_id, user_id, allowed)
    return workspace_id


def authorize_task(db: Session, task_id: str, user_id: str, allowed) -> str:
    workspace_id = _resolve(permissions.workspace_id_for_task, db, task_id)
    authorize(db, workspace_id, user_id, allowed)
    return workspace_id


def authorize_list(db: Session, list_id: str, user_id: str, allowed) -> str:
    workspace_id = _resolve(permissions.workspace_id_for_list, db, list_id)
    authorize(db, workspace_id, user_id, allowed)
    return workspace_id


def authorize_requirement(db: Session, requirement_id: str, user_id: str, allowed) -> str:
    workspace_id = _resolve(permissions.workspace_id_for_requirement, db, requirement_id)
    authorize(db, workspace_id, user_id, allowed)
    return workspace_id
