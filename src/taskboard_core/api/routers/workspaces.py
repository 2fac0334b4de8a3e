"""Workspace and membership endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...database import get_db
from ...errors import TaskboardError
from ...models import MemberPermission
from ...permissions import ADMIN_PERMISSIONS, READ_PERMISSIONS
from ..dependencies import authorize, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.workspaces")

router = APIRouter(tags=["workspaces"])


@router.post("/", response_model=schemas.WorkspaceResponse, status_code=201)
def create_workspace(
    workspace: schemas.WorkspaceCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Create a workspace owned by the caller."""
    try:
        return crud.create_workspace(db, workspace, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/", response_model=list[schemas.WorkspaceResponse])
def list_my_workspaces(
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    return crud.get_user_workspaces(db, current_user_id)


@router.get("/{workspace_id}", response_model=schemas.WorkspaceResponse)
def get_workspace(
    workspace_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    workspace = crud.get_workspace(db, workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail=f"Workspace {workspace_id} not found")
    authorize(db, workspace_id, current_user_id, READ_PERMISSIONS)
    return workspace


@router.get("/{workspace_id}/members", response_model=list[schemas.WorkspaceMemberResponse])
def list_members(
    workspace_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize(db, workspace_id, current_user_id, READ_PERMISSIONS)
    return crud.get_workspace_members(db, workspace_id)


@router.post(
    "/{workspace_id}/members",
    response_model=schemas.WorkspaceMemberResponse,
    status_code=201,
)
def add_member(
    workspace_id: str,
    member: schemas.WorkspaceMemberAdd,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Add a member. Requires owner or admin."""
    authorize(db, workspace_id, current_user_id, ADMIN_PERMISSIONS)
    try:
        return crud.add_workspace_member(db, workspace_id, member.user_id, member.permission)
    except TaskboardError as e:
        raise http_error(e)


@router.patch("/{workspace_id}/members/{user_id}", response_model=schemas.WorkspaceMemberResponse)
def update_member_permission(
    workspace_id: str,
    user_id: str,
    update: schemas.WorkspaceMemberUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Change a member's permission. Requires owner or admin.

    Only an owner may grant ownership, and an owner cannot be demoted.
    """
    caller_permission = authorize(db, workspace_id, current_user_id, ADMIN_PERMISSIONS)
    if update.permission == MemberPermission.OWNER and caller_permission != MemberPermission.OWNER:
        raise HTTPException(status_code=403, detail="Only an owner can grant ownership")
    try:
        return crud.update_member_permission(db, workspace_id, user_id, update.permission)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/{workspace_id}/members/{user_id}", status_code=204)
def remove_member(
    workspace_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Remove a member. Requires owner or admin; owners cannot be removed."""
    authorize(db, workspace_id, current_user_id, ADMIN_PERMISSIONS)
    try:
        crud.remove_workspace_member(db, workspace_id, user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{workspace_id}/projects", response_model=list[schemas.ProjectResponse])
def list_projects(
    workspace_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize(db, workspace_id, current_user_id, READ_PERMISSIONS)
    return crud.get_projects(db, workspace_id)
