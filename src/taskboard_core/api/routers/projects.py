"""Project endpoints, including the project's board lists."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ... import crud, reports, schemas
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import READ_PERMISSIONS, WRITE_PERMISSIONS
from ..dependencies import authorize, authorize_project, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.projects")

router = APIRouter(tags=["projects"])


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Create a project with the default board lists."""
    if not crud.get_workspace(db, project.workspace_id):
        raise HTTPException(status_code=404, detail=f"Workspace {project.workspace_id} not found")
    authorize(db, project.workspace_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.create_project(db, project, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return crud.get_project(db, project_id)


@router.get("/{project_id}/lists", response_model=list[schemas.TaskListResponse])
def list_lists(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Board lists in position order."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return crud.get_lists(db, project_id)


@router.post("/{project_id}/lists", response_model=schemas.TaskListResponse, status_code=201)
def create_list(
    project_id: str,
    task_list: schemas.TaskListCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Append a list to the end of the board."""
    authorize_project(db, project_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.create_list(db, project_id, task_list)
    except TaskboardError as e:
        raise http_error(e)


@router.put("/{project_id}/lists/reorder", response_model=list[schemas.TaskListResponse])
def reorder_lists(
    project_id: str,
    request: schemas.ReorderRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Set the order of every list on the board."""
    authorize_project(db, project_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.reorder_lists(db, project_id, request.ordered_ids)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{project_id}/stats", response_model=schemas.ProjectStatsResponse)
def get_project_stats(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Task and requirement breakdowns plus the ten latest task activities."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    try:
        return reports.get_project_stats(db, project_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{project_id}/task-counts", response_model=list[schemas.GroupCount])
def count_tasks(
    project_id: str,
    group_by: str = Query("status", description="One of: status, priority, assignee"),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Number of tasks per status, priority or assignee, largest group first."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    try:
        return reports.count_tasks_by(db, project_id, group_by)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{project_id}/overdue-tasks", response_model=list[schemas.TaskSummary])
def get_overdue_tasks(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Open tasks past their due date, most overdue first."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return reports.get_overdue_tasks(db, project_id)
