"""Task endpoints: CRUD, moves, bulk updates and activity."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ... import crud, models, reports, schemas
from ...activity import get_task_activity
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import READ_PERMISSIONS, WRITE_PERMISSIONS, workspace_id_for_task
from ..dependencies import authorize, authorize_project, authorize_task, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.tasks")

router = APIRouter(tags=["tasks"])


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    task: schemas.TaskCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Create a task at the end of its list.

    The caller is recorded as the reporter.
    """
    authorize_project(db, task.project_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.create_task(db, task, reporter_id=current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/", response_model=schemas.TaskPageResponse)
def list_tasks(
    project_id: str = Query(..., description="Project to list tasks from"),
    list_id: Optional[str] = Query(None, description="Filter by list"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TaskPriority] = Query(None, description="Filter by priority"),
    assignee_id: Optional[str] = Query(None, description="Filter by assignee"),
    parent_id: Optional[str] = Query(None, description="Filter by parent task"),
    search: Optional[str] = Query(None, description="Search in title and description"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """List a project's tasks with filters and pagination."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    tasks, total = crud.get_tasks(
        db,
        project_id=project_id,
        list_id=list_id,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        parent_id=parent_id,
        search=search,
        skip=skip,
        limit=limit,
    )
    return schemas.TaskPageResponse(items=tasks, total=total, skip=skip, limit=limit)


@router.post("/bulk-update", response_model=schemas.BulkTaskUpdateResult)
def bulk_update_tasks(
    request: schemas.BulkTaskUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Apply one patch to many tasks.

    Each task is updated in its own transaction; failures are reported per
    task. Unknown task ids show up as failures.
    """
    checked = set()
    for task_id in request.task_ids:
        try:
            workspace_id = workspace_id_for_task(db, task_id)
        except TaskboardError:
            continue
        if workspace_id not in checked:
            authorize(db, workspace_id, current_user_id, WRITE_PERMISSIONS)
            checked.add(workspace_id)

    return crud.bulk_update_tasks(db, request.task_ids, request.updates.to_patch(), current_user_id)


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@router.patch("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: str,
    update: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Partially update a task.

    Changing ``list_id`` appends the task to the new list.
    """
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.update_task(db, task_id, update.to_patch(), current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        crud.delete_task(db, task_id)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/{task_id}/move", response_model=schemas.TaskResponse)
def move_task(
    task_id: str,
    move: schemas.TaskMove,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Move a task to a position in a list; positions in both lists are kept dense."""
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.move_task(db, task_id, move.list_id, move.position, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{task_id}/activity", response_model=list[schemas.TaskActivityResponse])
def list_task_activity(
    task_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Activity log for a task, newest first."""
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    return get_task_activity(db, task_id, limit)


@router.post("/{task_id}/duplicate", response_model=schemas.TaskResponse, status_code=201)
def duplicate_task(
    task_id: str,
    options: Optional[schemas.TaskDuplicate] = None,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Copy a task as a new ``todo`` task at the end of its list.

    Checklists (unchecked) and comments are copied only when requested.
    """
    options = options or schemas.TaskDuplicate()
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.duplicate_task(
            db,
            task_id,
            current_user_id,
            title=options.title,
            list_id=options.list_id,
            assignee_id=options.assignee_id,
            include_checklists=options.include_checklists,
            include_comments=options.include_comments,
        )
    except TaskboardError as e:
        raise http_error(e)


@router.post("/{task_id}/archive", response_model=schemas.TaskResponse)
def archive_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Archive (cancel) a task."""
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.archive_task(db, task_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/{task_id}/unarchive", response_model=schemas.TaskResponse)
def unarchive_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Reopen an archived task as ``todo``."""
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.unarchive_task(db, task_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{task_id}/metrics", response_model=schemas.TaskMetricsResponse)
def get_task_metrics(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        return reports.get_task_metrics(db, task_id)
    except TaskboardError as e:
        raise http_error(e)
