"""Board list endpoints."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import ADMIN_PERMISSIONS, WRITE_PERMISSIONS
from ..dependencies import authorize_list, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.lists")

router = APIRouter(tags=["lists"])


@router.patch("/{list_id}", response_model=schemas.TaskListResponse)
def update_list(
    list_id: str,
    update: schemas.TaskListUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_list(db, list_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.update_list(db, list_id, update.to_patch())
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/{list_id}", status_code=204)
def delete_list(
    list_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Delete an empty list. Requires owner or admin."""
    authorize_list(db, list_id, current_user_id, ADMIN_PERMISSIONS)
    try:
        crud.delete_list(db, list_id)
    except TaskboardError as e:
        raise http_error(e)


@router.put("/{list_id}/tasks/reorder", response_model=list[schemas.TaskResponse])
def reorder_tasks(
    list_id: str,
    request: schemas.ReorderRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Set the order of every task in a list.

    ``ordered_ids`` must contain exactly the list's task ids.
    """
    authorize_list(db, list_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.reorder_tasks(db, list_id, request.ordered_ids)
    except TaskboardError as e:
        raise http_error(e)
