"""Checklist and time tracking endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ... import models, schemas, task_tracking
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import READ_PERMISSIONS, WRITE_PERMISSIONS
from ..dependencies import authorize_task, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.tracking")

router = APIRouter(tags=["tracking"])


def _task_id_for_checklist(db: Session, checklist_id: str) -> str:
    task_id = db.query(models.Checklist.task_id).filter(models.Checklist.id == checklist_id).scalar()
    if task_id is None:
        raise HTTPException(status_code=404, detail=f"Checklist {checklist_id} not found")
    return task_id


def _task_id_for_item(db: Session, item_id: str) -> str:
    task_id = (
        db.query(models.Checklist.task_id)
        .join(models.ChecklistItem, models.ChecklistItem.checklist_id == models.Checklist.id)
        .filter(models.ChecklistItem.id == item_id)
        .scalar()
    )
    if task_id is None:
        raise HTTPException(status_code=404, detail=f"Checklist item {item_id} not found")
    return task_id


def _task_id_for_time_entry(db: Session, entry_id: str) -> str:
    task_id = db.query(models.TimeEntry.task_id).filter(models.TimeEntry.id == entry_id).scalar()
    if task_id is None:
        raise HTTPException(status_code=404, detail=f"Time entry {entry_id} not found")
    return task_id


# ============================================================================
# Checklists
# ============================================================================

@router.post("/tasks/{task_id}/checklists", response_model=schemas.ChecklistResponse, status_code=201)
def add_checklist(
    task_id: str,
    checklist: schemas.ChecklistCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.add_checklist(db, task_id, checklist.title, checklist.items, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/tasks/{task_id}/checklists", response_model=list[schemas.ChecklistResponse])
def list_checklists(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        return task_tracking.get_task_checklists(db, task_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/checklists/{checklist_id}", status_code=204)
def delete_checklist(
    checklist_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_checklist(db, checklist_id), current_user_id, WRITE_PERMISSIONS)
    try:
        task_tracking.delete_checklist(db, checklist_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.post(
    "/checklists/{checklist_id}/items",
    response_model=schemas.ChecklistItemResponse,
    status_code=201,
)
def add_checklist_item(
    checklist_id: str,
    item: schemas.ChecklistItemCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_checklist(db, checklist_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.add_checklist_item(db, checklist_id, item.content, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.put("/checklists/{checklist_id}/items/reorder", response_model=list[schemas.ChecklistItemResponse])
def reorder_checklist_items(
    checklist_id: str,
    request: schemas.ReorderRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_checklist(db, checklist_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.reorder_checklist_items(db, checklist_id, request.ordered_ids)
    except TaskboardError as e:
        raise http_error(e)


@router.patch("/checklist-items/{item_id}", response_model=schemas.ChecklistItemResponse)
def update_checklist_item(
    item_id: str,
    update: schemas.ChecklistItemUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_item(db, item_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.update_checklist_item(db, item_id, update.to_patch(), current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/checklist-items/{item_id}", status_code=204)
def delete_checklist_item(
    item_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_item(db, item_id), current_user_id, WRITE_PERMISSIONS)
    try:
        task_tracking.delete_checklist_item(db, item_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


# ============================================================================
# Time tracking
# ============================================================================

@router.post("/tasks/{task_id}/time-entries/start", response_model=schemas.TimeEntryResponse, status_code=201)
def start_time_entry(
    task_id: str,
    request: schemas.TimeEntryStart,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Start the caller's timer on a task. One running entry per user and task."""
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.start_time_entry(db, task_id, current_user_id, request.description)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/time-entries/{entry_id}/stop", response_model=schemas.TimeEntryResponse)
def stop_time_entry(
    entry_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Stop a running entry. Only its owner may stop it."""
    authorize_task(db, _task_id_for_time_entry(db, entry_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.stop_time_entry(db, entry_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/tasks/{task_id}/time-entries", response_model=schemas.TimeEntryResponse, status_code=201)
def log_time_entry(
    task_id: str,
    request: schemas.TimeEntryLog,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.log_time_entry(
            db, task_id, current_user_id, request.started_at, request.ended_at, request.description
        )
    except TaskboardError as e:
        raise http_error(e)


@router.patch("/time-entries/{entry_id}", response_model=schemas.TimeEntryResponse)
def update_time_entry(
    entry_id: str,
    update: schemas.TimeEntryUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Correct the start, end or description of one of the caller's entries."""
    authorize_task(db, _task_id_for_time_entry(db, entry_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return task_tracking.update_time_entry(db, entry_id, update.to_patch(), current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/time-entries/{entry_id}", status_code=204)
def delete_time_entry(
    entry_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_time_entry(db, entry_id), current_user_id, WRITE_PERMISSIONS)
    try:
        task_tracking.delete_time_entry(db, entry_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/tasks/{task_id}/time-summary", response_model=schemas.TimeSummaryResponse)
def get_time_summary(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        return task_tracking.get_task_time_summary(db, task_id)
    except TaskboardError as e:
        raise http_error(e)
