"""Task comment endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ... import comments, models, schemas
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import READ_PERMISSIONS, WRITE_PERMISSIONS
from ..dependencies import authorize_task, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.comments")

router = APIRouter(tags=["comments"])


def _task_id_for_comment(db: Session, comment_id: str) -> str:
    task_id = db.query(models.TaskComment.task_id).filter(models.TaskComment.id == comment_id).scalar()
    if task_id is None:
        raise HTTPException(status_code=404, detail=f"Comment {comment_id} not found")
    return task_id


@router.post("/tasks/{task_id}/comments", response_model=schemas.CommentResponse, status_code=201)
def add_comment(
    task_id: str,
    comment: schemas.CommentCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return comments.add_comment(db, task_id, current_user_id, comment.content, comment.mentions)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/tasks/{task_id}/comments", response_model=list[schemas.CommentResponse])
def list_comments(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Comments on a task, oldest first."""
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        return comments.get_task_comments(db, task_id)
    except TaskboardError as e:
        raise http_error(e)


@router.patch("/comments/{comment_id}", response_model=schemas.CommentResponse)
def update_comment(
    comment_id: str,
    update: schemas.CommentUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Edit a comment. Only its author may, and only while still a writer."""
    authorize_task(db, _task_id_for_comment(db, comment_id), current_user_id, WRITE_PERMISSIONS)
    try:
        return comments.update_comment(db, comment_id, update.content, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, _task_id_for_comment(db, comment_id), current_user_id, WRITE_PERMISSIONS)
    try:
        comments.delete_comment(db, comment_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)
