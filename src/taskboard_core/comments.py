"""Task comments.

Any writer in the workspace may comment; only a comment's author may edit
or delete it. Every change is mirrored in the task's activity log.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from . import models
from .activity import log_task_activity
from .errors import AccessDeniedError, NotFoundError
from .models import TaskActivityType

logger = logging.getLogger("taskboard-core.comments")


def _require_comment(db: Session, comment_id: str) -> models.TaskComment:
    comment = db.query(models.TaskComment).filter(models.TaskComment.id == comment_id).first()
    if not comment:
        raise NotFoundError(f"Comment {comment_id} not found")
    return comment


def _require_author(comment: models.TaskComment, user_id: str, action: str) -> None:
    if comment.author_id != user_id:
        logger.warning(f"User {user_id} tried to {action} comment {comment.id} by {comment.author_id}")
        raise AccessDeniedError(f"Only the author can {action} a comment")


def add_comment(
    db: Session,
    task_id: str,
    author_id: str,
    content: str,
    mentions: Optional[list[str]] = None,
) -> models.TaskComment:
    """
    Add a comment to a task.

    Raises:
        NotFoundError: If the task does not exist
    """
    if not db.query(models.Task.id).filter(models.Task.id == task_id).first():
        raise NotFoundError(f"Task {task_id} not found")

    comment = models.TaskComment(
        task_id=task_id,
        author_id=author_id,
        content=content,
        mentions=list(mentions or []),
    )
    db.add(comment)
    db.flush()
    log_task_activity(
        db, task_id, TaskActivityType.COMMENT_ADDED, author_id,
        message="Added a comment",
        details={"comment_id": comment.id, "mentions": comment.mentions},
    )
    db.commit()
    db.refresh(comment)
    logger.info(f"User {author_id} commented on task {task_id}")
    return comment


def get_task_comments(db: Session, task_id: str) -> list[models.TaskComment]:
    """Comments on a task, oldest first, with authors loaded."""
    if not db.query(models.Task.id).filter(models.Task.id == task_id).first():
        raise NotFoundError(f"Task {task_id} not found")
    return (
        db.query(models.TaskComment)
        .options(joinedload(models.TaskComment.author))
        .filter(models.TaskComment.task_id == task_id)
        .order_by(models.TaskComment.created_at)
        .all()
    )


def update_comment(db: Session, comment_id: str, content: str, user_id: str) -> models.TaskComment:
    """
    Replace a comment's text.

    Raises:
        NotFoundError: If the comment does not exist
        AccessDeniedError: If ``user_id`` is not the author
    """
    comment = _require_comment(db, comment_id)
    _require_author(comment, user_id, "edit")

    previous = comment.content
    comment.content = content
    log_task_activity(
        db, comment.task_id, TaskActivityType.COMMENT_UPDATED, user_id,
        message="Edited a comment",
        details={"comment_id": comment.id, "content": {"from": previous, "to": content}},
    )
    db.commit()
    db.refresh(comment)
    return comment


def delete_comment(db: Session, comment_id: str, user_id: str) -> None:
    """
    Delete a comment.

    Raises:
        NotFoundError: If the comment does not exist
        AccessDeniedError: If ``user_id`` is not the author
    """
    comment = _require_comment(db, comment_id)
    _require_author(comment, user_id, "delete")

    log_task_activity(
        db, comment.task_id, TaskActivityType.COMMENT_DELETED, user_id,
        message="Deleted a comment",
        details={"comment_id": comment.id},
    )
    db.delete(comment)
    db.commit()
    logger.info(f"Deleted comment {comment_id}")
