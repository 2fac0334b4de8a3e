"""Tests for task comments."""
import pytest

from taskboard_core import comments, crud, models
from taskboard_core.errors import AccessDeniedError, NotFoundError
from taskboard_core.models import MemberPermission, TaskActivityType


def comment_activity(task):
    return [a for a in task.activities if a.action in (
        TaskActivityType.COMMENT_ADDED,
        TaskActivityType.COMMENT_UPDATED,
        TaskActivityType.COMMENT_DELETED,
    )]


class TestAddComment:

    def test_add_and_list(self, db, owner, make_task, make_member):
        task = make_task("Launch")
        writer = make_member(MemberPermission.WRITE)

        comments.add_comment(db, task.id, owner.id, "Kickoff Monday", mentions=[writer.id])
        comments.add_comment(db, task.id, writer.id, "Works for me")

        listed = comments.get_task_comments(db, task.id)
        assert {c.content for c in listed} == {"Kickoff Monday", "Works for me"}
        kickoff = next(c for c in listed if c.author_id == owner.id)
        assert kickoff.author.full_name == "Olive Owner"
        assert kickoff.mentions == [writer.id]

    def test_add_logs_activity(self, db, owner, make_task):
        task = make_task("Launch")
        comment = comments.add_comment(db, task.id, owner.id, "Hi")

        (entry,) = comment_activity(task)
        assert entry.action == TaskActivityType.COMMENT_ADDED
        assert entry.details["comment_id"] == comment.id

    def test_unknown_task(self, db, owner):
        with pytest.raises(NotFoundError):
            comments.add_comment(db, "missing", owner.id, "Hi")
        with pytest.raises(NotFoundError):
            comments.get_task_comments(db, "missing")


class TestEditAndDelete:
    """Only a comment's author may change it."""

    def test_author_edits(self, db, owner, make_task):
        task = make_task("Launch")
        comment = comments.add_comment(db, task.id, owner.id, "Draft")

        edited = comments.update_comment(db, comment.id, "Final", owner.id)

        assert edited.content == "Final"
        updates = [a for a in comment_activity(task) if a.action == TaskActivityType.COMMENT_UPDATED]
        assert updates[0].details["content"] == {"from": "Draft", "to": "Final"}

    def test_other_user_cannot_edit_or_delete(self, db, owner, make_task, make_member):
        task = make_task("Launch")
        admin = make_member(MemberPermission.ADMIN)
        comment = comments.add_comment(db, task.id, owner.id, "Mine")

        with pytest.raises(AccessDeniedError) as exc_info:
            comments.update_comment(db, comment.id, "Yours", admin.id)
        assert exc_info.value.message == "Only the author can edit a comment"

        with pytest.raises(AccessDeniedError):
            comments.delete_comment(db, comment.id, admin.id)
        assert [c.content for c in comments.get_task_comments(db, task.id)] == ["Mine"]

    def test_author_deletes(self, db, owner, make_task):
        task = make_task("Launch")
        comment = comments.add_comment(db, task.id, owner.id, "Oops")

        comments.delete_comment(db, comment.id, owner.id)

        assert comments.get_task_comments(db, task.id) == []
        assert TaskActivityType.COMMENT_DELETED in [a.action for a in comment_activity(task)]

    def test_unknown_comment(self, db, owner):
        with pytest.raises(NotFoundError):
            comments.update_comment(db, "missing", "x", owner.id)

    def test_comments_go_with_task(self, db, owner, make_task):
        task = make_task("Launch")
        comments.add_comment(db, task.id, owner.id, "Hi")

        crud.delete_task(db, task.id)

        assert db.query(models.TaskComment).count() == 0
