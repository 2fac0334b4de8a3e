"""Tests for duplicating and archiving tasks."""
import pytest

from taskboard_core import comments, crud, task_tracking
from taskboard_core import dependencies as graph
from taskboard_core.errors import ConflictError, NotFoundError, ValidationFailedError
from taskboard_core.models import TaskActivityType, TaskPriority, TaskStatus


class TestDuplicateTask:
    """A copy is a new todo task at the end of its list."""

    def test_copy_fields(self, db, owner, lists, make_task):
        source = make_task(
            "Write release notes",
            list_id=lists[2].id,
            status=TaskStatus.IN_PROGRESS,
            priority=TaskPriority.HIGH,
            description="Summarize changes",
        )

        copy = crud.duplicate_task(db, source.id, owner.id)

        assert copy.id != source.id
        assert copy.title == "Write release notes (Copy)"
        assert copy.number == source.number + 1
        assert copy.status == TaskStatus.TODO
        assert copy.priority == TaskPriority.HIGH
        assert copy.description == "Summarize changes"
        assert copy.list_id == lists[2].id
        assert copy.position == 1

        (created,) = [a for a in copy.activities if a.action == TaskActivityType.CREATED]
        assert created.message == f"Duplicated from task #{source.number}: Write release notes"
        assert created.details["source_task_id"] == source.id

    def test_custom_title_and_list(self, db, lists, make_task):
        source = make_task("a", list_id=lists[1].id)
        make_task("b", list_id=lists[3].id)

        copy = crud.duplicate_task(db, source.id, title="a again", list_id=lists[3].id)

        assert copy.title == "a again"
        assert copy.list_id == lists[3].id
        assert copy.position == 1

    def test_checklists_and_comments_on_request(self, db, owner, make_task):
        source = make_task("a")
        checklist = task_tracking.add_checklist(db, source.id, "Steps", ["build", "ship"])
        task_tracking.update_checklist_item(db, checklist.items[0].id, {"is_completed": True})
        comments.add_comment(db, source.id, owner.id, "Remember the changelog")

        bare = crud.duplicate_task(db, source.id)
        full = crud.duplicate_task(db, source.id, include_checklists=True, include_comments=True)

        assert bare.checklists == []
        assert bare.comments == []
        (copied_checklist,) = full.checklists
        assert [i.content for i in copied_checklist.items] == ["build", "ship"]
        assert not any(i.is_completed for i in copied_checklist.items)
        assert [c.content for c in full.comments] == ["[Copied from original task] Remember the changelog"]
        assert full.comments[0].author_id == owner.id

    def test_dependencies_not_copied(self, db, make_task):
        source, blocker = make_task("a"), make_task("b")
        graph.add_dependency(db, source.id, blocker.id)

        copy = crud.duplicate_task(db, source.id)

        assert graph.get_task_dependencies(db, copy.id)["depends_on"] == []

    def test_list_from_another_project(self, db, workspace, owner, make_task):
        from taskboard_core import schemas

        other = crud.create_project(
            db, schemas.ProjectCreate(workspace_id=workspace.id, name="API", key="API"), owner.id
        )
        source = make_task("a")

        with pytest.raises(ValidationFailedError):
            crud.duplicate_task(db, source.id, list_id=crud.get_lists(db, other.id)[0].id)

    def test_unknown_task(self, db):
        with pytest.raises(NotFoundError):
            crud.duplicate_task(db, "missing")


class TestArchive:
    """Archiving cancels a task; unarchiving reopens it as todo."""

    def test_round_trip(self, db, owner, make_task):
        task = make_task("a", status=TaskStatus.IN_PROGRESS)

        archived = crud.archive_task(db, task.id, owner.id)
        assert archived.status == TaskStatus.CANCELLED

        reopened = crud.unarchive_task(db, task.id, owner.id)
        assert reopened.status == TaskStatus.TODO

        actions = {a.action: a.details for a in task.activities}
        assert actions[TaskActivityType.ARCHIVED]["status"] == {"from": "in_progress", "to": "cancelled"}
        assert actions[TaskActivityType.UNARCHIVED]["status"] == {"from": "cancelled", "to": "todo"}

    def test_archived_task_stops_blocking(self, db, project, make_task):
        blocker, dependent = make_task("blocker"), make_task("dependent")
        graph.add_dependency(db, dependent.id, blocker.id)
        assert dependent.id not in [t.id for t in graph.get_ready_tasks(db, project.id)]

        crud.archive_task(db, blocker.id)

        assert dependent.id in [t.id for t in graph.get_ready_tasks(db, project.id)]

    def test_archive_twice_conflicts(self, db, make_task):
        task = make_task("a")
        crud.archive_task(db, task.id)

        with pytest.raises(ConflictError):
            crud.archive_task(db, task.id)

    def test_unarchive_open_task_conflicts(self, db, make_task):
        with pytest.raises(ConflictError):
            crud.unarchive_task(db, make_task("a").id)
