"""Tests for dense position management of tasks, lists and checklist items."""
import pytest

from taskboard_core import crud, models, schemas, task_tracking
from taskboard_core.errors import NotFoundError, PreconditionFailedError, ValidationFailedError


def board_column(db, list_id):
    """Titles in position order; asserts positions are exactly 0..N-1."""
    db.expire_all()
    tasks = (
        db.query(models.Task)
        .filter(models.Task.list_id == list_id)
        .order_by(models.Task.position)
        .all()
    )
    assert [t.position for t in tasks] == list(range(len(tasks)))
    return [t.title for t in tasks]


class TestAppend:
    """New members go to the end of their scope."""

    def test_tasks_get_consecutive_positions(self, db, lists, make_task):
        todo = lists[1]
        for title in ("a", "b", "c"):
            make_task(title, list_id=todo.id)

        assert board_column(db, todo.id) == ["a", "b", "c"]

    def test_task_without_list_sits_at_zero(self, make_task):
        task = make_task("floating")
        assert task.list_id is None
        assert task.position == 0

    def test_task_numbers_increase_per_project(self, make_task):
        numbers = [make_task(title).number for title in ("a", "b", "c")]
        assert numbers == [1, 2, 3]

    def test_new_list_appended_after_defaults(self, db, project):
        new_list = crud.create_list(db, project.id, schemas.TaskListCreate(name="Blocked"))
        assert new_list.position == len(crud.DEFAULT_LISTS)


class TestMoveTask:
    """Moves keep both source and target scopes dense."""

    def test_move_within_list_to_front(self, db, lists, make_task):
        todo = lists[1]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))

        moved = crud.move_task(db, c.id, todo.id, 0)

        assert moved.position == 0
        assert board_column(db, todo.id) == ["c", "a", "b"]

    def test_move_within_list_to_end(self, db, lists, make_task):
        todo = lists[1]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))

        crud.move_task(db, a.id, todo.id, 2)

        assert board_column(db, todo.id) == ["b", "c", "a"]

    def test_move_across_lists_closes_source_gap(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))
        make_task("x", list_id=doing.id)

        crud.move_task(db, b.id, doing.id, 0)

        assert board_column(db, todo.id) == ["a", "c"]
        assert board_column(db, doing.id) == ["b", "x"]

    def test_position_beyond_end_is_clamped(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        task = make_task("a", list_id=todo.id)
        make_task("x", list_id=doing.id)

        moved = crud.move_task(db, task.id, doing.id, 99)

        assert moved.position == 1
        assert board_column(db, doing.id) == ["x", "a"]

    def test_move_without_position_appends(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        task = make_task("a", list_id=todo.id)
        make_task("x", list_id=doing.id)
        make_task("y", list_id=doing.id)

        moved = crud.move_task(db, task.id, doing.id)

        assert moved.position == 2

    def test_move_off_the_board(self, db, lists, make_task):
        todo = lists[1]
        a, b = make_task("a", list_id=todo.id), make_task("b", list_id=todo.id)

        moved = crud.move_task(db, a.id, None)

        assert moved.list_id is None
        assert moved.position == 0
        assert board_column(db, todo.id) == ["b"]

    def test_move_records_activity(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        task = make_task("a", list_id=todo.id)

        crud.move_task(db, task.id, doing.id)

        moves = [a for a in task.activities if a.action == models.TaskActivityType.MOVED]
        assert len(moves) == 1
        assert moves[0].details["from_list_id"] == todo.id
        assert moves[0].details["to_list_id"] == doing.id

    def test_move_to_list_in_other_project_rejected(self, db, workspace, owner, lists, make_task):
        other = crud.create_project(
            db, schemas.ProjectCreate(workspace_id=workspace.id, name="Other", key="OTH"), owner.id
        )
        task = make_task("a", list_id=lists[1].id)

        with pytest.raises(ValidationFailedError):
            crud.move_task(db, task.id, crud.get_lists(db, other.id)[0].id)

    def test_list_change_through_update_appends(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        a, b = make_task("a", list_id=todo.id), make_task("b", list_id=todo.id)
        make_task("x", list_id=doing.id)

        updated = crud.update_task(db, a.id, {"list_id": doing.id})

        assert updated.position == 1
        assert board_column(db, todo.id) == ["b"]
        assert board_column(db, doing.id) == ["x", "a"]


class TestDeleteClosesGap:
    """Deleting a member renumbers the rest of its scope."""

    def test_delete_task(self, db, lists, make_task):
        todo = lists[1]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))

        crud.delete_task(db, b.id)

        assert board_column(db, todo.id) == ["a", "c"]

    def test_delete_task_with_subtasks_rejected(self, db, make_task):
        parent = make_task("parent")
        make_task("child", parent_id=parent.id)

        with pytest.raises(PreconditionFailedError):
            crud.delete_task(db, parent.id)

    def test_delete_empty_list(self, db, project, lists):
        crud.delete_list(db, lists[2].id)

        remaining = crud.get_lists(db, project.id)
        assert [l.position for l in remaining] == [0, 1, 2, 3]
        assert [l.name for l in remaining] == ["Backlog", "To Do", "In Review", "Done"]

    def test_delete_list_with_tasks_rejected(self, db, lists, make_task):
        make_task("a", list_id=lists[1].id)

        with pytest.raises(PreconditionFailedError):
            crud.delete_list(db, lists[1].id)

    def test_delete_unknown_list(self, db, project):
        with pytest.raises(NotFoundError):
            crud.delete_list(db, "missing")


class TestReorder:
    """A reorder must name exactly the current members."""

    def test_full_reorder(self, db, lists, make_task):
        todo = lists[1]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))

        crud.reorder_tasks(db, todo.id, [c.id, a.id, b.id])

        assert board_column(db, todo.id) == ["c", "a", "b"]

    def test_missing_id_rejected_without_changes(self, db, lists, make_task):
        todo = lists[1]
        a, b, c = (make_task(t, list_id=todo.id) for t in ("a", "b", "c"))

        with pytest.raises(ValidationFailedError) as exc_info:
            crud.reorder_tasks(db, todo.id, [c.id, a.id])
        db.rollback()

        assert "missing ids" in exc_info.value.message
        assert b.id in exc_info.value.message
        assert board_column(db, todo.id) == ["a", "b", "c"]

    def test_duplicate_id_rejected(self, db, lists, make_task):
        todo = lists[1]
        a, b = make_task("a", list_id=todo.id), make_task("b", list_id=todo.id)

        with pytest.raises(ValidationFailedError) as exc_info:
            crud.reorder_tasks(db, todo.id, [a.id, a.id])

        assert "duplicated ids" in exc_info.value.message

    def test_foreign_id_rejected(self, db, lists, make_task):
        todo, doing = lists[1], lists[2]
        a = make_task("a", list_id=todo.id)
        x = make_task("x", list_id=doing.id)

        with pytest.raises(ValidationFailedError) as exc_info:
            crud.reorder_tasks(db, todo.id, [a.id, x.id])

        assert x.id in exc_info.value.message

    def test_reorder_lists(self, db, project, lists):
        ordered_ids = [l.id for l in reversed(lists)]

        crud.reorder_lists(db, project.id, ordered_ids)

        assert [l.id for l in crud.get_lists(db, project.id)] == ordered_ids

    def test_reorder_checklist_items(self, db, make_task):
        task = make_task("a")
        checklist = task_tracking.add_checklist(db, task.id, "Release", ["build", "tag", "publish"])
        ids = [item.id for item in checklist.items]

        reordered = task_tracking.reorder_checklist_items(db, checklist.id, [ids[2], ids[0], ids[1]])

        assert [item.content for item in reordered] == ["publish", "build", "tag"]
        assert [item.position for item in reordered] == [0, 1, 2]


class TestScopeLocks:
    """Writers lock the scope's parent row, so an empty scope is still serialized."""

    def test_append_to_empty_list_locks_list(self, db, lists, make_task, row_locks):
        row_locks.clear()
        make_task("first", list_id=lists[1].id)

        assert "task_lists" in row_locks

    def test_new_list_locks_project(self, db, project, row_locks):
        row_locks.clear()
        crud.create_list(db, project.id, schemas.TaskListCreate(name="Blocked"))

        assert "projects" in row_locks

    def test_move_locks_source_and_target(self, db, lists, make_task, row_locks):
        task = make_task("a", list_id=lists[1].id)
        row_locks.clear()

        crud.move_task(db, task.id, lists[2].id, 0)

        assert row_locks[0] == "task_lists"

    def test_reorder_locks_parent_before_members(self, db, lists, make_task, row_locks):
        todo = lists[1]
        a, b = make_task("a", list_id=todo.id), make_task("b", list_id=todo.id)
        row_locks.clear()

        crud.reorder_tasks(db, todo.id, [b.id, a.id])

        assert row_locks[:2] == ["task_lists", "tasks"]

    def test_checklist_item_append_locks_checklist(self, db, make_task, row_locks):
        checklist = task_tracking.add_checklist(db, make_task("a").id, "Release")
        row_locks.clear()

        task_tracking.add_checklist_item(db, checklist.id, "tag")

        assert row_locks == ["checklists"]

    def test_unlisted_task_takes_no_scope_lock(self, make_task, row_locks):
        row_locks.clear()
        make_task("floating")

        assert "task_lists" not in row_locks
