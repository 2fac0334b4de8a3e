"""Tests for project and task reporting."""
from datetime import datetime, timedelta

import pytest

from taskboard_core import comments, crud, reports, schemas, task_tracking
from taskboard_core import dependencies as graph
from taskboard_core.errors import NotFoundError, ValidationFailedError
from taskboard_core.models import MemberPermission, RequirementType, TaskPriority, TaskStatus


class TestCountTasksBy:
    """Grouped counts, largest group first."""

    def test_by_status(self, db, project, make_task):
        make_task("a", status=TaskStatus.DONE)
        make_task("b")
        make_task("c")

        assert reports.count_tasks_by(db, project.id, "status") == [
            {"key": "todo", "count": 2},
            {"key": "done", "count": 1},
        ]

    def test_by_priority(self, db, project, make_task):
        make_task("a", priority=TaskPriority.HIGH)
        make_task("b", priority=TaskPriority.HIGH)

        assert reports.count_tasks_by(db, project.id, "priority") == [{"key": "high", "count": 2}]

    def test_by_assignee_counts_unassigned(self, db, project, make_task, make_member):
        writer = make_member(MemberPermission.WRITE)
        make_task("a", assignee_id=writer.id)
        make_task("b")
        make_task("c")

        counts = reports.count_tasks_by(db, project.id, "assignee")

        assert counts == [{"key": None, "count": 2}, {"key": writer.id, "count": 1}]

    def test_empty_project(self, db, project):
        assert reports.count_tasks_by(db, project.id, "status") == []

    def test_unknown_field(self, db, project):
        with pytest.raises(ValidationFailedError) as exc_info:
            reports.count_tasks_by(db, project.id, "colour")
        assert exc_info.value.message == "Cannot group tasks by 'colour'. Use one of: assignee, priority, status"


class TestProjectStats:

    def test_overview(self, db, project, owner, make_task, null_dispatcher):
        make_task("a", status=TaskStatus.DONE)
        make_task("b")
        for title, req_type in (("Login", RequirementType.FUNCTIONAL), ("Fast", RequirementType.NON_FUNCTIONAL)):
            crud.create_requirement(
                db,
                schemas.RequirementCreate(project_id=project.id, title=title, type=req_type),
                author_id=owner.id,
                dispatcher=null_dispatcher,
            )

        stats = reports.get_project_stats(db, project.id, recent_limit=1)

        assert stats["total_tasks"] == 2
        assert stats["completed_tasks"] == 1
        assert stats["completion_rate"] == 50
        assert stats["requirements"] == [
            {"type": "functional", "status": "draft", "count": 1},
            {"type": "non_functional", "status": "draft", "count": 1},
        ]
        assert len(stats["recent_activity"]) == 1

    def test_empty_project_rate_is_zero(self, db, project):
        stats = reports.get_project_stats(db, project.id)
        assert stats["total_tasks"] == 0
        assert stats["completion_rate"] == 0

    def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            reports.get_project_stats(db, "missing")


class TestTaskMetrics:

    def test_counts_and_completion(self, db, owner, make_task):
        task = make_task("Release")
        blocker = make_task("Build")
        make_task("Docs", parent_id=task.id, status=TaskStatus.DONE)
        make_task("Notes", parent_id=task.id)
        graph.add_dependency(db, task.id, blocker.id)
        comments.add_comment(db, task.id, owner.id, "Soon")
        checklist = task_tracking.add_checklist(db, task.id, "Steps", ["tag", "publish", "announce", "close"])
        task_tracking.update_checklist_item(db, checklist.items[0].id, {"is_completed": True})
        start = datetime(2024, 3, 1, 9, 0)
        task_tracking.log_time_entry(db, task.id, owner.id, start, start + timedelta(minutes=125))
        task_tracking.start_time_entry(db, task.id, owner.id)

        metrics = reports.get_task_metrics(db, task.id)

        assert metrics["counts"] == {
            "comments": 1,
            "checklists": 1,
            "time_entries": 2,
            "depends_on": 1,
            "dependents": 0,
            "subtasks": 2,
        }
        assert metrics["checklist_completion"] == 25
        assert metrics["subtask_completion"] == 50
        assert metrics["time_spent_seconds"] == 7500
        assert metrics["time_spent"] == "2h 5m"

    def test_nothing_to_complete(self, db, make_task):
        metrics = reports.get_task_metrics(db, make_task("a").id)
        assert metrics["checklist_completion"] == 0
        assert metrics["subtask_completion"] == 0

    def test_unknown_task(self, db):
        with pytest.raises(NotFoundError):
            reports.get_task_metrics(db, "missing")


class TestOverdueTasks:

    def test_open_past_due_only(self, db, project, make_task):
        now = datetime(2024, 6, 1, 12, 0)
        late = make_task("late", due_date=now - timedelta(days=1))
        later = make_task("very late", due_date=now - timedelta(days=5))
        make_task("done late", due_date=now - timedelta(days=3), status=TaskStatus.DONE)
        make_task("cancelled late", due_date=now - timedelta(days=3), status=TaskStatus.CANCELLED)
        make_task("future", due_date=now + timedelta(days=1))
        make_task("no date")

        overdue = reports.get_overdue_tasks(db, project.id, now=now)

        assert [t.id for t in overdue] == [later.id, late.id]
