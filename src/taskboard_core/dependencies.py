"""Task dependency graph: cycle-safe edge writes and ready/blocked queries.

An edge ``dependent -> depends_on`` means the dependent task waits on the
other one. The edge set is kept acyclic: an edge is only written after a
reachability check over an in-memory adjacency graph, loaded with one bulk
query per traversal level. Edges never leave a workspace, and the workspace
row is locked from the check to the commit, so two writers cannot each
pass the check and together close a cycle.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import case, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, joinedload

from . import models
from .activity import log_task_activity, task_label
from .config import get_settings
from .errors import (
    CircularDependencyError,
    ConflictError,
    NotFoundError,
    TaskboardError,
    ValidationFailedError,
)
from .models import TERMINAL_TASK_STATUSES, DependencyType, TaskActivityType

logger = logging.getLogger("taskboard-core.dependencies")


PRIORITY_ORDER = [
    models.TaskPriority.URGENT,
    models.TaskPriority.HIGH,
    models.TaskPriority.MEDIUM,
    models.TaskPriority.LOW,
]


class DependencyGraph:
    """Adjacency list over task ids: node → ids it depends on."""

    def __init__(self, edges: Iterable[tuple[str, str]] = ()):
        self._successors: dict[str, set[str]] = {}
        for dependent_id, depends_on_id in edges:
            self.add_edge(dependent_id, depends_on_id)

    def add_edge(self, dependent_id: str, depends_on_id: str) -> None:
        self._successors.setdefault(dependent_id, set()).add(depends_on_id)

    def successors(self, node_id: str) -> set[str]:
        return self._successors.get(node_id, set())

    def __contains__(self, edge: tuple[str, str]) -> bool:
        dependent_id, depends_on_id = edge
        return depends_on_id in self.successors(dependent_id)

    def __len__(self) -> int:
        return sum(len(targets) for targets in self._successors.values())

    def find_path(self, source_id: str, target_id: str) -> Optional[list[str]]:
        """
        Depth-first search for a path following dependency edges.

        Each node is expanded at most once, so the search terminates on any
        finite graph, cyclic or not.

        Returns:
            Node ids from source to target inclusive, or None if unreachable
        """
        if source_id == target_id:
            return [source_id]

        parents: dict[str, str] = {}
        visited = {source_id}
        stack = [source_id]
        while stack:
            node = stack.pop()
            for successor in sorted(self.successors(node)):
                if successor in visited:
                    continue
                parents[successor] = node
                if successor == target_id:
                    path = [successor]
                    while path[-1] != source_id:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                visited.add(successor)
                stack.append(successor)
        return None

    def has_path(self, source_id: str, target_id: str) -> bool:
        return self.find_path(source_id, target_id) is not None

    def cycle_for(self, dependent_id: str, depends_on_id: str) -> Optional[list[str]]:
        """
        The cycle that adding ``dependent -> depends_on`` would close.

        A self edge is a cycle of length one. Otherwise the edge closes a
        cycle exactly when ``depends_on`` already reaches ``dependent``.

        Returns:
            The cycle as a node list starting and ending at ``dependent_id``,
            or None when the edge is safe
        """
        path = self.find_path(depends_on_id, dependent_id)
        if path is None:
            return None
        return [dependent_id] + path


def load_dependency_graph(db: Session, start_ids: Iterable[str]) -> DependencyGraph:
    """
    Load every edge reachable from ``start_ids`` along dependency direction.

    One ``IN`` query per traversal level instead of one query per node.
    """
    graph = DependencyGraph()
    seen: set[str] = set(start_ids)
    frontier = list(seen)
    while frontier:
        rows = (
            db.query(models.TaskDependency.dependent_id, models.TaskDependency.depends_on_id)
            .filter(models.TaskDependency.dependent_id.in_(frontier))
            .all()
        )
        next_frontier = []
        for dependent_id, depends_on_id in rows:
            graph.add_edge(dependent_id, depends_on_id)
            if depends_on_id not in seen:
                seen.add(depends_on_id)
                next_frontier.append(depends_on_id)
        frontier = next_frontier
    return graph


def _get_task_or_raise(db: Session, task_id: str, role: str = "Task") -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        raise NotFoundError(f"{role} {task_id} not found")
    return task


def _task_workspace_id(db: Session, task: models.Task) -> str:
    return db.query(models.Project.workspace_id).filter(models.Project.id == task.project_id).scalar()


def _lock_workspace(db: Session, workspace_id: str) -> None:
    """Row-lock the workspace so graph writers in it run one at a time."""
    (
        db.query(models.Workspace.id)
        .filter(models.Workspace.id == workspace_id)
        .with_for_update()
        .all()
    )


def _get_edge(db: Session, dependent_id: str, depends_on_id: str) -> Optional[models.TaskDependency]:
    return (
        db.query(models.TaskDependency)
        .filter(
            models.TaskDependency.dependent_id == dependent_id,
            models.TaskDependency.depends_on_id == depends_on_id,
        )
        .first()
    )


def check_circular_dependency(db: Session, dependent_id: str, depends_on_id: str) -> bool:
    """
    Check whether adding ``dependent -> depends_on`` would create a cycle.

    This is the same check ``add_dependency`` runs before writing an edge.

    Args:
        db: Database session
        dependent_id: Task that would wait
        depends_on_id: Task it would wait on

    Returns:
        True if the edge would close a cycle (including a self edge)
    """
    graph = load_dependency_graph(db, [depends_on_id])
    return graph.cycle_for(dependent_id, depends_on_id) is not None


def add_dependency(
    db: Session,
    dependent_id: str,
    depends_on_id: str,
    user_id: Optional[str] = None,
    dependency_type: DependencyType = DependencyType.FINISH_TO_START,
) -> models.TaskDependency:
    """
    Add a dependency edge after existence, duplicate and cycle checks.

    Writes the edge and one activity entry on each endpoint in a single
    commit.

    Args:
        db: Database session
        dependent_id: Task that waits
        depends_on_id: Task being waited on
        user_id: Acting user
        dependency_type: Scheduling relation of the edge

    Returns:
        The created edge

    Raises:
        NotFoundError: If either task does not exist
        ValidationFailedError: If the tasks are in different workspaces
        ConflictError: If the edge already exists
        CircularDependencyError: If the edge would create a cycle
    """
    dependent = _get_task_or_raise(db, dependent_id, "Dependent task")
    depends_on = _get_task_or_raise(db, depends_on_id, "Dependency task")

    workspace_id = _task_workspace_id(db, dependent)
    if _task_workspace_id(db, depends_on) != workspace_id:
        raise ValidationFailedError(
            f"Tasks {dependent_id} and {depends_on_id} belong to different workspaces; "
            "dependencies must stay within one workspace"
        )
    _lock_workspace(db, workspace_id)

    if _get_edge(db, dependent_id, depends_on_id):
        raise ConflictError(
            f"Dependency already exists: {task_label(dependent)} already depends on {task_label(depends_on)}"
        )

    cycle = load_dependency_graph(db, [depends_on_id]).cycle_for(dependent_id, depends_on_id)
    if cycle is not None:
        logger.warning(f"Rejected dependency {dependent_id} -> {depends_on_id}: cycle {cycle}")
        raise CircularDependencyError(
            f"Adding dependency {task_label(dependent)} -> {task_label(depends_on)} "
            f"would create a circular dependency: {' -> '.join(cycle)}",
            dependent_id=dependent_id,
            depends_on_id=depends_on_id,
            cycle=cycle,
        )

    edge = models.TaskDependency(
        dependent_id=dependent_id,
        depends_on_id=depends_on_id,
        type=dependency_type,
        created_by=user_id,
    )
    db.add(edge)
    details = {"dependent_id": dependent_id, "depends_on_id": depends_on_id, "type": dependency_type.value}
    log_task_activity(
        db, dependent_id, TaskActivityType.DEPENDENCY_ADDED, user_id,
        message=f"Added dependency on {task_label(depends_on)}",
        details=details,
    )
    log_task_activity(
        db, depends_on_id, TaskActivityType.DEPENDENCY_ADDED, user_id,
        message=f"Task #{dependent.number}: {dependent.title} now depends on this task",
        details=details,
    )

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            f"Dependency already exists: {task_label(dependent)} already depends on {task_label(depends_on)}"
        )
    db.refresh(edge)
    logger.info(f"Added dependency {dependent_id} -> {depends_on_id} ({dependency_type.value})")
    return edge


def remove_dependency(
    db: Session,
    dependent_id: str,
    depends_on_id: str,
    user_id: Optional[str] = None,
) -> None:
    """
    Remove a dependency edge.

    Raises:
        NotFoundError: If the edge does not exist
    """
    edge = _get_edge(db, dependent_id, depends_on_id)
    if not edge:
        raise NotFoundError(f"Dependency {dependent_id} -> {depends_on_id} not found")

    dependent = edge.dependent
    depends_on = edge.depends_on
    details = {"dependent_id": dependent_id, "depends_on_id": depends_on_id}
    log_task_activity(
        db, dependent_id, TaskActivityType.DEPENDENCY_REMOVED, user_id,
        message=f"Removed dependency on {task_label(depends_on)}",
        details=details,
    )
    log_task_activity(
        db, depends_on_id, TaskActivityType.DEPENDENCY_REMOVED, user_id,
        message=f"Task #{dependent.number}: {dependent.title} no longer depends on this task",
        details=details,
    )
    db.delete(edge)
    db.commit()
    logger.info(f"Removed dependency {dependent_id} -> {depends_on_id}")


def get_task_dependencies(db: Session, task_id: str) -> dict[str, list[models.Task]]:
    """
    Direct dependencies of a task in both directions.

    Returns:
        ``{"depends_on": [...], "dependents": [...]}`` with assignees loaded
    """
    _get_task_or_raise(db, task_id)

    depends_on = (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .join(models.TaskDependency, models.TaskDependency.depends_on_id == models.Task.id)
        .filter(models.TaskDependency.dependent_id == task_id)
        .order_by(models.TaskDependency.created_at)
        .all()
    )
    dependents = (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .join(models.TaskDependency, models.TaskDependency.dependent_id == models.Task.id)
        .filter(models.TaskDependency.depends_on_id == task_id)
        .order_by(models.TaskDependency.created_at)
        .all()
    )
    return {"depends_on": depends_on, "dependents": dependents}


def get_dependency_chain(db: Session, task_id: str, max_depth: Optional[int] = None) -> list[dict]:
    """
    All transitive dependencies of a task, breadth first.

    The root is included at depth 0. Each task appears once, at the depth
    it was first reached. ``max_depth`` caps the traversal.

    Returns:
        List of ``{"task": Task, "depth": int}``
    """
    if max_depth is None:
        max_depth = get_settings().dependency_chain_max_depth

    root = _get_task_or_raise(db, task_id)
    chain = [{"task": root, "depth": 0}]
    visited = {root.id}
    frontier = [root.id]
    depth = 0

    while frontier and depth < max_depth:
        depth += 1
        rows = (
            db.query(models.TaskDependency.depends_on_id)
            .filter(models.TaskDependency.dependent_id.in_(frontier))
            .order_by(models.TaskDependency.created_at)
            .all()
        )
        level_ids = []
        for (depends_on_id,) in rows:
            if depends_on_id not in visited:
                visited.add(depends_on_id)
                level_ids.append(depends_on_id)
        if not level_ids:
            break

        tasks = {
            task.id: task
            for task in db.query(models.Task).filter(models.Task.id.in_(level_ids)).all()
        }
        for level_id in level_ids:
            chain.append({"task": tasks[level_id], "depth": depth})
        frontier = level_ids

    if frontier and depth >= max_depth:
        logger.warning(f"Dependency chain for task {task_id} truncated at depth {max_depth}")
    return chain


def _blocking_edge_exists():
    """EXISTS clause: the outer task has an edge to a non-terminal task."""
    blocker = aliased(models.Task)
    return (
        select(models.TaskDependency.id)
        .join(blocker, blocker.id == models.TaskDependency.depends_on_id)
        .where(models.TaskDependency.dependent_id == models.Task.id)
        .where(blocker.status.notin_(TERMINAL_TASK_STATUSES))
        .correlate(models.Task)
        .exists()
    )


def _board_order():
    return (
        case({p: i for i, p in enumerate(PRIORITY_ORDER)}, value=models.Task.priority),
        models.Task.created_at.asc(),
        models.Task.number.asc(),
    )


def get_ready_tasks(db: Session, project_id: Optional[str] = None) -> list[models.Task]:
    """
    Non-terminal tasks with no outstanding dependencies.

    A task is ready when it has no edges or every task it depends on is
    done or cancelled. Ordered by priority (urgent first), then age.
    """
    query = (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .filter(models.Task.status.notin_(TERMINAL_TASK_STATUSES))
        .filter(~_blocking_edge_exists())
    )
    if project_id:
        query = query.filter(models.Task.project_id == project_id)
    return query.order_by(*_board_order()).all()


def get_blocked_tasks(db: Session, project_id: Optional[str] = None) -> list[dict]:
    """
    Tasks with at least one dependency on a non-terminal task.

    Returns:
        List of ``{"task": Task, "blocking": [TaskDependency]}`` where
        ``blocking`` holds only the edges to non-terminal tasks
    """
    query = (
        db.query(models.Task)
        .options(joinedload(models.Task.assignee))
        .filter(_blocking_edge_exists())
    )
    if project_id:
        query = query.filter(models.Task.project_id == project_id)
    tasks = query.order_by(*_board_order()).all()
    if not tasks:
        return []

    blocker = aliased(models.Task)
    edges = (
        db.query(models.TaskDependency)
        .join(blocker, blocker.id == models.TaskDependency.depends_on_id)
        .options(joinedload(models.TaskDependency.depends_on))
        .filter(models.TaskDependency.dependent_id.in_([task.id for task in tasks]))
        .filter(blocker.status.notin_(TERMINAL_TASK_STATUSES))
        .order_by(models.TaskDependency.created_at)
        .all()
    )
    by_task: dict[str, list[models.TaskDependency]] = {}
    for edge in edges:
        by_task.setdefault(edge.dependent_id, []).append(edge)
    return [{"task": task, "blocking": by_task.get(task.id, [])} for task in tasks]


def _pair_fields(pair: dict) -> tuple[str, str, DependencyType]:
    dependency_type = pair.get("type") or DependencyType.FINISH_TO_START
    return pair["dependent_id"], pair["depends_on_id"], DependencyType(dependency_type)


def bulk_add_dependencies(db: Session, pairs: list[dict], user_id: Optional[str] = None) -> dict:
    """
    Add each edge independently; failures do not stop the batch.

    Args:
        pairs: ``{"dependent_id", "depends_on_id", "type"?}`` dicts

    Returns:
        ``{"successful": [TaskDependency], "failed": [{"pair", "error"}]}``
    """
    successful = []
    failed = []
    for pair in pairs:
        try:
            dependent_id, depends_on_id, dependency_type = _pair_fields(pair)
            successful.append(add_dependency(db, dependent_id, depends_on_id, user_id, dependency_type))
        except (TaskboardError, KeyError, ValueError) as e:
            db.rollback()
            error = e.message if isinstance(e, TaskboardError) else f"Invalid dependency pair: {e}"
            failed.append({"pair": pair, "error": error})
    logger.info(f"Bulk add dependencies: {len(successful)} added, {len(failed)} failed")
    return {"successful": successful, "failed": failed}


def bulk_remove_dependencies(db: Session, pairs: list[dict], user_id: Optional[str] = None) -> dict:
    """
    Remove each edge independently; failures do not stop the batch.

    Returns:
        ``{"successful": [pair], "failed": [{"pair", "error"}]}``
    """
    successful = []
    failed = []
    for pair in pairs:
        try:
            remove_dependency(db, pair["dependent_id"], pair["depends_on_id"], user_id)
            successful.append(pair)
        except (TaskboardError, KeyError) as e:
            db.rollback()
            error = e.message if isinstance(e, TaskboardError) else f"Invalid dependency pair: {e}"
            failed.append({"pair": pair, "error": error})
    logger.info(f"Bulk remove dependencies: {len(successful)} removed, {len(failed)} failed")
    return {"successful": successful, "failed": failed}
