"""Dependency graph endpoints: edges, chains, ready and blocked work."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import dependencies as graph
from ... import schemas
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import READ_PERMISSIONS, WRITE_PERMISSIONS, workspace_id_for_task
from ..dependencies import authorize, authorize_project, authorize_task, get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.dependencies")

router = APIRouter(tags=["dependencies"])


def _authorize_pairs(db: Session, pairs: list[schemas.DependencyPair], user_id: str) -> None:
    """Write permission on every workspace the pairs touch. Unknown tasks fail per pair later."""
    checked = set()
    for pair in pairs:
        for task_id in (pair.dependent_id, pair.depends_on_id):
            try:
                workspace_id = workspace_id_for_task(db, task_id)
            except TaskboardError:
                continue
            if workspace_id not in checked:
                authorize(db, workspace_id, user_id, WRITE_PERMISSIONS)
                checked.add(workspace_id)


@router.get("/projects/{project_id}/ready-tasks", response_model=list[schemas.TaskSummary])
def get_ready_tasks(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Tasks that can be started now.

    A task is ready when it is not done or cancelled and everything it
    depends on is. Urgent work comes first, then older tasks.
    """
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return graph.get_ready_tasks(db, project_id)


@router.get("/projects/{project_id}/blocked-tasks", response_model=list[schemas.BlockedTaskResponse])
def get_blocked_tasks(
    project_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Tasks waiting on unfinished work, with the edges that block them."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return [
        schemas.BlockedTaskResponse(
            task=schemas.TaskSummary.model_validate(entry["task"]),
            blocking=[schemas.BlockingDependencyResponse.model_validate(edge) for edge in entry["blocking"]],
        )
        for entry in graph.get_blocked_tasks(db, project_id)
    ]


@router.get("/tasks/{task_id}/dependencies", response_model=schemas.TaskDependenciesResponse)
def get_task_dependencies(
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        result = graph.get_task_dependencies(db, task_id)
    except TaskboardError as e:
        raise http_error(e)
    return schemas.TaskDependenciesResponse(
        depends_on=[schemas.TaskSummary.model_validate(t) for t in result["depends_on"]],
        dependents=[schemas.TaskSummary.model_validate(t) for t in result["dependents"]],
    )


@router.post("/tasks/{task_id}/dependencies", response_model=schemas.DependencyResponse, status_code=201)
def add_dependency(
    task_id: str,
    dependency: schemas.DependencyCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """
    Make ``task_id`` depend on ``depends_on_id``.

    Rejected with 400 when the edge would close a cycle; the response
    detail carries the cycle path.
    """
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    authorize_task(db, dependency.depends_on_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return graph.add_dependency(
            db, task_id, dependency.depends_on_id, current_user_id, dependency.type
        )
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/tasks/{task_id}/dependencies/{depends_on_id}", status_code=204)
def remove_dependency(
    task_id: str,
    depends_on_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_task(db, task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        graph.remove_dependency(db, task_id, depends_on_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/tasks/{task_id}/dependencies/check", response_model=schemas.CircularDependencyCheck)
def check_circular_dependency(
    task_id: str,
    depends_on_id: str = Query(..., description="Candidate task to depend on"),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Report whether adding the edge would create a cycle, without adding it."""
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    authorize_task(db, depends_on_id, current_user_id, READ_PERMISSIONS)
    return schemas.CircularDependencyCheck(
        dependent_id=task_id,
        depends_on_id=depends_on_id,
        would_create_cycle=graph.check_circular_dependency(db, task_id, depends_on_id),
    )


@router.get("/tasks/{task_id}/dependency-chain", response_model=list[schemas.DependencyChainEntry])
def get_dependency_chain(
    task_id: str,
    max_depth: Optional[int] = Query(None, ge=1, le=50, description="Traversal depth limit"),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Everything the task transitively depends on, breadth first, root at depth 0."""
    authorize_task(db, task_id, current_user_id, READ_PERMISSIONS)
    try:
        chain = graph.get_dependency_chain(db, task_id, max_depth)
    except TaskboardError as e:
        raise http_error(e)
    return [
        schemas.DependencyChainEntry(task=schemas.TaskSummary.model_validate(entry["task"]), depth=entry["depth"])
        for entry in chain
    ]


@router.post("/dependencies/bulk-add", response_model=schemas.BulkAddDependenciesResult)
def bulk_add_dependencies(
    request: schemas.BulkDependencyRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Add many edges; each pair succeeds or fails on its own."""
    _authorize_pairs(db, request.pairs, current_user_id)
    return graph.bulk_add_dependencies(
        db, [pair.model_dump(mode="json") for pair in request.pairs], current_user_id
    )


@router.post("/dependencies/bulk-remove", response_model=schemas.BulkRemoveDependenciesResult)
def bulk_remove_dependencies(
    request: schemas.BulkDependencyRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Remove many edges; each pair succeeds or fails on its own."""
    _authorize_pairs(db, request.pairs, current_user_id)
    return graph.bulk_remove_dependencies(
        db, [pair.model_dump(mode="json") for pair in request.pairs], current_user_id
    )
