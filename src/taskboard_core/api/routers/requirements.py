"""Requirement endpoints: lifecycle, history, quality and task links."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...analysis_jobs import AnalysisDispatcher
from ...database import get_db
from ...errors import TaskboardError
from ...permissions import ADMIN_PERMISSIONS, READ_PERMISSIONS, WRITE_PERMISSIONS
from ..dependencies import (
    authorize_project,
    authorize_requirement,
    authorize_task,
    get_current_user_id,
    get_dispatcher,
    http_error,
)

logger = logging.getLogger("taskboard-core.api.requirements")

router = APIRouter(tags=["requirements"])


@router.post("/", response_model=schemas.RequirementResponse, status_code=201)
def create_requirement(
    requirement: schemas.RequirementCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
    dispatcher: AnalysisDispatcher = Depends(get_dispatcher),
):
    """
    Create a requirement at version 1 in draft status.

    The code (e.g. ``PROJ-FR-001``) is generated from the project key and
    requirement type. Quality analysis runs in the background.
    """
    authorize_project(db, requirement.project_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.create_requirement(db, requirement, current_user_id, dispatcher)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/", response_model=schemas.RequirementListResponse)
def list_requirements(
    project_id: str = Query(..., description="Project to list requirements from"),
    type: Optional[models.RequirementType] = Query(None, description="Filter by type"),
    status: Optional[models.RequirementStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.RequirementPriority] = Query(None, description="Filter by priority"),
    search: Optional[str] = Query(None, description="Search in code, title and description"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    items, total = crud.get_requirements(
        db,
        project_id=project_id,
        requirement_type=type,
        status=status,
        priority=priority,
        search=search,
        skip=skip,
        limit=limit,
    )
    return schemas.RequirementListResponse(items=items, total=total, skip=skip, limit=limit)


@router.post("/duplicates", response_model=list[schemas.DuplicateCandidate])
def detect_duplicates(
    request: schemas.DuplicateCheckRequest,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Existing requirements whose title or description closely match the candidate."""
    authorize_project(db, request.project_id, current_user_id, READ_PERMISSIONS)
    return crud.detect_duplicates(db, request.project_id, request.title, request.description)


@router.get("/coverage", response_model=schemas.CoverageResponse)
def get_coverage(
    project_id: str = Query(..., description="Project to report on"),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Share of requirements implemented and covered by generated test cases."""
    authorize_project(db, project_id, current_user_id, READ_PERMISSIONS)
    return crud.get_requirement_coverage(db, project_id)


@router.get("/{requirement_id}", response_model=schemas.RequirementResponse)
def get_requirement(
    requirement_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_requirement(db, requirement_id, current_user_id, READ_PERMISSIONS)
    requirement = crud.get_requirement(db, requirement_id)
    if not requirement:
        raise HTTPException(status_code=404, detail=f"Requirement {requirement_id} not found")
    return requirement


@router.patch("/{requirement_id}", response_model=schemas.RequirementResponse)
def update_requirement(
    requirement_id: str,
    update: schemas.RequirementUpdate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
    dispatcher: AnalysisDispatcher = Depends(get_dispatcher),
):
    """
    Partially update a requirement.

    Send ``expected_version`` to get a 409 instead of overwriting someone
    else's change.
    """
    authorize_requirement(db, requirement_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.update_requirement(
            db,
            requirement_id,
            update.to_patch(exclude=("expected_version",)),
            changed_by=current_user_id,
            expected_version=update.expected_version,
            dispatcher=dispatcher,
        )
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/{requirement_id}", status_code=204)
def delete_requirement(
    requirement_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Delete a requirement with no linked tasks. Requires owner or admin."""
    authorize_requirement(db, requirement_id, current_user_id, ADMIN_PERMISSIONS)
    try:
        crud.delete_requirement(db, requirement_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{requirement_id}/history", response_model=list[schemas.RequirementHistoryResponse])
def get_requirement_history(
    requirement_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Change history, newest version first."""
    authorize_requirement(db, requirement_id, current_user_id, READ_PERMISSIONS)
    try:
        return crud.get_requirement_history(db, requirement_id, limit)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/{requirement_id}/analyze", response_model=schemas.QualityAnalysisResponse)
def analyze_requirement(
    requirement_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Run quality analysis now and store the score."""
    authorize_requirement(db, requirement_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.analyze_requirement(db, requirement_id)
    except TaskboardError as e:
        raise http_error(e)


@router.post("/{requirement_id}/test-cases", response_model=list[schemas.GeneratedTestCase])
def generate_test_cases(
    requirement_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Generate test cases from the acceptance criteria."""
    authorize_requirement(db, requirement_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.generate_test_cases(db, requirement_id)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/{requirement_id}/links", response_model=list[schemas.TaskLinkResponse])
def list_links(
    requirement_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_requirement(db, requirement_id, current_user_id, READ_PERMISSIONS)
    return crud.get_requirement_links(db, requirement_id)


@router.post("/{requirement_id}/links", response_model=schemas.TaskLinkResponse, status_code=201)
def link_task(
    requirement_id: str,
    link: schemas.TaskLinkCreate,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_requirement(db, requirement_id, current_user_id, WRITE_PERMISSIONS)
    authorize_task(db, link.task_id, current_user_id, WRITE_PERMISSIONS)
    try:
        return crud.link_requirement_to_task(db, requirement_id, link.task_id, link.link_type, current_user_id)
    except TaskboardError as e:
        raise http_error(e)


@router.delete("/{requirement_id}/links/{task_id}", status_code=204)
def unlink_task(
    requirement_id: str,
    task_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    authorize_requirement(db, requirement_id, current_user_id, WRITE_PERMISSIONS)
    try:
        crud.unlink_requirement_from_task(db, requirement_id, task_id, current_user_id)
    except TaskboardError as e:
        raise http_error(e)
