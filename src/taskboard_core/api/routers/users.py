"""User registration and lookup."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...database import get_db
from ...errors import TaskboardError
from ..dependencies import get_current_user_id, http_error

logger = logging.getLogger("taskboard-core.api.users")

router = APIRouter(tags=["users"])


@router.post("/", response_model=schemas.UserResponse, status_code=201)
def register_user(user: schemas.UserCreate, db: Session = Depends(get_db)):
    """Register a user. Authentication itself happens upstream."""
    try:
        return crud.create_user(db, user)
    except TaskboardError as e:
        raise http_error(e)


@router.get("/me", response_model=schemas.UserResponse)
def get_me(
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    return crud.get_user(db, current_user_id)


@router.get("/{user_id}", response_model=schemas.UserResponse)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user
