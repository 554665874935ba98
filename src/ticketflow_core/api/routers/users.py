"""Users API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ticketflow_core import crud, schemas
from ticketflow_core.database import get_db
from ticketflow_core.errors import TicketflowError
from ticketflow_core.models import UserRole
from ticketflow_core.permissions import Actor, require_role

from ..dependencies import get_current_actor, rejection

logger = logging.getLogger("ticketflow-core.users")

router = APIRouter(tags=["users"])


@router.get("", response_model=list[schemas.UserResponse])
def list_users(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List all users, by name."""
    return crud.list_users(db)


@router.get("/me", response_model=schemas.UserResponse)
def get_me(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Get the calling user."""
    user = crud.get_user(db, actor.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/me", response_model=schemas.UserResponse)
def update_me(
    payload: schemas.UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Edit the calling user's name, avatar and area. Role changes need an admin."""
    try:
        db_user = crud.update_profile(db, actor, payload)
    except TicketflowError as e:
        raise rejection(e)
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


@router.patch("/{user_id}", response_model=schemas.UserResponse)
def update_user(
    user_id: str,
    payload: schemas.UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Edit any user (admins only)."""
    try:
        db_user = crud.update_user(db, user_id, payload, actor)
    except TicketflowError as e:
        raise rejection(e)
    if not db_user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    logger.info(f"User {actor.id} edited user {user_id}")
    return db_user


@router.post("", response_model=schemas.UserResponse, status_code=201)
def create_user(
    user: schemas.UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Create a user (admins only)."""
    try:
        require_role(actor, UserRole.ADMIN, action="create users")
        db_user = crud.create_user(
            db,
            email=user.email,
            name=user.name,
            password_hash=user.password_hash,
            role=user.role,
            avatar_url=user.avatar_url,
            area=user.area,
        )
    except TicketflowError as e:
        raise rejection(e)
    logger.info(f"Created user {db_user.email} (ID: {db_user.id})")
    return db_user
