"""Projects API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ticketflow_core import crud, schemas
from ticketflow_core.database import get_db
from ticketflow_core.errors import TicketflowError
from ticketflow_core.permissions import Actor

from ..dependencies import get_current_actor, rejection

logger = logging.getLogger("ticketflow-core.projects")

router = APIRouter(tags=["projects"])


@router.get("", response_model=schemas.ProjectListResponse)
def list_projects(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List the projects the caller can see."""
    projects = crud.list_projects(db, actor)
    return schemas.ProjectListResponse(
        items=[schemas.ProjectResponse.model_validate(p) for p in projects],
        total=len(projects),
    )


@router.post("", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Create a new project (agents and admins).

    - **name**: Project name
    - **visibility**: public (default) or private
    - **owner_user_id**: Defaults to the caller for private projects
    """
    try:
        result = crud.create_project(db, project, actor)
    except TicketflowError as e:
        raise rejection(e)
    logger.info(f"Created project '{result.name}' (ID: {result.id})")
    return result


@router.patch("/{project_id}", response_model=schemas.ProjectResponse)
def update_project(
    project_id: str,
    project_update: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Update a project.

    Visibility changes and ownership transfer need the owner or an admin.
    """
    try:
        project = crud.update_project(db, project_id, project_update, actor)
    except TicketflowError as e:
        raise rejection(e)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Delete a project that has no tickets. The default project is permanent."""
    try:
        success = crud.delete_project(db, project_id, actor)
    except TicketflowError as e:
        raise rejection(e)
    if not success:
        raise HTTPException(status_code=404, detail="Project not found")
