"""Tickets API endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ticketflow_core import crud, schemas, models
from ticketflow_core.database import get_db
from ticketflow_core.errors import TicketflowError
from ticketflow_core.notifier import ChangeNotifier
from ticketflow_core.permissions import Actor

from ..dependencies import get_change_notifier, get_current_actor, rejection

logger = logging.getLogger("ticketflow-core.tickets")

router = APIRouter(tags=["tickets"])


@router.post("", response_model=schemas.TicketResponse, status_code=201)
def create_ticket(
    ticket: schemas.TicketCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """
    Create a ticket.

    - **title**: Required
    - **status** / **priority**: Default to open / medium
    - **tags**: List or comma-separated string
    - **parent_ticket_id**: Optional parent in the same project
    - **blocked_by_ticket_id**: Optional blocker; gates resolved/closed
    - **project_id**: Defaults to the parent's project, then the default project
    """
    try:
        db_ticket = crud.create_ticket(db, ticket, actor, notifier=notifier)
    except TicketflowError as e:
        raise rejection(e)
    return schemas.TicketResponse.from_ticket(db_ticket)


@router.get("", response_model=schemas.TicketListResponse)
def list_tickets(
    project_id: Optional[str] = Query(None, description="Filter by project"),
    status: Optional[models.TicketStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List tickets visible to the caller, most recently updated first."""
    tickets = crud.list_tickets(db, actor, project_id=project_id, status_filter=status)
    return schemas.TicketListResponse(
        items=[schemas.TicketResponse.from_ticket(t) for t in tickets],
        total=len(tickets),
    )


@router.get("/{ticket_id}", response_model=schemas.TicketDetailResponse)
def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Get a ticket together with its comments, oldest first."""
    try:
        db_ticket = crud.get_visible_ticket(db, ticket_id, actor)
    except TicketflowError as e:
        raise rejection(e)
    if not db_ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")

    return schemas.TicketDetailResponse(
        ticket=schemas.TicketResponse.from_ticket(db_ticket),
        comments=[schemas.CommentResponse.from_comment(c) for c in crud.list_comments(db, ticket_id)],
    )


@router.patch("/{ticket_id}", response_model=schemas.TicketResponse)
def update_ticket(
    ticket_id: str,
    ticket_update: schemas.TicketUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """
    Partially update a ticket.

    Omitted fields keep their value; null or "" clears a field. The merged
    ticket is validated as a whole, so an invalid combination leaves the
    stored ticket untouched.
    """
    try:
        db_ticket = crud.update_ticket(db, ticket_id, ticket_update, actor, notifier=notifier)
    except TicketflowError as e:
        raise rejection(e)
    if not db_ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return schemas.TicketResponse.from_ticket(db_ticket)


@router.post("/{ticket_id}/assign/{user_id}", response_model=schemas.TicketResponse)
def assign_ticket(
    ticket_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """Assign a ticket to a user (agents and admins only)."""
    try:
        db_ticket = crud.assign_ticket(db, ticket_id, user_id, actor, notifier=notifier)
    except TicketflowError as e:
        raise rejection(e)
    if not db_ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return schemas.TicketResponse.from_ticket(db_ticket)


@router.post("/{ticket_id}/comments", response_model=schemas.CommentResponse, status_code=201)
def add_comment(
    ticket_id: str,
    comment: schemas.CommentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """Add a comment to a ticket."""
    try:
        db_comment = crud.add_comment(db, ticket_id, comment.body, actor, notifier=notifier)
    except TicketflowError as e:
        raise rejection(e)
    if not db_comment:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return schemas.CommentResponse.from_comment(db_comment)
