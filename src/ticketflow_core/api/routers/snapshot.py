"""Snapshot export and restore endpoints (admins only)."""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ticketflow_core import schemas, snapshot
from ticketflow_core.database import get_db
from ticketflow_core.errors import TicketflowError
from ticketflow_core.permissions import Actor

from ..dependencies import get_current_actor, rejection

logger = logging.getLogger("ticketflow-core.snapshot-api")

router = APIRouter(tags=["snapshot"])


@router.get("", response_model=schemas.Snapshot)
def export_snapshot(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Export every user, project, ticket and comment."""
    try:
        return snapshot.export_snapshot(db, actor)
    except TicketflowError as e:
        raise rejection(e)


@router.post("/restore", response_model=schemas.RestoreResponse)
def restore_snapshot(
    data: dict[str, Any] = Body(..., description="Snapshot as produced by GET /snapshot"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Replace the whole dataset with a snapshot.

    Rows may appear in any order. Either the full snapshot is restored or
    nothing changes.
    """
    try:
        return snapshot.restore_snapshot(db, data, actor)
    except TicketflowError as e:
        raise rejection(e)
