"""Request-scoped dependencies shared by the routers."""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ticketflow_core import crud
from ticketflow_core.database import get_db
from ticketflow_core.errors import TicketflowError
from ticketflow_core.notifier import ChangeNotifier, get_notifier
from ticketflow_core.permissions import Actor

logger = logging.getLogger("ticketflow-core.dependencies")


def get_current_actor(
    x_actor_id: Optional[str] = Header(None, description="Id of the authenticated user"),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the calling actor.

    Authentication happens upstream and forwards the user id in the
    X-Actor-Id header; the role is always read from the store.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")

    actor = crud.get_actor(db, x_actor_id.strip())
    if actor is None:
        logger.warning(f"Unknown actor id {x_actor_id!r}")
        raise HTTPException(status_code=401, detail="Unknown actor")
    return actor


def get_change_notifier() -> ChangeNotifier:
    return get_notifier()


def rejection(error: TicketflowError) -> HTTPException:
    """Translate a typed rejection into the HTTP error routers raise."""
    return HTTPException(status_code=error.status_code, detail=error.to_detail())
