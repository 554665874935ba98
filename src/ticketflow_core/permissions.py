"""Actor identity and access rules.

Authentication happens upstream; the engine receives an already resolved
actor (id and role) and only decides what that actor may see or change.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import AuthorizationError
from .models import ProjectVisibility, UserRole

logger = logging.getLogger("ticketflow-core.permissions")

STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.AGENT})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller of an engine operation."""

    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def can_access_project(
    actor: Actor,
    visibility: ProjectVisibility,
    owner_user_id: Optional[str],
) -> bool:
    """
    Check whether an actor can see a project.

    Public projects are open to everyone; private ones only to their owner
    and to admins.
    """
    if visibility != ProjectVisibility.PRIVATE:
        return True
    return actor.is_admin or (owner_user_id is not None and owner_user_id == actor.id)


def require_role(actor: Actor, *roles: UserRole, action: str) -> None:
    """
    Raise AuthorizationError unless the actor holds one of the given roles.

    Args:
        actor: Calling actor
        roles: Accepted roles
        action: Human-readable action name for the error message
    """
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        logger.warning(f"Permission denied for user {actor.id} ({actor.role.value}) to {action}")
        raise AuthorizationError(f"Only {allowed} users can {action}")


def require_project_owner_or_admin(actor: Actor, owner_user_id: Optional[str], action: str) -> None:
    """Raise AuthorizationError unless the actor owns the project or is an admin."""
    if actor.is_admin:
        return
    if owner_user_id is not None and owner_user_id == actor.id:
        return
    logger.warning(f"Permission denied for user {actor.id} to {action}: not owner or admin")
    raise AuthorizationError(f"Only the project owner or an admin can {action}")
