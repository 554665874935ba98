"""CRUD operations and the ticket mutation coordinator.

Every write follows the same unit under ``database.write_lock``: load what
the write depends on, build the full proposed state, run the relationship
validator, and only then touch the session and commit. A rejection raises
before anything is added to the session, so the stored state is untouched.
Committed ticket and comment writes are published to the change notifier.
"""
import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .changes import blank_to_none
from .database import write_lock
from .errors import (
    TicketflowError,
    FieldValidationError,
    ReferenceNotFoundError,
    AuthorizationError,
    ConflictError,
)
from .models import DEFAULT_PROJECT_ID, ProjectVisibility, UserRole, utcnow, new_id
from .notifier import ChangeKind, ChangeNotifier, get_notifier
from .permissions import (
    Actor,
    can_access_project,
    require_role,
    require_project_owner_or_admin,
)
from .validator import GraphView, ProjectNode, TicketCandidate, TicketNode, validate_ticket

logger = logging.getLogger("ticketflow-core.crud")

# Well-known projects; only the first one is required to exist.
DEFAULT_PROJECTS = [
    {"id": DEFAULT_PROJECT_ID, "name": "General", "description": "Miscellaneous and unclassified work items"},
    {"id": "project-automation", "name": "Automation", "description": "Automation initiatives and maintenance"},
    {"id": "project-support", "name": "Support Desk", "description": "Customer and internal support tickets"},
]

TICKET_UPDATE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "tags",
    "due_date",
    "assignee_id",
    "parent_ticket_id",
    "blocked_by_ticket_id",
    "project_id",
)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error {action}: {e}", exc_info=True)
        raise


def _publish(notifier: Optional[ChangeNotifier], kind: ChangeKind, payload: dict) -> None:
    (notifier or get_notifier()).publish(kind, payload)


def _enum_value(value) -> Optional[str]:
    return value.value if hasattr(value, "value") else value


# ============================================================================
# Users
# ============================================================================

def create_user(
    db: Session,
    email: str,
    name: str,
    password_hash: str,
    role: UserRole = UserRole.USER,
    avatar_url: Optional[str] = None,
    area: Optional[str] = None,
) -> models.User:
    """
    Create a user.

    The password hash is stored as given; hashing happens in the auth layer.

    Raises:
        FieldValidationError: If email, name or password hash is blank
        ConflictError: If the email is already registered
    """
    email = (email or "").strip().lower()
    if not email or not (name or "").strip():
        raise FieldValidationError("Email and name are required")
    if not password_hash:
        raise FieldValidationError("Password hash is required")
    if get_user_by_email(db, email):
        logger.warning(f"Attempted to register duplicate email {email}")
        raise ConflictError("Email already registered")

    db_user = models.User(
        id=new_id(),
        email=email,
        name=name.strip(),
        password_hash=password_hash,
        role=UserRole(role),
        avatar_url=avatar_url,
        area=area,
        created_at=utcnow(),
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Email already registered")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating user: {e}", exc_info=True)
        raise
    db.refresh(db_user)
    logger.debug(f"Created user {db_user.id} ({db_user.email})")
    return db_user


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def list_users(db: Session) -> list[models.User]:
    return db.query(models.User).order_by(models.User.name).all()


def get_actor(db: Session, user_id: str) -> Optional[Actor]:
    """Resolve a user id to an Actor, or None if the user does not exist."""
    user = get_user(db, user_id)
    if not user:
        return None
    return Actor(id=user.id, role=UserRole(user.role))


def _apply_user_update(db: Session, db_user: models.User, payload: schemas.UserUpdate, actor: Actor) -> models.User:
    name = payload.change("name")
    if name.is_cleared:
        raise FieldValidationError("Name is required")

    role = payload.change("role")
    if role.is_cleared:
        raise FieldValidationError("Invalid role")
    new_role = _enum_value(db_user.role)
    if not role.is_unchanged:
        new_role = str(role.value).strip()
        if new_role not in {r.value for r in UserRole}:
            raise FieldValidationError("Invalid role")
        if new_role != _enum_value(db_user.role) and not actor.is_admin:
            logger.warning(f"User {actor.id} attempted to change the role of user {db_user.id}")
            raise AuthorizationError("Only admin users can change roles")

    db_user.name = name.apply(db_user.name).strip()
    db_user.role = UserRole(new_role)
    db_user.avatar_url = payload.change("avatar_url").apply(db_user.avatar_url)
    db_user.area = payload.change("area").apply(db_user.area)
    _commit(db, f"updating user {db_user.id}")
    db.refresh(db_user)
    logger.info(f"Updated user {db_user.id}")
    return db_user


def update_profile(db: Session, actor: Actor, payload: schemas.UserUpdate) -> Optional[models.User]:
    """
    Edit the calling user's own profile.

    Omitted fields stay; null or blank avatar and area are cleared. Only
    admins may change a role, their own included.

    Returns:
        Updated user or None if the actor no longer exists

    Raises:
        FieldValidationError: If the name is blank or the role is unknown
        AuthorizationError: If a non-admin tries to change their role
    """
    with write_lock:
        db.expire_all()
        db_user = get_user(db, actor.id)
        if not db_user:
            return None
        return _apply_user_update(db, db_user, payload, actor)


def update_user(
    db: Session,
    user_id: str,
    payload: schemas.UserUpdate,
    actor: Actor,
) -> Optional[models.User]:
    """Edit any user (admins only). Returns None if the user does not exist."""
    require_role(actor, UserRole.ADMIN, action="edit users")
    with write_lock:
        db.expire_all()
        db_user = get_user(db, user_id)
        if not db_user:
            return None
        return _apply_user_update(db, db_user, payload, actor)


# ============================================================================
# Graph view
# ============================================================================

def load_graph(db: Session) -> GraphView:
    """
    Take the read-only graph view the validator works on.

    Loads only ids, statuses and edges, never full rows.
    """
    tickets = {
        row.id: TicketNode(
            id=row.id,
            status=_enum_value(row.status),
            project_id=row.project_id,
            parent_id=row.parent_ticket_id,
            blocker_id=row.blocked_by_ticket_id,
        )
        for row in db.query(
            models.Ticket.id,
            models.Ticket.status,
            models.Ticket.project_id,
            models.Ticket.parent_ticket_id,
            models.Ticket.blocked_by_ticket_id,
        ).all()
    }
    projects = {
        row.id: ProjectNode(
            id=row.id,
            visibility=ProjectVisibility(row.visibility),
            owner_user_id=row.owner_user_id,
        )
        for row in db.query(
            models.Project.id,
            models.Project.visibility,
            models.Project.owner_user_id,
        ).all()
    }
    user_ids = frozenset(user_id for (user_id,) in db.query(models.User.id).all())
    return GraphView(tickets=tickets, projects=projects, user_ids=user_ids)


# ============================================================================
# Projects
# ============================================================================

def ensure_default_projects(db: Session, include_samples: bool = True) -> int:
    """
    Create the well-known projects that are missing.

    Args:
        db: Database session
        include_samples: Also create the sample projects next to the default one

    Returns:
        Number of projects created
    """
    created = 0
    for seed in DEFAULT_PROJECTS:
        if seed["id"] != DEFAULT_PROJECT_ID and not include_samples:
            continue
        if get_project(db, seed["id"]):
            continue
        now = utcnow()
        db.add(models.Project(
            id=seed["id"],
            name=seed["name"],
            description=seed["description"],
            visibility=ProjectVisibility.PUBLIC,
            owner_user_id=None,
            created_at=now,
            updated_at=now,
        ))
        created += 1
    if created:
        _commit(db, "seeding default projects")
        logger.info(f"Seeded {created} default project(s)")
    return created


def get_project(db: Session, project_id: str) -> Optional[models.Project]:
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def list_projects(db: Session, actor: Actor) -> list[models.Project]:
    """List the projects the actor can see, by name."""
    projects = db.query(models.Project).order_by(models.Project.name).all()
    return [
        p for p in projects
        if can_access_project(actor, ProjectVisibility(p.visibility), p.owner_user_id)
    ]


def _require_project_access(actor: Actor, project: models.Project) -> None:
    if not can_access_project(actor, ProjectVisibility(project.visibility), project.owner_user_id):
        logger.warning(f"User {actor.id} denied access to private project {project.id}")
        raise AuthorizationError(f"Project {project.id} is private")


def create_project(db: Session, payload: schemas.ProjectCreate, actor: Actor) -> models.Project:
    """
    Create a project.

    Private projects without an explicit owner are owned by the creator.
    Only admins may create a project on someone else's behalf.

    Raises:
        AuthorizationError: If the actor is not an agent or admin
        FieldValidationError: If the name is blank
        ReferenceNotFoundError: If the owner does not exist
    """
    require_role(actor, UserRole.ADMIN, UserRole.AGENT, action="create projects")

    name = (payload.name or "").strip()
    if not name:
        raise FieldValidationError("Name is required")

    owner_user_id = blank_to_none(payload.owner_user_id)
    visibility = ProjectVisibility(payload.visibility)
    if owner_user_id is None and visibility == ProjectVisibility.PRIVATE:
        owner_user_id = actor.id
    if owner_user_id is not None and owner_user_id != actor.id and not actor.is_admin:
        raise AuthorizationError("Only an admin can create a project owned by another user")

    with write_lock:
        if owner_user_id is not None and not get_user(db, owner_user_id):
            raise ReferenceNotFoundError(f"Owner {owner_user_id} not found")

        now = utcnow()
        db_project = models.Project(
            id=new_id(),
            name=name,
            description=(payload.description or "").strip(),
            visibility=visibility,
            owner_user_id=owner_user_id,
            created_at=now,
            updated_at=now,
        )
        db.add(db_project)
        _commit(db, "creating project")
        db.refresh(db_project)

    logger.debug(f"Created project {db_project.id} ({db_project.name})")
    return db_project


def update_project(
    db: Session,
    project_id: str,
    payload: schemas.ProjectUpdate,
    actor: Actor,
) -> Optional[models.Project]:
    """
    Update a project.

    Visibility changes and ownership transfer are reserved to the current
    owner or an admin. The default project stays public.

    Returns:
        Updated project or None if not found
    """
    require_role(actor, UserRole.ADMIN, UserRole.AGENT, action="update projects")

    with write_lock:
        db_project = get_project(db, project_id)
        if not db_project:
            return None
        _require_project_access(actor, db_project)

        name_change = payload.change("name")
        visibility_change = payload.change("visibility")
        owner_change = payload.change("owner_user_id")

        name = name_change.apply(db_project.name)
        if name is None or not name.strip():
            raise FieldValidationError("Name is required")
        description = payload.change("description").apply(db_project.description, cleared_value="")

        if visibility_change.is_cleared:
            raise FieldValidationError("Visibility is required")
        current_visibility = ProjectVisibility(db_project.visibility)
        visibility = ProjectVisibility(visibility_change.apply(current_visibility))
        owner_user_id = owner_change.apply(db_project.owner_user_id)

        visibility_changed = visibility != current_visibility
        owner_changed = owner_user_id != db_project.owner_user_id
        if visibility_changed:
            require_project_owner_or_admin(actor, db_project.owner_user_id, "change project visibility")
        if owner_changed:
            require_project_owner_or_admin(actor, db_project.owner_user_id, "transfer project ownership")

        if db_project.id == DEFAULT_PROJECT_ID and visibility == ProjectVisibility.PRIVATE:
            raise ConflictError("The default project must stay public")

        if visibility == ProjectVisibility.PRIVATE and owner_user_id is None:
            if not owner_change.is_unchanged:
                raise FieldValidationError("Private projects require an owner")
            owner_user_id = actor.id
        if owner_user_id is not None and owner_user_id != db_project.owner_user_id and not get_user(db, owner_user_id):
            raise ReferenceNotFoundError(f"Owner {owner_user_id} not found")

        db_project.name = name.strip()
        db_project.description = description.strip()
        db_project.visibility = visibility
        db_project.owner_user_id = owner_user_id
        db_project.updated_at = utcnow()
        _commit(db, f"updating project {project_id}")
        db.refresh(db_project)

    logger.debug(f"Updated project {project_id}")
    return db_project


def delete_project(db: Session, project_id: str, actor: Actor) -> bool:
    """
    Delete a project that no ticket references.

    Returns:
        True if deleted, False if not found

    Raises:
        ConflictError: For the default project or a project with tickets
    """
    require_role(actor, UserRole.ADMIN, UserRole.AGENT, action="delete projects")

    if project_id == DEFAULT_PROJECT_ID:
        logger.warning(f"User {actor.id} attempted to delete the default project")
        raise ConflictError("Default project cannot be removed")

    with write_lock:
        db_project = get_project(db, project_id)
        if not db_project:
            return False
        _require_project_access(actor, db_project)

        ticket_count = db.query(models.Ticket).filter(models.Ticket.project_id == project_id).count()
        if ticket_count > 0:
            logger.warning(f"Refused to delete project {project_id}: {ticket_count} ticket(s) assigned")
            raise ConflictError(f"Project has assigned tickets ({ticket_count})")

        db.delete(db_project)
        _commit(db, f"deleting project {project_id}")

    logger.debug(f"Deleted project {project_id}")
    return True


# ============================================================================
# Tickets
# ============================================================================

def get_ticket(db: Session, ticket_id: str) -> Optional[models.Ticket]:
    return db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()


def get_visible_ticket(db: Session, ticket_id: str, actor: Actor) -> Optional[models.Ticket]:
    """
    Get a ticket the actor is allowed to see.

    Raises:
        AuthorizationError: If the ticket lives in a private project the actor cannot see
    """
    ticket = get_ticket(db, ticket_id)
    if ticket is not None:
        _require_project_access(actor, ticket.project)
    return ticket


def list_tickets(
    db: Session,
    actor: Actor,
    project_id: Optional[str] = None,
    status_filter: Optional[models.TicketStatus] = None,
) -> list[models.Ticket]:
    """
    List tickets in projects visible to the actor, most recently updated first.
    """
    query = db.query(models.Ticket).join(models.Project, models.Ticket.project_id == models.Project.id)

    if not actor.is_admin:
        query = query.filter(
            or_(
                models.Project.visibility == ProjectVisibility.PUBLIC,
                models.Project.owner_user_id == actor.id,
            )
        )
    if project_id:
        query = query.filter(models.Ticket.project_id == project_id)
    if status_filter:
        query = query.filter(models.Ticket.status == status_filter)

    return query.order_by(models.Ticket.updated_at.desc()).all()


def _ticket_event(ticket: models.Ticket) -> dict:
    return schemas.TicketResponse.from_ticket(ticket).model_dump(mode="json")


def create_ticket(
    db: Session,
    payload: schemas.TicketCreate,
    actor: Actor,
    notifier: Optional[ChangeNotifier] = None,
) -> models.Ticket:
    """
    Create a ticket.

    Project resolution: explicit project, else the parent's project, else the
    default project. Blank and null parent/blocker/assignee mean unset.

    Raises:
        TicketflowError: If the relationship validator rejects the ticket
    """
    with write_lock:
        # Other sessions may have committed since this one last read
        db.expire_all()
        graph = load_graph(db)

        parent_id = blank_to_none(payload.parent_ticket_id)
        blocker_id = blank_to_none(payload.blocked_by_ticket_id)
        parent = graph.tickets.get(parent_id) if parent_id else None
        project_id = (
            blank_to_none(payload.project_id)
            or (parent.project_id if parent else None)
            or DEFAULT_PROJECT_ID
        )

        candidate = TicketCandidate(
            id=new_id(),
            title=(payload.title or "").strip(),
            status=payload.status,
            priority=payload.priority,
            project_id=project_id,
            created_by=actor.id,
            parent_id=parent_id,
            blocker_id=blocker_id,
            assignee_id=blank_to_none(payload.assignee_id),
            parent_changed=parent_id is not None,
        )
        try:
            validate_ticket(candidate, graph, actor)
        except TicketflowError:
            db.rollback()
            raise

        now = utcnow()
        db_ticket = models.Ticket(
            id=candidate.id,
            title=candidate.title,
            description=payload.description or "",
            status=models.TicketStatus(candidate.status),
            priority=models.TicketPriority(candidate.priority),
            tags=list(payload.tags),
            due_date=payload.due_date,
            assignee_id=candidate.assignee_id,
            parent_ticket_id=candidate.parent_id,
            blocked_by_ticket_id=candidate.blocker_id,
            project_id=candidate.project_id,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        db.add(db_ticket)
        _commit(db, "creating ticket")
        db.refresh(db_ticket)

        logger.info(f"Created ticket {db_ticket.id} in project {db_ticket.project_id}")
        _publish(notifier, ChangeKind.TICKET_CREATED, _ticket_event(db_ticket))
    return db_ticket


def update_ticket(
    db: Session,
    ticket_id: str,
    payload: schemas.TicketUpdate,
    actor: Actor,
    notifier: Optional[ChangeNotifier] = None,
) -> Optional[models.Ticket]:
    """
    Apply a partial update to a ticket.

    Fields omitted from the payload keep their stored value; fields sent as
    null or "" are cleared. The merged state is validated as a whole and
    either written completely or not at all.

    Returns:
        Updated ticket or None if not found

    Raises:
        TicketflowError: If the merged state is rejected
    """
    with write_lock:
        db.expire_all()
        db_ticket = get_visible_ticket(db, ticket_id, actor)
        if not db_ticket:
            return None

        changes = {name: payload.change(name) for name in TICKET_UPDATE_FIELDS}
        if all(change.is_unchanged for change in changes.values()):
            logger.debug(f"Empty update for ticket {ticket_id}")
            return db_ticket

        graph = load_graph(db)

        parent_id = changes["parent_ticket_id"].apply(db_ticket.parent_ticket_id)
        blocker_id = changes["blocked_by_ticket_id"].apply(db_ticket.blocked_by_ticket_id)

        project_change = changes["project_id"]
        if project_change.is_cleared:
            parent = graph.tickets.get(parent_id) if parent_id else None
            project_id = parent.project_id if parent else DEFAULT_PROJECT_ID
        else:
            project_id = project_change.apply(db_ticket.project_id)

        title = changes["title"].apply(db_ticket.title)
        candidate = TicketCandidate(
            id=db_ticket.id,
            title=title.strip() if title else title,
            status=changes["status"].apply(_enum_value(db_ticket.status)),
            priority=changes["priority"].apply(_enum_value(db_ticket.priority)),
            project_id=project_id,
            created_by=db_ticket.created_by,
            parent_id=parent_id,
            blocker_id=blocker_id,
            assignee_id=changes["assignee_id"].apply(db_ticket.assignee_id),
            parent_changed=parent_id is not None and parent_id != db_ticket.parent_ticket_id,
        )
        try:
            validate_ticket(candidate, graph, actor)
        except TicketflowError:
            db.rollback()
            raise

        db_ticket.title = candidate.title
        db_ticket.description = changes["description"].apply(db_ticket.description, cleared_value="")
        db_ticket.status = models.TicketStatus(candidate.status)
        db_ticket.priority = models.TicketPriority(candidate.priority)
        db_ticket.tags = list(changes["tags"].apply(db_ticket.tags or [], cleared_value=[]))
        db_ticket.due_date = changes["due_date"].apply(db_ticket.due_date)
        db_ticket.assignee_id = candidate.assignee_id
        db_ticket.parent_ticket_id = candidate.parent_id
        db_ticket.blocked_by_ticket_id = candidate.blocker_id
        db_ticket.project_id = candidate.project_id
        db_ticket.updated_at = utcnow()
        _commit(db, f"updating ticket {ticket_id}")
        db.refresh(db_ticket)

        logger.info(f"Updated ticket {ticket_id}")
        _publish(notifier, ChangeKind.TICKET_UPDATED, _ticket_event(db_ticket))
    return db_ticket


def assign_ticket(
    db: Session,
    ticket_id: str,
    assignee_id: Optional[str],
    actor: Actor,
    notifier: Optional[ChangeNotifier] = None,
) -> Optional[models.Ticket]:
    """
    Reassign a ticket (agents and admins only).

    Runs through the same validation as any other update.

    Raises:
        AuthorizationError: If the actor is neither agent nor admin
    """
    require_role(actor, UserRole.ADMIN, UserRole.AGENT, action="assign tickets")
    return update_ticket(db, ticket_id, schemas.TicketUpdate(assignee_id=assignee_id), actor, notifier)


# ============================================================================
# Comments
# ============================================================================

def list_comments(db: Session, ticket_id: str) -> list[models.Comment]:
    return (
        db.query(models.Comment)
        .filter(models.Comment.ticket_id == ticket_id)
        .order_by(models.Comment.created_at.asc())
        .all()
    )


def add_comment(
    db: Session,
    ticket_id: str,
    body: str,
    actor: Actor,
    notifier: Optional[ChangeNotifier] = None,
) -> Optional[models.Comment]:
    """
    Append a comment to a ticket.

    Returns:
        Created comment or None if the ticket does not exist

    Raises:
        FieldValidationError: If the body is blank
    """
    with write_lock:
        db_ticket = get_visible_ticket(db, ticket_id, actor)
        if not db_ticket:
            return None

        body = (body or "").strip()
        if not body:
            raise FieldValidationError("Empty comment")
        if not get_user(db, actor.id):
            raise ReferenceNotFoundError(f"Author {actor.id} not found")

        db_comment = models.Comment(
            id=new_id(),
            ticket_id=db_ticket.id,
            user_id=actor.id,
            body=body,
            created_at=utcnow(),
        )
        db.add(db_comment)
        _commit(db, f"adding comment to ticket {ticket_id}")
        db.refresh(db_comment)

        comment_view = schemas.CommentResponse.from_comment(db_comment).model_dump(mode="json")
        _publish(notifier, ChangeKind.COMMENT_CREATED, {"ticket_id": db_ticket.id, "comment": comment_view})
    return db_comment
