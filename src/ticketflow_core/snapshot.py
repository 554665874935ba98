"""Snapshot export and all-or-nothing restore.

Restore replaces the whole dataset. The input comes from outside and its
rows can reference each other in any order, so restore works in two steps:

1. Plan: check every row and compute a ticket insertion order in which each
   ticket's parent and blocker are inserted before it. This step is pure and
   runs before anything is deleted.
2. Apply: under the write lock, clear the four tables and insert users,
   projects, tickets (in planned order) and comments in one transaction.
   Any failure rolls back to the dataset that was there before.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models
from .database import write_lock
from .errors import ReconstructionError
from .models import DEFAULT_PROJECT_ID, ProjectVisibility, UserRole, utcnow
from .permissions import Actor, require_role
from .schemas import (
    Snapshot,
    SnapshotComment,
    SnapshotProject,
    SnapshotTicket,
    SnapshotUser,
    RestoreResponse,
)

logger = logging.getLogger("ticketflow-core.snapshot")


@dataclass
class RestorePlan:
    """Validated snapshot rows, tickets in dependency order."""

    users: list[SnapshotUser] = field(default_factory=list)
    projects: list[SnapshotProject] = field(default_factory=list)
    tickets: list[SnapshotTicket] = field(default_factory=list)
    comments: list[SnapshotComment] = field(default_factory=list)


def export_snapshot(db: Session, actor: Actor) -> Snapshot:
    """
    Export every user, project, ticket and comment (admins only).

    The result can be fed back to restore_snapshot unchanged.
    """
    require_role(actor, UserRole.ADMIN, action="export snapshots")

    snapshot = Snapshot(
        users=[SnapshotUser.model_validate(u) for u in db.query(models.User).order_by(models.User.created_at).all()],
        projects=[
            SnapshotProject.model_validate(p)
            for p in db.query(models.Project).order_by(models.Project.created_at).all()
        ],
        tickets=[
            SnapshotTicket.model_validate(t)
            for t in db.query(models.Ticket).order_by(models.Ticket.created_at).all()
        ],
        comments=[
            SnapshotComment.model_validate(c)
            for c in db.query(models.Comment).order_by(models.Comment.created_at).all()
        ],
        exported_at=utcnow(),
    )
    logger.info(
        f"Exported snapshot: {len(snapshot.users)} users, {len(snapshot.projects)} projects, "
        f"{len(snapshot.tickets)} tickets, {len(snapshot.comments)} comments"
    )
    return snapshot


def parse_snapshot(data: Union[Snapshot, Mapping[str, Any]]) -> Snapshot:
    """
    Parse raw snapshot data.

    Raises:
        ReconstructionError: If the data does not have the snapshot shape
    """
    if isinstance(data, Snapshot):
        return data
    try:
        return Snapshot.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ReconstructionError(f"Malformed snapshot at {location}: {first['msg']}")


def _ensure_unique(rows: list, label: str) -> set[str]:
    seen: set[str] = set()
    for row in rows:
        if row.id in seen:
            raise ReconstructionError(f"Duplicate {label} id {row.id}")
        seen.add(row.id)
    return seen


def order_tickets(tickets: list[SnapshotTicket]) -> list[SnapshotTicket]:
    """
    Order tickets so every parent and blocker precedes its dependents.

    Kahn's algorithm over parent and blocker edges. Tickets whose
    dependencies are satisfied are emitted in input order.

    Raises:
        ReconstructionError: If some tickets can never be inserted (a cycle
            through parent/blocker edges, or a reference outside the set)
    """
    by_id = {t.id: t for t in tickets}
    waiting_on: dict[str, int] = {}
    dependents: dict[str, list[str]] = {t.id: [] for t in tickets}

    for ticket in tickets:
        deps = {ref for ref in (ticket.parent_ticket_id, ticket.blocked_by_ticket_id) if ref is not None}
        waiting_on[ticket.id] = len(deps)
        for dep in deps:
            if dep not in by_id:
                raise ReconstructionError(
                    f"Ticket {ticket.id} references missing ticket {dep}", unresolved=[ticket.id]
                )
            dependents[dep].append(ticket.id)

    ready = deque(t.id for t in tickets if waiting_on[t.id] == 0)
    ordered: list[SnapshotTicket] = []
    while ready:
        ticket_id = ready.popleft()
        ordered.append(by_id[ticket_id])
        for dependent in dependents[ticket_id]:
            waiting_on[dependent] -= 1
            if waiting_on[dependent] == 0:
                ready.append(dependent)

    if len(ordered) != len(tickets):
        placed = {t.id for t in ordered}
        unresolved = [t.id for t in tickets if t.id not in placed]
        raise ReconstructionError(
            f"Unresolvable ticket references among {len(unresolved)} ticket(s): {', '.join(unresolved)}",
            unresolved=unresolved,
        )
    return ordered


def plan_restore(snapshot: Snapshot) -> RestorePlan:
    """
    Validate a snapshot and compute the insertion order.

    Checks run phase by phase (users, projects, tickets, comments) and the
    first failure is raised. Nothing is written.

    Raises:
        ReconstructionError: Describing the first offending row
    """
    user_ids = _ensure_unique(snapshot.users, "user")
    emails: set[str] = set()
    for user in snapshot.users:
        email = user.email.strip().lower()
        if email in emails:
            raise ReconstructionError(f"Duplicate user email {user.email}")
        emails.add(email)

    project_ids = _ensure_unique(snapshot.projects, "project")
    for project in snapshot.projects:
        if project.owner_user_id is not None and project.owner_user_id not in user_ids:
            raise ReconstructionError(f"Project {project.id} owner {project.owner_user_id} not found")
        if ProjectVisibility(project.visibility) == ProjectVisibility.PRIVATE and project.owner_user_id is None:
            raise ReconstructionError(f"Private project {project.id} has no owner")
    if DEFAULT_PROJECT_ID in project_ids:
        default = next(p for p in snapshot.projects if p.id == DEFAULT_PROJECT_ID)
        if ProjectVisibility(default.visibility) != ProjectVisibility.PUBLIC:
            raise ReconstructionError("The default project must be public")
    # Restore re-creates the default project when the snapshot lacks it
    project_ids.add(DEFAULT_PROJECT_ID)

    _ensure_unique(snapshot.tickets, "ticket")
    tickets_by_id = {t.id: t for t in snapshot.tickets}
    for ticket in snapshot.tickets:
        if not ticket.title.strip():
            raise ReconstructionError(f"Ticket {ticket.id} has an empty title")
        if ticket.project_id not in project_ids:
            raise ReconstructionError(f"Ticket {ticket.id} project {ticket.project_id} not found")
        if ticket.created_by not in user_ids:
            raise ReconstructionError(f"Ticket {ticket.id} creator {ticket.created_by} not found")
        if ticket.assignee_id is not None and ticket.assignee_id not in user_ids:
            raise ReconstructionError(f"Ticket {ticket.id} assignee {ticket.assignee_id} not found")
        if ticket.parent_ticket_id is not None and ticket.parent_ticket_id == ticket.blocked_by_ticket_id:
            raise ReconstructionError(f"Ticket {ticket.id} has the same ticket as parent and blocker")
        parent = tickets_by_id.get(ticket.parent_ticket_id) if ticket.parent_ticket_id else None
        if parent is not None and parent.project_id != ticket.project_id:
            raise ReconstructionError(f"Ticket {ticket.id} and its parent {parent.id} are in different projects")
    ordered = order_tickets(snapshot.tickets)

    _ensure_unique(snapshot.comments, "comment")
    for comment in snapshot.comments:
        if comment.ticket_id not in tickets_by_id:
            raise ReconstructionError(f"Comment {comment.id} ticket {comment.ticket_id} not found")
        if comment.user_id not in user_ids:
            raise ReconstructionError(f"Comment {comment.id} author {comment.user_id} not found")

    return RestorePlan(
        users=list(snapshot.users),
        projects=list(snapshot.projects),
        tickets=ordered,
        comments=list(snapshot.comments),
    )


def _apply_plan(db: Session, plan: RestorePlan) -> None:
    now = utcnow()

    db.query(models.Comment).delete(synchronize_session=False)
    db.query(models.Ticket).delete(synchronize_session=False)
    db.query(models.Project).delete(synchronize_session=False)
    db.query(models.User).delete(synchronize_session=False)
    db.flush()
    # Restored rows may reuse ids of instances this session already holds
    db.expunge_all()

    for user in plan.users:
        db.add(models.User(
            id=user.id,
            email=user.email.strip().lower(),
            name=user.name,
            password_hash=user.password_hash,
            role=UserRole(user.role),
            avatar_url=user.avatar_url,
            area=user.area,
            created_at=user.created_at or now,
        ))
    db.flush()

    for project in plan.projects:
        db.add(models.Project(
            id=project.id,
            name=project.name,
            description=project.description,
            visibility=ProjectVisibility(project.visibility),
            owner_user_id=project.owner_user_id,
            created_at=project.created_at or now,
            updated_at=project.updated_at or project.created_at or now,
        ))
    if DEFAULT_PROJECT_ID not in {p.id for p in plan.projects}:
        default = crud.DEFAULT_PROJECTS[0]
        db.add(models.Project(
            id=default["id"],
            name=default["name"],
            description=default["description"],
            visibility=ProjectVisibility.PUBLIC,
            created_at=now,
            updated_at=now,
        ))
    db.flush()

    for ticket in plan.tickets:
        db.add(models.Ticket(
            id=ticket.id,
            title=ticket.title.strip(),
            description=ticket.description,
            status=models.TicketStatus(ticket.status),
            priority=models.TicketPriority(ticket.priority),
            tags=list(ticket.tags),
            due_date=ticket.due_date,
            assignee_id=ticket.assignee_id,
            parent_ticket_id=ticket.parent_ticket_id,
            blocked_by_ticket_id=ticket.blocked_by_ticket_id,
            project_id=ticket.project_id,
            created_by=ticket.created_by,
            created_at=ticket.created_at or now,
            updated_at=ticket.updated_at or ticket.created_at or now,
        ))
        # One row per flush keeps the planned order on the wire
        db.flush()

    for comment in plan.comments:
        db.add(models.Comment(
            id=comment.id,
            ticket_id=comment.ticket_id,
            user_id=comment.user_id,
            body=comment.body,
            created_at=comment.created_at or now,
        ))
    db.flush()


def restore_snapshot(
    db: Session,
    data: Union[Snapshot, Mapping[str, Any]],
    actor: Actor,
) -> RestoreResponse:
    """
    Replace the whole dataset with a snapshot (admins only).

    Either every row of the snapshot is committed or the previous dataset
    stays exactly as it was.

    Args:
        db: Database session
        data: Snapshot model or its raw JSON-decoded form
        actor: Restoring actor

    Returns:
        Counts of restored rows

    Raises:
        AuthorizationError: If the actor is not an admin
        ReconstructionError: If the snapshot is malformed or cannot be ordered
    """
    require_role(actor, UserRole.ADMIN, action="restore snapshots")

    snapshot = parse_snapshot(data)
    plan = plan_restore(snapshot)

    with write_lock:
        try:
            _apply_plan(db, plan)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Restore rejected by the store: {e}", exc_info=True)
            raise ReconstructionError(f"Snapshot violates a store constraint: {e.orig}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error during restore: {e}", exc_info=True)
            raise

    logger.info(
        f"Restored snapshot: {len(plan.users)} users, {len(plan.projects)} projects, "
        f"{len(plan.tickets)} tickets, {len(plan.comments)} comments"
    )
    return RestoreResponse(
        users=len(plan.users),
        projects=len(plan.projects),
        tickets=len(plan.tickets),
        comments=len(plan.comments),
    )
