"""Relationship validation for ticket writes.

Decides whether a proposed ticket state keeps the ticket graph valid:
- Title present, status and priority inside their enums
- No ticket parents or blocks itself
- Project, parent, blocker, assignee and creator all exist, and the project
  is visible to the actor
- Parent (and any children) live in the same project; parent is not also the blocker
- The parent chain stays acyclic
- Resolved/closed is only reachable once the blocker is resolved/closed

Checks run cheapest first and the first failure wins, so the same bad
payload always produces the same rejection. Validation works on a GraphView
taken once per mutation and never touches the database.
"""
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import (
    TicketflowError,
    FieldValidationError,
    ReferenceNotFoundError,
    StructuralError,
    GateError,
    AuthorizationError,
)
from .models import ProjectVisibility, TicketStatus, TicketPriority, TERMINAL_STATUSES
from .permissions import Actor, can_access_project

logger = logging.getLogger("ticketflow-core.validator")

VALID_STATUSES = frozenset(s.value for s in TicketStatus)
VALID_PRIORITIES = frozenset(p.value for p in TicketPriority)
TERMINAL_STATUS_VALUES = frozenset(s.value for s in TERMINAL_STATUSES)


@dataclass(frozen=True)
class TicketNode:
    """The slice of a stored ticket the validator needs."""

    id: str
    status: str
    project_id: str
    parent_id: Optional[str] = None
    blocker_id: Optional[str] = None


@dataclass(frozen=True)
class ProjectNode:
    """The slice of a stored project the validator needs."""

    id: str
    visibility: ProjectVisibility
    owner_user_id: Optional[str] = None


@dataclass(frozen=True)
class GraphView:
    """Read-only view of the ticket graph taken at validation time."""

    tickets: Mapping[str, TicketNode] = field(default_factory=dict)
    projects: Mapping[str, ProjectNode] = field(default_factory=dict)
    user_ids: frozenset = frozenset()


@dataclass(frozen=True)
class TicketCandidate:
    """
    Fully resolved post-mutation state of one ticket.

    Attributes:
        parent_changed: True when this write sets or changes the parent;
            the cycle walk only runs in that case.
    """

    id: str
    title: Optional[str]
    status: Optional[str]
    priority: Optional[str]
    project_id: Optional[str]
    created_by: Optional[str]
    parent_id: Optional[str] = None
    blocker_id: Optional[str] = None
    assignee_id: Optional[str] = None
    parent_changed: bool = False


def _status_value(value) -> Optional[str]:
    return value.value if isinstance(value, TicketStatus) else value


def check_required_fields(candidate: TicketCandidate) -> None:
    """Title must be non-blank; status and priority must be known values."""
    if not (candidate.title or "").strip():
        raise FieldValidationError("Title is required")

    status = _status_value(candidate.status)
    if status not in VALID_STATUSES:
        raise FieldValidationError(
            f"Invalid status value: {status!r}. Expected one of: {', '.join(sorted(VALID_STATUSES))}"
        )

    priority = candidate.priority.value if isinstance(candidate.priority, TicketPriority) else candidate.priority
    if priority not in VALID_PRIORITIES:
        raise FieldValidationError(
            f"Invalid priority value: {priority!r}. Expected one of: {', '.join(sorted(VALID_PRIORITIES))}"
        )


def check_self_reference(candidate: TicketCandidate) -> None:
    if candidate.parent_id is not None and candidate.parent_id == candidate.id:
        raise StructuralError("Ticket cannot be its own parent")
    if candidate.blocker_id is not None and candidate.blocker_id == candidate.id:
        raise StructuralError("Ticket cannot be blocked by itself")


def check_references(candidate: TicketCandidate, graph: GraphView, actor: Actor) -> None:
    """Project (and its visibility), parent, blocker, assignee and creator must exist."""
    project = graph.projects.get(candidate.project_id) if candidate.project_id else None
    if project is None:
        raise ReferenceNotFoundError(f"Invalid project: {candidate.project_id!r} not found")
    if not can_access_project(actor, project.visibility, project.owner_user_id):
        raise AuthorizationError(f"Project {project.id} is private")

    if candidate.parent_id is not None and candidate.parent_id not in graph.tickets:
        raise ReferenceNotFoundError(f"Parent ticket {candidate.parent_id} not found")
    if candidate.blocker_id is not None and candidate.blocker_id not in graph.tickets:
        raise ReferenceNotFoundError(f"Blocking ticket {candidate.blocker_id} not found")
    if candidate.assignee_id is not None and candidate.assignee_id not in graph.user_ids:
        raise ReferenceNotFoundError(f"Assignee {candidate.assignee_id} not found")
    if candidate.created_by is None or candidate.created_by not in graph.user_ids:
        raise ReferenceNotFoundError(f"Creator {candidate.created_by} not found")


def check_same_project(candidate: TicketCandidate, graph: GraphView) -> None:
    """The parent, and any existing children, must share the candidate's project."""
    if candidate.parent_id is not None:
        parent = graph.tickets[candidate.parent_id]
        if parent.project_id != candidate.project_id:
            raise StructuralError("Parent ticket belongs to a different project")

    stored = graph.tickets.get(candidate.id)
    if stored is None or stored.project_id == candidate.project_id:
        return
    for node in graph.tickets.values():
        if node.parent_id == candidate.id and node.project_id != candidate.project_id:
            raise StructuralError(
                f"Ticket has child tickets in project {node.project_id}; move or detach them first"
            )


def check_edge_collision(candidate: TicketCandidate) -> None:
    if candidate.parent_id is not None and candidate.parent_id == candidate.blocker_id:
        raise StructuralError("Blocking ticket cannot be the parent ticket")


def would_create_parent_cycle(ticket_id: str, proposed_parent_id: Optional[str], graph: GraphView) -> bool:
    """
    Check whether parenting ticket_id under proposed_parent_id closes a loop.

    Walks the parent chain upward from the proposed parent. The walk stops at
    a null parent or a ticket missing from the view. It takes at most one
    step per ticket in the view; needing more means the stored chain already
    loops without passing through ticket_id.

    Args:
        ticket_id: Ticket being re-parented
        proposed_parent_id: Parent it would get
        graph: Graph view

    Returns:
        True if ticket_id is an ancestor of (or equal to) the proposed parent

    Raises:
        StructuralError: If the stored parent chain never terminates
    """
    max_steps = len(graph.tickets)
    steps = 0
    current = proposed_parent_id
    while current is not None:
        if current == ticket_id:
            return True
        node = graph.tickets.get(current)
        if node is None:
            break
        steps += 1
        if steps > max_steps:
            logger.error(f"Parent chain above {proposed_parent_id} does not terminate after {max_steps} steps")
            raise StructuralError(
                f"Parent chain above ticket {proposed_parent_id} contains a cycle; stored hierarchy is corrupt"
            )
        current = node.parent_id
    return False


def check_parent_cycle(candidate: TicketCandidate, graph: GraphView) -> None:
    if not candidate.parent_changed or candidate.parent_id is None:
        return
    if would_create_parent_cycle(candidate.id, candidate.parent_id, graph):
        raise StructuralError(
            f"Parent assignment would create a cycle: {candidate.parent_id} descends from {candidate.id}"
        )


def check_blocker_gate(candidate: TicketCandidate, graph: GraphView) -> None:
    """
    Resolved/closed needs a resolved/closed blocker.

    Uses the blocker's stored status. A blocker that later regresses does not
    reopen tickets that already passed the gate.
    """
    if candidate.blocker_id is None:
        return
    if _status_value(candidate.status) not in TERMINAL_STATUS_VALUES:
        return

    blocker = graph.tickets[candidate.blocker_id]
    if blocker.status not in TERMINAL_STATUS_VALUES:
        raise GateError(
            f"Blocking ticket {blocker.id} must be resolved or closed first (currently {blocker.status})",
            ticket_id=candidate.id,
            blocker_id=blocker.id,
            blocker_status=blocker.status,
        )


def find_violation(candidate: TicketCandidate, graph: GraphView, actor: Actor) -> Optional[TicketflowError]:
    """
    Run every check and return the first violation.

    Args:
        candidate: Proposed ticket state
        graph: Graph view taken for this mutation
        actor: Actor performing the write

    Returns:
        The rejection, or None if the candidate is acceptable
    """
    try:
        check_required_fields(candidate)
        check_self_reference(candidate)
        check_references(candidate, graph, actor)
        check_same_project(candidate, graph)
        check_edge_collision(candidate)
        check_parent_cycle(candidate, graph)
        check_blocker_gate(candidate, graph)
    except TicketflowError as e:
        return e
    return None


def validate_ticket(candidate: TicketCandidate, graph: GraphView, actor: Actor) -> None:
    """
    Validate a proposed ticket state and raise if it is rejected.

    Raises:
        TicketflowError: The first failing check's typed rejection
    """
    violation = find_violation(candidate, graph, actor)
    if violation is not None:
        logger.warning(f"Rejected ticket {candidate.id}: {violation.kind}: {violation.reason}")
        raise violation
    logger.debug(f"Accepted ticket {candidate.id}")
