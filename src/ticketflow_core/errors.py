"""Typed rejections raised by the consistency engine.

Every rejection is recoverable: it is raised before anything is written, so
the store keeps its prior state. Routers translate them into HTTP responses
using ``status_code``; ``kind`` is the stable machine-readable name.
"""
from typing import Optional


class TicketflowError(ValueError):
    """Base class for all rejected mutations."""

    kind = "error"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_detail(self) -> dict:
        return {"error": self.kind, "message": self.reason}


class FieldValidationError(TicketflowError):
    """Raised when a field is missing, empty, or outside its enum."""

    kind = "validation_error"


class ReferenceNotFoundError(TicketflowError):
    """Raised when a referenced project, ticket or user does not exist."""

    kind = "reference_error"


class StructuralError(TicketflowError):
    """Raised when an edge would break the ticket graph.

    Covers self-references, parent cycles, parent/blocker collisions and
    cross-project parents.
    """

    kind = "structural_error"


class GateError(TicketflowError):
    """Raised when a ticket would reach resolved/closed ahead of its blocker."""

    kind = "gate_error"

    def __init__(self, reason: str, ticket_id: str, blocker_id: str, blocker_status: str):
        super().__init__(reason)
        self.ticket_id = ticket_id
        self.blocker_id = blocker_id
        self.blocker_status = blocker_status


class AuthorizationError(TicketflowError):
    """Raised when the actor lacks the role or ownership for an action."""

    kind = "authorization_error"
    status_code = 403


class ConflictError(TicketflowError):
    """Raised on uniqueness conflicts and protected-row deletions."""

    kind = "conflict_error"
    status_code = 409


class ReconstructionError(TicketflowError):
    """Raised when a snapshot cannot be restored.

    Attributes:
        unresolved: Ticket ids that could not be ordered (cycle members or
            tickets depending on them), empty for other failures.
    """

    kind = "reconstruction_error"

    def __init__(self, reason: str, unresolved: Optional[list[str]] = None):
        super().__init__(reason)
        self.unresolved = unresolved or []
