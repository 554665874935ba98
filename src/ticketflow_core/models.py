"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    JSON,
    CheckConstraint,
)
from sqlalchemy.orm import relationship, declarative_base

# Base class for all models
Base = declarative_base()

# Well-known project that must always exist; tickets fall back to it.
DEFAULT_PROJECT_ID = "project-default"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class UserRole(str, enum.Enum):
    """User role enum."""

    ADMIN = "admin"
    AGENT = "agent"
    USER = "user"


class ProjectVisibility(str, enum.Enum):
    """Project visibility enum."""

    PUBLIC = "public"
    PRIVATE = "private"


class TicketStatus(str, enum.Enum):
    """Ticket status enum.

    Only resolved and closed carry meaning for the blocking gate: a ticket
    may reach one of them only while its blocker already sits in one.
    """

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, enum.Enum):
    """Ticket priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Statuses that satisfy the blocking gate
TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})


class User(Base):
    """
    User model.

    Credentials are opaque here: password_hash is produced and checked by the
    authentication layer and only carried through export/restore.
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False, default="")
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(
        Enum(UserRole, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=UserRole.USER,
    )
    avatar_url = Column(String(500))
    area = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class Project(Base):
    """
    Project model scoping tickets.

    Private projects are visible only to their owner and to admins, so a
    private project always carries an owner.
    """

    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    visibility = Column(
        Enum(ProjectVisibility, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProjectVisibility.PUBLIC,
        index=True,
    )
    owner_user_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_user_id])
    tickets = relationship("Ticket", back_populates="project")

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Ticket(Base):
    """
    Ticket model.

    Two ticket-to-ticket edges: parent_ticket_id (hierarchy, acyclic and
    project-scoped) and blocked_by_ticket_id (gates resolved/closed).
    Tickets are never deleted.
    """

    __tablename__ = "tickets"

    id = Column(String(64), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(
        Enum(TicketStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TicketStatus.OPEN,
        index=True,
    )
    priority = Column(
        Enum(TicketPriority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TicketPriority.MEDIUM,
    )
    tags = Column(JSON, nullable=False, default=list)
    due_date = Column(Date, nullable=True)

    assignee_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    parent_ticket_id = Column(String(64), ForeignKey("tickets.id"), nullable=True, index=True)
    blocked_by_ticket_id = Column(String(64), ForeignKey("tickets.id"), nullable=True, index=True)
    project_id = Column(
        String(64),
        ForeignKey("projects.id"),
        nullable=False,
        default=DEFAULT_PROJECT_ID,
        index=True,
    )
    created_by = Column(String(64), ForeignKey("users.id"), nullable=False)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    project = relationship("Project", back_populates="tickets")
    assignee = relationship("User", foreign_keys=[assignee_id])
    creator = relationship("User", foreign_keys=[created_by])
    parent = relationship("Ticket", remote_side=[id], foreign_keys=[parent_ticket_id])
    blocker = relationship("Ticket", remote_side=[id], foreign_keys=[blocked_by_ticket_id])
    comments = relationship("Comment", back_populates="ticket", order_by="Comment.created_at")

    # Constraints
    __table_args__ = (
        CheckConstraint("parent_ticket_id IS NULL OR parent_ticket_id != id", name="no_self_parent"),
        CheckConstraint("blocked_by_ticket_id IS NULL OR blocked_by_ticket_id != id", name="no_self_block"),
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.id}: {self.status.value} - {self.title[:30]}>"


class Comment(Base):
    """Append-only comment on a ticket."""

    __tablename__ = "comments"

    id = Column(String(64), primary_key=True, default=new_id)
    ticket_id = Column(String(64), ForeignKey("tickets.id"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    ticket = relationship("Ticket", back_populates="comments")
    author = relationship("User")

    def __repr__(self) -> str:
        return f"<Comment {self.id} on {self.ticket_id}>"
