"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from . import models
from .changes import FieldChange, blank_to_none
from .models import UserRole, ProjectVisibility, TicketStatus, TicketPriority


def _split_tags(value: Any) -> Any:
    """Accept tags as a list or a comma-separated string."""
    if value is None:
        return value
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(tag).strip() for tag in value if str(tag).strip()]
    return value


class PartialUpdate(BaseModel):
    """Base for PATCH payloads: omitted fields stay, null or blank fields clear."""

    def change(self, field: str) -> FieldChange:
        """
        Resolve one field of the payload to a tri-state change.

        Args:
            field: Field name

        Returns:
            UNCHANGED if the field was omitted, CLEARED if it was sent as
            null or a blank string, SET otherwise
        """
        if field not in self.model_fields_set:
            return FieldChange.unchanged()
        value = blank_to_none(getattr(self, field))
        if value is None:
            return FieldChange.cleared()
        return FieldChange.set_to(value)


# ============================================================================
# User Schemas
# ============================================================================

class UserCreate(BaseModel):
    """Schema for creating a user (admin action)."""

    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    role: UserRole = UserRole.USER
    password_hash: str = Field(..., min_length=1, max_length=255, description="Credential material from the auth layer")
    avatar_url: Optional[str] = Field(None, max_length=500)
    area: Optional[str] = Field(None, max_length=255)


class UserUpdate(PartialUpdate):
    """Schema for profile edits. Role is kept as a string so unknown roles reach the role check."""

    name: Optional[str] = Field(None, max_length=255)
    role: Optional[str] = None
    avatar_url: Optional[str] = Field(None, max_length=500)
    area: Optional[str] = Field(None, max_length=255)


class UserResponse(BaseModel):
    """Schema for user responses (never exposes credentials)."""

    id: str
    email: str
    name: str
    role: UserRole
    avatar_url: Optional[str] = None
    area: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectCreate(BaseModel):
    """Schema for creating a new project."""

    name: str = Field(..., max_length=255)
    description: str = ""
    visibility: ProjectVisibility = ProjectVisibility.PUBLIC
    owner_user_id: Optional[str] = Field(None, description="Defaults to the creator for private projects")


class ProjectUpdate(PartialUpdate):
    """Schema for updating a project."""

    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    visibility: Optional[ProjectVisibility] = None
    owner_user_id: Optional[str] = None


class ProjectResponse(BaseModel):
    """Schema for project responses."""

    id: str
    name: str
    description: str
    visibility: ProjectVisibility
    owner_user_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectListResponse(BaseModel):
    """Schema for project list."""

    items: list[ProjectResponse]
    total: int


# ============================================================================
# Ticket Schemas
# ============================================================================

class TicketCreate(BaseModel):
    """
    Schema for creating a ticket.

    Status and priority stay plain strings here so that the relationship
    validator owns enum checking and reports it like every other rejection.
    """

    title: str = ""
    description: str = ""
    status: str = TicketStatus.OPEN.value
    priority: str = TicketPriority.MEDIUM.value
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None
    parent_ticket_id: Optional[str] = None
    blocked_by_ticket_id: Optional[str] = None
    project_id: Optional[str] = Field(None, description="Defaults to the parent's project, then the default project")

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> Any:
        return _split_tags(value) if value is not None else []

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, value: Any) -> Any:
        return blank_to_none(value)


class TicketUpdate(PartialUpdate):
    """
    Schema for a partial ticket update.

    Omitting a field leaves it unchanged; sending null or "" clears it.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    tags: Optional[list[str]] = None
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None
    parent_ticket_id: Optional[str] = None
    blocked_by_ticket_id: Optional[str] = None
    project_id: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> Any:
        return _split_tags(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, value: Any) -> Any:
        return blank_to_none(value)


class TicketResponse(BaseModel):
    """Joined ticket view with denormalized display fields."""

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    created_by: str
    created_by_name: Optional[str] = None
    project_id: str
    project_name: Optional[str] = None
    parent_ticket_id: Optional[str] = None
    parent_title: Optional[str] = None
    parent_status: Optional[TicketStatus] = None
    blocked_by_ticket_id: Optional[str] = None
    blocked_by_title: Optional[str] = None
    blocked_by_status: Optional[TicketStatus] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def from_ticket(cls, ticket: models.Ticket) -> "TicketResponse":
        """Build the joined view from a loaded ticket and its relationships."""
        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            status=ticket.status,
            priority=ticket.priority,
            tags=list(ticket.tags or []),
            due_date=ticket.due_date,
            assignee_id=ticket.assignee_id,
            assignee_name=ticket.assignee.name if ticket.assignee else None,
            created_by=ticket.created_by,
            created_by_name=ticket.creator.name if ticket.creator else None,
            project_id=ticket.project_id,
            project_name=ticket.project.name if ticket.project else None,
            parent_ticket_id=ticket.parent_ticket_id,
            parent_title=ticket.parent.title if ticket.parent else None,
            parent_status=ticket.parent.status if ticket.parent else None,
            blocked_by_ticket_id=ticket.blocked_by_ticket_id,
            blocked_by_title=ticket.blocker.title if ticket.blocker else None,
            blocked_by_status=ticket.blocker.status if ticket.blocker else None,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class TicketListResponse(BaseModel):
    """Schema for ticket list."""

    items: list[TicketResponse]
    total: int


# ============================================================================
# Comment Schemas
# ============================================================================

class CommentCreate(BaseModel):
    """Schema for adding a comment."""

    body: str = ""


class CommentResponse(BaseModel):
    """Schema for comment responses."""

    id: str
    ticket_id: str
    user_id: str
    author_name: Optional[str] = None
    body: str
    created_at: datetime

    @classmethod
    def from_comment(cls, comment: models.Comment) -> "CommentResponse":
        return cls(
            id=comment.id,
            ticket_id=comment.ticket_id,
            user_id=comment.user_id,
            author_name=comment.author.name if comment.author else None,
            body=comment.body,
            created_at=comment.created_at,
        )


class TicketDetailResponse(BaseModel):
    """Ticket view together with its comments."""

    ticket: TicketResponse
    comments: list[CommentResponse]


# ============================================================================
# Snapshot Schemas
# ============================================================================

class SnapshotUser(BaseModel):
    """User row in a snapshot. Role defaults to 'user' when absent."""

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    name: str = ""
    password_hash: str = Field(..., min_length=1)
    role: UserRole = UserRole.USER
    avatar_url: Optional[str] = None
    area: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value: Any) -> Any:
        return blank_to_none(value) or UserRole.USER


class SnapshotProject(BaseModel):
    """Project row in a snapshot."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    visibility: ProjectVisibility = ProjectVisibility.PUBLIC
    owner_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @field_validator("owner_user_id", mode="before")
    @classmethod
    def _owner(cls, value: Any) -> Any:
        return blank_to_none(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> Any:
        return "" if value is None else value


class SnapshotTicket(BaseModel):
    """Ticket row in a snapshot. Creator and project are mandatory."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[date] = None
    assignee_id: Optional[str] = None
    parent_ticket_id: Optional[str] = None
    blocked_by_ticket_id: Optional[str] = None
    project_id: str = Field(..., min_length=1)
    created_by: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @field_validator("assignee_id", "parent_ticket_id", "blocked_by_ticket_id", "due_date", mode="before")
    @classmethod
    def _optional_refs(cls, value: Any) -> Any:
        return blank_to_none(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> Any:
        return _split_tags(value) if value is not None else []

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> Any:
        return "" if value is None else value


class SnapshotComment(BaseModel):
    """Comment row in a snapshot."""

    id: str = Field(..., min_length=1)
    ticket_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Snapshot(BaseModel):
    """Full dataset export, the input and output of backup/restore."""

    users: list[SnapshotUser] = Field(default_factory=list)
    projects: list[SnapshotProject] = Field(default_factory=list)
    tickets: list[SnapshotTicket] = Field(default_factory=list)
    comments: list[SnapshotComment] = Field(default_factory=list)
    exported_at: Optional[datetime] = None


class RestoreResponse(BaseModel):
    """Counts of rows written by a successful restore."""

    ok: bool = True
    users: int
    projects: int
    tickets: int
    comments: int
