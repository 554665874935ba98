"""API routers for Ticketflow Core."""

from . import tickets, projects, users, snapshot, events

__all__ = ["tickets", "projects", "users", "snapshot", "events"]
