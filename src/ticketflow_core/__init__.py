"""Ticketflow Core: tickets, projects and comments with a consistent relationship graph."""

__version__ = "1.0.0"
