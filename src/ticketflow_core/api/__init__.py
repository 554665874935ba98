"""HTTP surface for Ticketflow Core."""
