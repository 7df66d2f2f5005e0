"""Support tickets: SLA rules, lifecycle and conversation messages."""

from .ticket_service import (
    TicketFilters,
    TicketNotFoundError,
    TicketService,
    ticket_service,
)

__all__ = [
    "TicketFilters",
    "TicketNotFoundError",
    "TicketService",
    "ticket_service",
]
