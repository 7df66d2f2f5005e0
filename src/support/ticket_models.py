"""
Support Ticket Models

SLA tables and serialization helpers for support tickets. The ORM
records live in database.models.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from database.models import SupportTicket, TicketMessage, TicketPriority, TicketStatus

# SLA definitions (in hours)
SLA_RESPONSE_TIMES = {
    TicketPriority.URGENT: 4,
    TicketPriority.HIGH: 8,
    TicketPriority.NORMAL: 24,
    TicketPriority.LOW: 48,
}

SLA_RESOLUTION_TIMES = {
    TicketPriority.URGENT: 24,
    TicketPriority.HIGH: 48,
    TicketPriority.NORMAL: 72,
    TicketPriority.LOW: 120,
}

CLOSED_STATUSES = {TicketStatus.RESOLVED, TicketStatus.CLOSED}

TICKET_NUMBER_PREFIX = "TGP-TICKET-"


def format_ticket_number(sequence: int) -> str:
    return f"{TICKET_NUMBER_PREFIX}{sequence:05d}"


def calculate_sla(priority: TicketPriority, created_at: datetime) -> Tuple[datetime, datetime]:
    """Response and resolution deadlines for a ticket."""
    response_hours = SLA_RESPONSE_TIMES.get(priority, 24)
    resolution_hours = SLA_RESOLUTION_TIMES.get(priority, 72)
    return (
        created_at + timedelta(hours=response_hours),
        created_at + timedelta(hours=resolution_hours),
    )


def is_response_breached(ticket: SupportTicket, now: Optional[datetime] = None) -> bool:
    """First response came late, or has not come and the deadline passed."""
    if not ticket.response_due_at:
        return False
    if ticket.first_response_at:
        return ticket.first_response_at > ticket.response_due_at
    return (now or datetime.utcnow()) > ticket.response_due_at


def is_resolution_breached(ticket: SupportTicket, now: Optional[datetime] = None) -> bool:
    if not ticket.resolution_due_at:
        return False
    if ticket.resolved_at:
        return ticket.resolved_at > ticket.resolution_due_at
    if ticket.status in CLOSED_STATUSES:
        return False
    return (now or datetime.utcnow()) > ticket.resolution_due_at


def time_to_first_response(ticket: SupportTicket) -> Optional[float]:
    """Hours from creation to first response."""
    if not ticket.first_response_at:
        return None
    return (ticket.first_response_at - ticket.created_at).total_seconds() / 3600


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def message_to_dict(message: TicketMessage) -> Dict[str, Any]:
    return {
        "id": str(message.id),
        "ticket_id": str(message.ticket_id),
        "sender_id": str(message.sender_id) if message.sender_id else None,
        "content": message.content,
        "is_internal": message.is_internal,
        "is_ai_generated": message.is_ai_generated,
        "attachments": message.attachments or [],
        "created_at": _iso(message.created_at),
    }


def ticket_to_dict(ticket: SupportTicket, include_internal: bool = False,
                   include_messages: bool = False) -> Dict[str, Any]:
    """Convert to dictionary for API response."""
    result = {
        "id": str(ticket.id),
        "ticket_number": ticket.ticket_number,
        "title": ticket.title,
        "description": ticket.description,
        "status": ticket.status.value,
        "priority": ticket.priority.value,
        "tags": ticket.tags or [],
        "custom_fields": ticket.custom_fields or {},
        "creator_id": str(ticket.creator_id),
        "assigned_to_id": str(ticket.assigned_to_id) if ticket.assigned_to_id else None,
        "response_due_at": _iso(ticket.response_due_at),
        "resolution_due_at": _iso(ticket.resolution_due_at),
        "first_response_at": _iso(ticket.first_response_at),
        "resolved_at": _iso(ticket.resolved_at),
        "closed_at": _iso(ticket.closed_at),
        "last_activity_at": _iso(ticket.last_activity_at),
        "created_at": _iso(ticket.created_at),
        "sla_response_breached": is_response_breached(ticket),
        "sla_resolution_breached": is_resolution_breached(ticket),
    }
    if include_messages:
        result["messages"] = [
            message_to_dict(m) for m in ticket.messages
            if include_internal or not m.is_internal
        ]
    return result
