"""
Support Tickets API.

Provides endpoints for:
- Creating and managing support tickets
- Adding messages to tickets (internal notes are staff only)
- Ticket statistics

Access: creators see their own tickets, preparers see tickets assigned
to them, admins see everything.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from database.connection import get_session
from database.models import Profile, SupportTicket, TicketPriority, TicketStatus
from integrations.email_service import EmailService
from support.ticket_models import message_to_dict, ticket_to_dict
from support.ticket_service import TicketFilters, TicketNotFoundError, ticket_service
from web.auth import UserContext, get_current_user
from web.dependencies import get_email
from web.helpers.error_responses import ErrorCode, raise_api_error
from web.helpers.pagination import paginate, pagination_params

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/support",
    tags=["Support Tickets"],
    responses={404: {"description": "Ticket not found"}},
)

# =============================================================================
# REQUEST MODELS
# =============================================================================


class TicketCreate(BaseModel):
    """Request to create a new support ticket."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    priority: TicketPriority = TicketPriority.NORMAL
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class TicketUpdate(BaseModel):
    """Request to update a ticket. Staff only except for closing."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    tags: Optional[List[str]] = None
    assigned_to_id: Optional[UUID] = None


class MessageCreate(BaseModel):
    """Request to add a message to a ticket."""
    content: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False


# =============================================================================
# ACCESS HELPERS
# =============================================================================

def _is_staff(user: UserContext) -> bool:
    return user.is_admin or user.is_preparer


def _get_ticket_or_404(session: Session, ticket_id: str) -> SupportTicket:
    try:
        return ticket_service.get_ticket(session, UUID(ticket_id))
    except ValueError:
        ticket = ticket_service.get_ticket_by_number(session, ticket_id)
    except TicketNotFoundError:
        ticket = None

    if ticket is None:
        raise_api_error(ErrorCode.NOT_FOUND, "Ticket not found")
    return ticket


def _enforce_ticket_scope(user: UserContext, ticket: SupportTicket) -> None:
    if user.is_admin:
        return
    if ticket.creator_id == user.profile_id:
        return
    if user.is_preparer and ticket.assigned_to_id == user.profile_id:
        return
    raise_api_error(ErrorCode.FORBIDDEN, "Access denied to this ticket")


def _notify_email(session: Session, ticket: SupportTicket) -> Optional[str]:
    if ticket.assigned_to_id is None:
        return None
    preparer = session.get(Profile, ticket.assigned_to_id)
    return preparer.email if preparer else None


# =============================================================================
# TICKETS
# =============================================================================

@router.post("/tickets", status_code=201)
def create_ticket(
    body: TicketCreate,
    background_tasks: BackgroundTasks,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    email_service: EmailService = Depends(get_email),
):
    ticket = ticket_service.create_ticket(
        session,
        creator_id=user.profile_id,
        title=body.title,
        description=body.description,
        priority=body.priority,
        tags=body.tags,
        custom_fields=body.custom_fields,
    )
    background_tasks.add_task(
        email_service.send_ticket_notification,
        ticket.ticket_number, ticket.title, "created", _notify_email(session, ticket),
    )
    return {"success": True, "ticket": ticket_to_dict(ticket)}


@router.get("/tickets")
def list_tickets(
    status: Optional[TicketStatus] = Query(None),
    priority: Optional[TicketPriority] = Query(None),
    tag: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    pagination: dict = Depends(pagination_params()),
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    filters = TicketFilters(
        status=status,
        priority=priority,
        tags=[tag] if tag else [],
        search=search,
        created_after=created_after,
        created_before=created_before,
    )
    if user.is_preparer:
        filters.assigned_to_id = user.profile_id
    elif not user.is_admin:
        filters.creator_id = user.profile_id

    tickets = ticket_service.list_tickets(session, filters, **pagination)
    return paginate(
        [ticket_to_dict(t) for t in tickets],
        pagination["limit"], pagination["offset"], data_key="tickets",
    )


@router.get("/tickets/{ticket_id}")
def get_ticket(
    ticket_id: str,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    ticket = _get_ticket_or_404(session, ticket_id)
    _enforce_ticket_scope(user, ticket)
    return {
        "success": True,
        "ticket": ticket_to_dict(ticket, include_internal=_is_staff(user), include_messages=True),
    }


@router.patch("/tickets/{ticket_id}")
def update_ticket(
    ticket_id: str,
    body: TicketUpdate,
    background_tasks: BackgroundTasks,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    email_service: EmailService = Depends(get_email),
):
    ticket = _get_ticket_or_404(session, ticket_id)
    _enforce_ticket_scope(user, ticket)

    changes = body.model_dump(exclude_unset=True)
    if not _is_staff(user):
        # Clients may only close their own ticket
        if set(changes) - {"status"} or changes.get("status") not in (None, TicketStatus.CLOSED):
            raise_api_error(ErrorCode.FORBIDDEN, "Only staff can change ticket details")

    if "assigned_to_id" in changes:
        if not user.is_admin:
            raise_api_error(ErrorCode.FORBIDDEN, "Only admins can reassign tickets")
        ticket = ticket_service.assign_ticket(session, ticket.id, changes.pop("assigned_to_id"))

    previous_status = ticket.status
    ticket = ticket_service.update_ticket(session, ticket.id, **changes)

    if ticket.status != previous_status:
        background_tasks.add_task(
            email_service.send_ticket_notification,
            ticket.ticket_number, ticket.title, f"status changed to {ticket.status.value}",
            _notify_email(session, ticket),
        )
    return {"success": True, "ticket": ticket_to_dict(ticket, include_internal=_is_staff(user))}


# =============================================================================
# MESSAGES
# =============================================================================

@router.post("/tickets/{ticket_id}/messages", status_code=201)
def add_message(
    ticket_id: str,
    body: MessageCreate,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    ticket = _get_ticket_or_404(session, ticket_id)
    _enforce_ticket_scope(user, ticket)

    if body.is_internal and not _is_staff(user):
        raise_api_error(ErrorCode.FORBIDDEN, "Only staff can add internal notes")

    message = ticket_service.add_message(
        session,
        ticket.id,
        sender_id=user.profile_id,
        content=body.content,
        is_internal=body.is_internal,
    )
    return {"success": True, "message": message_to_dict(message), "ticket_status": ticket.status.value}


@router.get("/tickets/{ticket_id}/messages")
def get_messages(
    ticket_id: str,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    ticket = _get_ticket_or_404(session, ticket_id)
    _enforce_ticket_scope(user, ticket)
    messages = ticket_service.get_messages(session, ticket.id, include_internal=_is_staff(user))
    return {"success": True, "messages": [message_to_dict(m) for m in messages]}


# =============================================================================
# STATS
# =============================================================================

@router.get("/stats")
def ticket_stats(
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if user.is_admin:
        return ticket_service.get_ticket_stats(session)
    if user.is_preparer:
        return ticket_service.get_ticket_stats(session, assigned_to_id=user.profile_id)
    raise_api_error(ErrorCode.FORBIDDEN)
