"""
Support Ticket Service

Business logic for support tickets backed by the database.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from database.models import (
    ClientPreparer,
    SupportTicket,
    TicketMessage,
    TicketPriority,
    TicketStatus,
)
from .ticket_models import (
    CLOSED_STATUSES,
    calculate_sla,
    format_ticket_number,
    is_resolution_breached,
    is_response_breached,
    time_to_first_response,
)

logger = logging.getLogger(__name__)


class TicketError(Exception):
    pass


class TicketNotFoundError(TicketError):
    pass


@dataclass
class TicketFilters:
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    assigned_to_id: Optional[UUID] = None
    creator_id: Optional[UUID] = None
    tags: List[str] = field(default_factory=list)
    search: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    include_closed: bool = True


class TicketService:
    """
    Service for managing support tickets.

    Provides:
    - Ticket creation with preparer auto-assignment and SLA deadlines
    - Status changes and assignment
    - Conversation messages (internal notes hidden from clients)
    - Summary statistics
    """

    # =========================================================================
    # TICKET CRUD
    # =========================================================================

    def _next_ticket_number(self, session: Session) -> str:
        sequence = session.execute(select(func.count(SupportTicket.id))).scalar_one() + 1
        number = format_ticket_number(sequence)
        # Deleted tickets leave gaps, so step past any number already taken
        while session.execute(
            select(SupportTicket.id).where(SupportTicket.ticket_number == number)
        ).first() is not None:
            sequence += 1
            number = format_ticket_number(sequence)
        return number

    def _active_preparer_id(self, session: Session, client_id: UUID) -> Optional[UUID]:
        return session.execute(
            select(ClientPreparer.preparer_id)
            .where(ClientPreparer.client_id == client_id, ClientPreparer.is_active.is_(True))
            .order_by(ClientPreparer.assigned_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def create_ticket(
        self,
        session: Session,
        creator_id: UUID,
        title: str,
        description: str,
        priority: TicketPriority = TicketPriority.NORMAL,
        tags: Optional[List[str]] = None,
        custom_fields: Optional[Dict[str, Any]] = None,
    ) -> SupportTicket:
        """
        Create a new support ticket.

        The ticket is assigned to the creator's active tax preparer when
        there is one.
        """
        now = datetime.utcnow()
        response_due, resolution_due = calculate_sla(priority, now)

        ticket = SupportTicket(
            ticket_number=self._next_ticket_number(session),
            title=title,
            description=description,
            status=TicketStatus.OPEN,
            priority=priority,
            tags=tags or [],
            custom_fields=custom_fields or {},
            creator_id=creator_id,
            assigned_to_id=self._active_preparer_id(session, creator_id),
            response_due_at=response_due,
            resolution_due_at=resolution_due,
            last_activity_at=now,
            created_at=now,
        )
        session.add(ticket)
        session.flush()

        logger.info(
            f"Created ticket: {ticket.ticket_number} - {ticket.title} "
            f"(assigned_to={ticket.assigned_to_id})"
        )
        return ticket

    def get_ticket(self, session: Session, ticket_id: UUID) -> SupportTicket:
        ticket = session.get(SupportTicket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket not found: {ticket_id}")
        return ticket

    def get_ticket_by_number(self, session: Session, ticket_number: str) -> Optional[SupportTicket]:
        return session.execute(
            select(SupportTicket).where(SupportTicket.ticket_number == ticket_number)
        ).scalars().first()

    def update_ticket(
        self,
        session: Session,
        ticket_id: UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        tags: Optional[List[str]] = None,
        custom_fields: Optional[Dict[str, Any]] = None,
    ) -> SupportTicket:
        """Update ticket details; status changes stamp or clear lifecycle times."""
        ticket = self.get_ticket(session, ticket_id)
        now = datetime.utcnow()

        if title is not None:
            ticket.title = title
        if description is not None:
            ticket.description = description
        if tags is not None:
            ticket.tags = tags
        if custom_fields is not None:
            ticket.custom_fields = custom_fields
        if priority is not None and priority != ticket.priority:
            ticket.priority = priority
            # Recalculate SLA for priority change
            ticket.response_due_at, ticket.resolution_due_at = calculate_sla(priority, ticket.created_at)
        if status is not None and status != ticket.status:
            self._apply_status(ticket, status, now)

        ticket.last_activity_at = now
        session.flush()
        logger.info(f"Updated ticket: {ticket.ticket_number}")
        return ticket

    def _apply_status(self, ticket: SupportTicket, status: TicketStatus, now: datetime) -> None:
        previous = ticket.status
        ticket.status = status
        if status == TicketStatus.RESOLVED:
            ticket.resolved_at = now
        elif status == TicketStatus.CLOSED:
            ticket.closed_at = now
            ticket.resolved_at = ticket.resolved_at or now
        elif previous in CLOSED_STATUSES:
            # Reopened
            ticket.resolved_at = None
            ticket.closed_at = None
        logger.info(f"Ticket {ticket.ticket_number}: {previous.value} -> {status.value}")

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    def assign_ticket(self, session: Session, ticket_id: UUID, preparer_id: Optional[UUID]) -> SupportTicket:
        ticket = self.get_ticket(session, ticket_id)
        ticket.assigned_to_id = preparer_id
        ticket.last_activity_at = datetime.utcnow()
        session.flush()
        logger.info(f"Assigned ticket {ticket.ticket_number} to {preparer_id}")
        return ticket

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def add_message(
        self,
        session: Session,
        ticket_id: UUID,
        sender_id: UUID,
        content: str,
        is_internal: bool = False,
        is_ai_generated: bool = False,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> TicketMessage:
        """
        Add a message to the ticket.

        - First public reply from anyone but the creator sets first_response_at
        - Creator reply on WAITING_ON_CLIENT moves the ticket to IN_PROGRESS
        - Staff public reply on OPEN/IN_PROGRESS moves it to WAITING_ON_CLIENT
        """
        ticket = self.get_ticket(session, ticket_id)
        now = datetime.utcnow()

        message = TicketMessage(
            ticket_id=ticket.id,
            sender_id=sender_id,
            content=content,
            is_internal=is_internal,
            is_ai_generated=is_ai_generated,
            attachments=attachments or [],
            created_at=now,
        )
        session.add(message)

        from_creator = sender_id == ticket.creator_id
        if from_creator:
            if ticket.status == TicketStatus.WAITING_ON_CLIENT:
                ticket.status = TicketStatus.IN_PROGRESS
        elif not is_internal:
            if ticket.first_response_at is None:
                ticket.first_response_at = now
            if ticket.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS):
                ticket.status = TicketStatus.WAITING_ON_CLIENT

        ticket.last_activity_at = now
        session.flush()
        return message

    def get_messages(
        self, session: Session, ticket_id: UUID, include_internal: bool = False
    ) -> List[TicketMessage]:
        stmt = select(TicketMessage).where(TicketMessage.ticket_id == ticket_id)
        if not include_internal:
            stmt = stmt.where(TicketMessage.is_internal.is_(False))
        return session.execute(stmt.order_by(TicketMessage.created_at)).scalars().all()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_tickets(
        self, session: Session, filters: Optional[TicketFilters] = None,
        limit: int = 100, offset: int = 0,
    ) -> List[SupportTicket]:
        """Get tickets with optional filters, most recent activity first."""
        filters = filters or TicketFilters()
        stmt = select(SupportTicket)

        if filters.status is not None:
            stmt = stmt.where(SupportTicket.status == filters.status)
        elif not filters.include_closed:
            stmt = stmt.where(SupportTicket.status != TicketStatus.CLOSED)
        if filters.priority is not None:
            stmt = stmt.where(SupportTicket.priority == filters.priority)
        if filters.assigned_to_id is not None:
            stmt = stmt.where(SupportTicket.assigned_to_id == filters.assigned_to_id)
        if filters.creator_id is not None:
            stmt = stmt.where(SupportTicket.creator_id == filters.creator_id)
        if filters.created_after is not None:
            stmt = stmt.where(SupportTicket.created_at >= filters.created_after)
        if filters.created_before is not None:
            stmt = stmt.where(SupportTicket.created_at <= filters.created_before)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(SupportTicket.title).like(pattern),
                func.lower(SupportTicket.description).like(pattern),
                func.lower(SupportTicket.ticket_number).like(pattern),
            ))

        stmt = stmt.order_by(SupportTicket.last_activity_at.desc())
        tickets = session.execute(stmt).scalars().all()

        if filters.tags:
            wanted = set(filters.tags)
            tickets = [t for t in tickets if wanted.intersection(t.tags or [])]

        return tickets[offset:offset + limit]

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    def get_ticket_stats(
        self, session: Session, assigned_to_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Summary statistics, optionally scoped to one preparer."""
        tickets = self.list_tickets(
            session, TicketFilters(assigned_to_id=assigned_to_id), limit=100000
        )

        by_status = defaultdict(int)
        by_priority = defaultdict(int)
        breached = 0
        response_hours = []

        for ticket in tickets:
            by_status[ticket.status.value] += 1
            by_priority[ticket.priority.value] += 1
            if is_response_breached(ticket, now) or is_resolution_breached(ticket, now):
                breached += 1
            hours = time_to_first_response(ticket)
            if hours is not None:
                response_hours.append(hours)

        return {
            "total": len(tickets),
            "open": len([t for t in tickets if t.status not in CLOSED_STATUSES]),
            "unassigned": len([t for t in tickets if t.assigned_to_id is None]),
            "sla_breached": breached,
            "by_status": dict(by_status),
            "by_priority": dict(by_priority),
            "avg_first_response_hours": (
                round(sum(response_hours) / len(response_hours), 2) if response_hours else None
            ),
        }


# Global service instance
ticket_service = TicketService()
