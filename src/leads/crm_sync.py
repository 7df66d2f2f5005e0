"""Mirror intake leads into the CRM contact list."""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from database.models import CRMContact, Lead

logger = logging.getLogger(__name__)

CRM_SOURCE_TAX_INTAKE = "tax_intake"


def sync_lead_to_crm(session: Session, lead: Lead) -> CRMContact:
    """Create or update the CRM contact for a lead, keyed by lowercase email."""
    email = lead.email.lower()
    contact = session.execute(
        select(CRMContact).where(CRMContact.email == email)
    ).scalars().first()

    created = contact is None
    if created:
        contact = CRMContact(
            email=email,
            contact_type="lead",
            stage="new",
            source=CRM_SOURCE_TAX_INTAKE,
        )
        session.add(contact)

    contact.lead_id = lead.id
    contact.first_name = lead.first_name
    contact.last_name = lead.last_name
    contact.phone = lead.phone
    contact.assigned_preparer_id = lead.assigned_preparer_id
    contact.last_contacted_at = datetime.utcnow()
    session.flush()

    logger.info(f"CRM contact {'created' if created else 'updated'} for lead {lead.id}")
    return contact
