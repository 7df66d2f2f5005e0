"""Lead intake, routing and CRM sync."""

from .intake_service import (
    LeadIntakeRequest,
    LeadIntakeResult,
    LeadNotFoundError,
    list_leads,
    submit_intake_lead,
    update_lead_status,
)

__all__ = [
    "LeadIntakeRequest",
    "LeadIntakeResult",
    "LeadNotFoundError",
    "list_leads",
    "submit_intake_lead",
    "update_lead_status",
]
