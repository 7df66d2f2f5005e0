"""
FastAPI Routers - Modular endpoint organization.

Router modules:
- health: Health checks
- leads_api: Tax intake and the lead pipeline
- referrals_api: Short links, tracking codes, attribution stats
- earnings_api: Commissions and payouts
- support_api: Support tickets
- restrictions_api: Page access rules
- content_api: City landing page campaigns
- webhooks_api: Payment webhooks
"""

from .content_api import router as content_router
from .earnings_api import router as earnings_router
from .health import router as health_router
from .leads_api import router as leads_router
from .referrals_api import router as referrals_router
from .restrictions_api import router as restrictions_router
from .support_api import router as support_router
from .webhooks_api import router as webhooks_router

__all__ = [
    "content_router",
    "earnings_router",
    "health_router",
    "leads_router",
    "referrals_router",
    "restrictions_router",
    "support_router",
    "webhooks_router",
]
