"""
Referral tracking: tracking codes, marketing links, lead attribution and
commission accounting.
"""

from .tracking_codes import (
    TrackingCodeData,
    TrackingCodeError,
    assign_tracking_code,
    customize_tracking_code,
    finalize_tracking_code,
    find_profile_by_code,
    get_tracking_code,
    validate_custom_tracking_code,
)
from .attribution import (
    AttributionResult,
    get_attribution,
    get_commission_rate,
    save_lead_attribution,
)
from .commissions import (
    CommissionError,
    PayoutError,
    calculate_commission,
    update_commission_status,
)

__all__ = [
    "TrackingCodeData",
    "TrackingCodeError",
    "assign_tracking_code",
    "customize_tracking_code",
    "finalize_tracking_code",
    "find_profile_by_code",
    "get_tracking_code",
    "validate_custom_tracking_code",
    "AttributionResult",
    "get_attribution",
    "get_commission_rate",
    "save_lead_attribution",
    "CommissionError",
    "PayoutError",
    "calculate_commission",
    "update_commission_status",
]
