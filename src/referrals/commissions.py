"""
Commission Service

Commission lifecycle for referred leads:

    lead CONVERTED -> PENDING -> (hold period) -> APPROVED -> PAID
    lead leaves CONVERTED while PENDING -> CANCELLED

The amount always comes from the rate locked on the lead at attribution
time. Approved commissions fund payout requests.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.models import (
    Commission,
    CommissionStatus,
    Lead,
    LeadStatus,
    Payout,
    PayoutStatus,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Payouts in these states count against the approved balance
_RESERVED_PAYOUT_STATUSES = (
    PayoutStatus.REQUESTED,
    PayoutStatus.PROCESSING,
    PayoutStatus.COMPLETED,
)


class CommissionError(Exception):
    """Raised for invalid commission state changes."""
    pass


class PayoutError(Exception):
    """Raised when a payout request cannot be honoured."""
    pass


@dataclass
class EarningsSummary:
    total_earnings: Decimal = ZERO
    pending_earnings: Decimal = ZERO
    approved_earnings: Decimal = ZERO
    paid_earnings: Decimal = ZERO
    available_balance: Decimal = ZERO
    total_leads: int = 0
    converted_leads: int = 0
    average_commission: Decimal = ZERO
    this_month_earnings: Decimal = ZERO
    last_month_earnings: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: float(value) if isinstance(value, Decimal) else value
            for key, value in asdict(self).items()
        }


def _month_start(moment: datetime, months_back: int = 0) -> datetime:
    year, month = moment.year, moment.month - months_back
    while month < 1:
        month += 12
        year -= 1
    return datetime(year, month, 1)


# =============================================================================
# CALCULATION
# =============================================================================

def calculate_commission(session: Session, lead_id: UUID) -> Optional[Commission]:
    """
    Create the commission for a converted lead.

    Idempotent: an existing commission for the lead is returned unchanged.
    Returns None when the lead is not eligible (not converted, no referrer
    or a zero locked rate).
    """
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise CommissionError(f"Lead not found: {lead_id}")

    if lead.status != LeadStatus.CONVERTED:
        logger.debug(f"Lead {lead_id} not converted; no commission")
        return None

    if not lead.referrer_username or not lead.commission_rate:
        logger.debug(f"Lead {lead_id} has no referrer or commission rate")
        return None

    existing = session.execute(
        select(Commission).where(Commission.lead_id == lead.id)
    ).scalars().first()
    if existing is not None:
        return existing

    commission = Commission(
        lead_id=lead.id,
        referrer_username=lead.referrer_username,
        referrer_type=lead.referrer_type,
        amount=Decimal(lead.commission_rate),
        status=CommissionStatus.PENDING,
        lead_status=lead.status,
        notes=(
            f"Commission for {lead.full_name} (locked rate "
            f"${Decimal(lead.commission_rate):.2f} at "
            f"{lead.commission_rate_locked_at.isoformat() if lead.commission_rate_locked_at else 'conversion'})"
        ),
    )
    session.add(commission)
    session.flush()

    logger.info(
        f"Commission created: lead={lead_id} referrer={lead.referrer_username} amount={commission.amount}"
    )
    return commission


def update_commission_status(
    session: Session, lead_id: UUID, new_lead_status: LeadStatus
) -> Optional[Commission]:
    """
    Mirror a lead status change onto its commission.

    Creates the commission on conversion, cancels a pending one when the
    lead leaves CONVERTED, otherwise only records the new lead status.
    """
    existing = session.execute(
        select(Commission).where(Commission.lead_id == lead_id)
    ).scalars().first()

    if existing is None:
        if new_lead_status == LeadStatus.CONVERTED:
            return calculate_commission(session, lead_id)
        return None

    existing.lead_status = new_lead_status
    if (
        new_lead_status != LeadStatus.CONVERTED
        and existing.status == CommissionStatus.PENDING
    ):
        existing.status = CommissionStatus.CANCELLED
        existing.notes = f"Commission cancelled due to lead status change to {new_lead_status.value}"
        logger.info(f"Commission {existing.id} cancelled: lead {lead_id} moved to {new_lead_status.value}")

    session.flush()
    return existing


def auto_approve_commissions(session: Session, now: Optional[datetime] = None) -> int:
    """
    Approve pending commissions whose lead has stayed converted for the hold period.

    Returns:
        Number of commissions approved.
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=get_settings().referral.auto_approve_days)

    commissions = session.execute(
        select(Commission)
        .join(Lead, Commission.lead_id == Lead.id)
        .where(
            Commission.status == CommissionStatus.PENDING,
            Lead.status == LeadStatus.CONVERTED,
            Lead.updated_at <= cutoff,
        )
    ).scalars().all()

    for commission in commissions:
        commission.status = CommissionStatus.APPROVED
        commission.approved_at = now

    session.flush()
    if commissions:
        logger.info(f"Auto-approved {len(commissions)} commissions")
    return len(commissions)


def mark_commission_paid(session: Session, commission_id: UUID) -> Commission:
    """Admin action: settle an approved commission."""
    commission = session.get(Commission, commission_id)
    if commission is None:
        raise CommissionError(f"Commission not found: {commission_id}")
    if commission.status != CommissionStatus.APPROVED:
        raise CommissionError(
            f"Only approved commissions can be paid (status: {commission.status.value})"
        )
    commission.status = CommissionStatus.PAID
    commission.paid_at = datetime.utcnow()
    session.flush()
    logger.info(f"Commission {commission_id} marked paid")
    return commission


# =============================================================================
# EARNINGS
# =============================================================================

def _reserved_payouts(session: Session, username: str) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(Payout.amount), 0)).where(
            Payout.referrer_username == username,
            Payout.status.in_(_RESERVED_PAYOUT_STATUSES),
        )
    ).scalar_one()
    return Decimal(str(total))


def get_earnings_summary(
    session: Session, username: str, now: Optional[datetime] = None
) -> EarningsSummary:
    """Earnings totals for a referrer. Cancelled commissions are excluded."""
    now = now or datetime.utcnow()
    commissions = session.execute(
        select(Commission).where(
            Commission.referrer_username == username,
            Commission.status != CommissionStatus.CANCELLED,
        )
    ).scalars().all()

    lead_rows = session.execute(
        select(Lead.status, func.count(Lead.id))
        .where(Lead.referrer_username == username)
        .group_by(Lead.status)
    ).all()
    lead_counts = {status: count for status, count in lead_rows}

    def total(items) -> Decimal:
        return sum((Decimal(c.amount) for c in items), ZERO)

    by_status = {
        status: total(c for c in commissions if c.status == status)
        for status in (CommissionStatus.PENDING, CommissionStatus.APPROVED, CommissionStatus.PAID)
    }
    total_earnings = total(commissions)

    this_month_start = _month_start(now)
    last_month_start = _month_start(now, 1)

    summary = EarningsSummary(
        total_earnings=total_earnings,
        pending_earnings=by_status[CommissionStatus.PENDING],
        approved_earnings=by_status[CommissionStatus.APPROVED],
        paid_earnings=by_status[CommissionStatus.PAID],
        total_leads=sum(lead_counts.values()),
        converted_leads=lead_counts.get(LeadStatus.CONVERTED, 0),
        average_commission=(
            (total_earnings / len(commissions)).quantize(Decimal("0.01")) if commissions else ZERO
        ),
        this_month_earnings=total(c for c in commissions if c.created_at >= this_month_start),
        last_month_earnings=total(
            c for c in commissions if last_month_start <= c.created_at < this_month_start
        ),
    )
    # Paid commissions were settled outside the payout flow and never fund a payout
    summary.available_balance = max(
        summary.approved_earnings - _reserved_payouts(session, username),
        ZERO,
    )
    return summary


def get_commission_history(session: Session, username: str, limit: int = 50) -> List[Commission]:
    return session.execute(
        select(Commission)
        .where(Commission.referrer_username == username)
        .order_by(Commission.created_at.desc())
        .limit(limit)
    ).scalars().all()


# =============================================================================
# PAYOUTS
# =============================================================================

def request_payout(
    session: Session,
    username: str,
    amount: Decimal,
    payment_method: str,
    payment_details: Optional[Dict[str, Any]] = None,
) -> Payout:
    """
    Request a payout against the available balance.

    Raises:
        PayoutError: Non-positive amount or insufficient balance.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise PayoutError("Payout amount must be greater than zero")

    available = get_earnings_summary(session, username).available_balance
    if amount > available:
        raise PayoutError(f"Insufficient approved earnings. Available: ${available:.2f}")

    payout = Payout(
        referrer_username=username,
        amount=amount,
        status=PayoutStatus.REQUESTED,
        payment_method=payment_method,
        payment_details=payment_details,
    )
    session.add(payout)
    session.flush()

    logger.info(f"Payout requested: id={payout.id} referrer={username} amount={amount}")
    return payout


def get_payout_history(session: Session, username: str, limit: int = 20) -> List[Payout]:
    return session.execute(
        select(Payout)
        .where(Payout.referrer_username == username)
        .order_by(Payout.requested_at.desc())
        .limit(limit)
    ).scalars().all()
