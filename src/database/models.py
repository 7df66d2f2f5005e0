"""
SQLAlchemy ORM Models for the Referral Platform.

Defines the relational schema behind lead intake, referral attribution,
commissions, support tickets, city landing pages and page restrictions.

Architecture:
- Primary Keys: UUID for all tables (globally unique)
- Secondary Keys: natural business keys (tracking codes, link codes,
  lead email, ticket number, page slug)
- Status Flags: Enum-based status tracking
- Data Types: Numeric(10, 2) for money
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, DateTime,
    Text, Enum, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    JSON
)
from sqlalchemy.dialects.postgresql import UUID, JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()


# =============================================================================
# ENUMERATIONS
# =============================================================================

class UserRole(str, PyEnum):
    """Platform roles."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    TAX_PREPARER = "tax_preparer"
    AFFILIATE = "affiliate"
    CLIENT = "client"
    LEAD = "lead"


ADMIN_ROLES = {UserRole.SUPER_ADMIN, UserRole.ADMIN}


class LeadStatus(str, PyEnum):
    """Lead pipeline status."""
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"


class AttributionMethod(str, PyEnum):
    """How a lead was credited to a referrer."""
    REF_PARAM = "ref_param"
    COOKIE = "cookie"
    EMAIL_MATCH = "email_match"
    PHONE_MATCH = "phone_match"
    DIRECT = "direct"


class CommissionStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayoutStatus(str, PyEnum):
    REQUESTED = "requested"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class LinkType(str, PyEnum):
    """Marketing link purpose."""
    TAX_INTAKE = "tax_intake"
    APPOINTMENT = "appointment"
    CUSTOM = "custom"


class TicketStatus(str, PyEnum):
    """Status of a support ticket."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CLIENT = "waiting_on_client"
    WAITING_ON_PREPARER = "waiting_on_preparer"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, PyEnum):
    """Priority levels for tickets."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class CampaignStatus(str, PyEnum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class PageStatus(str, PyEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


# =============================================================================
# PROFILES AND RELATIONSHIPS
# =============================================================================

class Profile(Base):
    """
    Platform user profile.

    Holds the referral identity: an auto-generated tracking code and an
    optional vanity code that can be set once.
    """
    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=True, unique=True, comment="Auth provider user id")
    username = Column(String(50), nullable=True, unique=True, comment="Short link username")
    email = Column(String(255), nullable=True, index=True)
    first_name = Column(String(100), nullable=True)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.CLIENT)

    tracking_code = Column(String(32), nullable=True, unique=True)
    custom_tracking_code = Column(String(32), nullable=True, unique=True)
    tracking_code_changed = Column(Boolean, nullable=False, default=False)
    tracking_code_finalized = Column(Boolean, nullable=False, default=False)
    tracking_code_qr_url = Column(String(500), nullable=True)

    affiliate_bonded_to_preparer_id = Column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    marketing_links = relationship(
        "MarketingLink", back_populates="creator", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_profile_role', 'role'),
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p for p in parts if p) or (self.username or "")

    @property
    def active_tracking_code(self):
        return self.custom_tracking_code or self.tracking_code

    def __repr__(self):
        return f"<Profile(id={self.id}, username={self.username}, role={self.role})>"


class ClientPreparer(Base):
    """Assignment of a client to their tax preparer."""
    __tablename__ = "client_preparers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    preparer_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_client_preparer_client', 'client_id', 'is_active'),
    )


class AffiliateBonding(Base):
    """
    Affiliate bonded to a preparer with a custom commission structure.

    commission_structure example:
        {"tier1": {"count": 0, "rate": 50}, "tier2": {"count": 10, "rate": 75}}
    """
    __tablename__ = "affiliate_bondings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    affiliate_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    preparer_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    commission_structure = Column(JSONB, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_bonding_affiliate', 'affiliate_id', 'is_active'),
    )


# =============================================================================
# MARKETING LINKS
# =============================================================================

class MarketingLink(Base):
    """Referral link owned by a profile. Resolved through /go/{code}."""
    __tablename__ = "marketing_links"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    creator_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    creator_type = Column(Enum(UserRole), nullable=False)
    link_type = Column(Enum(LinkType), nullable=False, default=LinkType.CUSTOM)
    code = Column(String(64), nullable=False, unique=True)
    url = Column(String(1000), nullable=False, comment="Full destination URL")
    short_url = Column(String(500), nullable=True)
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    campaign = Column(String(100), nullable=True)
    target_page = Column(String(200), nullable=True)
    clicks = Column(Integer, nullable=False, default=0)
    unique_clicks = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    creator = relationship("Profile", back_populates="marketing_links")
    link_clicks = relationship("LinkClick", back_populates="link", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('clicks >= 0', name='ck_link_clicks_positive'),
        Index('ix_link_creator', 'creator_id'),
    )

    def __repr__(self):
        return f"<MarketingLink(code={self.code}, clicks={self.clicks})>"


class LinkClick(Base):
    """Single visit through a marketing link. Source of email/phone attribution."""
    __tablename__ = "link_clicks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    link_id = Column(UUID(as_uuid=True), ForeignKey("marketing_links.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    referrer = Column(String(1000), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    user_email = Column(String(255), nullable=True)
    user_phone = Column(String(32), nullable=True)
    clicked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    link = relationship("MarketingLink", back_populates="link_clicks")

    __table_args__ = (
        Index('ix_click_email', 'user_email', 'clicked_at'),
        Index('ix_click_phone', 'user_phone', 'clicked_at'),
    )


# =============================================================================
# LEADS AND CRM
# =============================================================================

class Lead(Base):
    """
    Tax intake lead.

    commission_rate is the dollar amount locked at attribution time. It is
    never recomputed after the referrer's tier or bonding changes.
    """
    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(32), nullable=False)
    country_code = Column(String(8), nullable=True)
    date_of_birth = Column(String(20), nullable=True)
    address_line_1 = Column(String(200), nullable=True)
    address_line_2 = Column(String(200), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    zip_code = Column(String(20), nullable=True)
    filing_status = Column(String(50), nullable=True)
    employment_type = Column(String(50), nullable=True)
    occupation = Column(String(100), nullable=True)
    has_dependents = Column(Boolean, nullable=True)
    number_of_dependents = Column(Integer, nullable=True)
    full_form_data = Column(JSONB, nullable=True)
    locale = Column(String(8), nullable=True, default="en")

    status = Column(Enum(LeadStatus), nullable=False, default=LeadStatus.NEW)

    # Attribution
    referrer_username = Column(String(64), nullable=True, index=True)
    referrer_type = Column(String(32), nullable=True)
    attribution_method = Column(Enum(AttributionMethod), nullable=True)
    attribution_confidence = Column(Integer, nullable=True)
    commission_rate = Column(Numeric(10, 2), nullable=True)
    commission_rate_locked_at = Column(DateTime, nullable=True)
    assigned_preparer_id = Column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )

    # Marketing
    source = Column(String(100), nullable=True)
    utm_source = Column(String(100), nullable=True)
    utm_medium = Column(String(100), nullable=True)
    utm_campaign = Column(String(100), nullable=True)
    utm_term = Column(String(100), nullable=True)
    utm_content = Column(String(100), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    commission = relationship("Commission", back_populates="lead", uselist=False)

    __table_args__ = (
        CheckConstraint(
            'attribution_confidence IS NULL OR (attribution_confidence >= 0 AND attribution_confidence <= 100)',
            name='ck_lead_confidence_range'
        ),
        Index('ix_lead_status', 'status'),
        Index('ix_lead_assigned_preparer', 'assigned_preparer_id'),
    )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)

    def __repr__(self):
        return f"<Lead(id={self.id}, email={self.email}, status={self.status})>"


class CRMContact(Base):
    """Contact record mirrored from leads for the CRM pipeline."""
    __tablename__ = "crm_contacts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    profile_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    contact_type = Column(String(32), nullable=False, default="lead")
    stage = Column(String(32), nullable=False, default="new")
    source = Column(String(64), nullable=True)
    assigned_preparer_id = Column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    last_contacted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# COMMISSIONS AND PAYOUTS
# =============================================================================

class Commission(Base):
    """Commission owed to a referrer for one converted lead."""
    __tablename__ = "commissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, unique=True)
    referrer_username = Column(String(64), nullable=False, index=True)
    referrer_type = Column(String(32), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(CommissionStatus), nullable=False, default=CommissionStatus.PENDING)
    lead_status = Column(Enum(LeadStatus), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lead = relationship("Lead", back_populates="commission")

    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_commission_amount_positive'),
        Index('ix_commission_referrer_status', 'referrer_username', 'status'),
    )

    def __repr__(self):
        return f"<Commission(lead={self.lead_id}, amount={self.amount}, status={self.status})>"


class Payout(Base):
    """Payout request drawn from approved commissions."""
    __tablename__ = "payouts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    referrer_username = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(PayoutStatus), nullable=False, default=PayoutStatus.REQUESTED)
    payment_method = Column(String(50), nullable=True)
    payment_details = Column(JSONB, nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payout_amount_positive'),
    )


# =============================================================================
# SUPPORT TICKETS
# =============================================================================

class SupportTicket(Base):
    """Support ticket raised by a client, optionally assigned to a preparer."""
    __tablename__ = "support_tickets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    ticket_number = Column(String(32), nullable=False, unique=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(Enum(TicketStatus), nullable=False, default=TicketStatus.OPEN)
    priority = Column(Enum(TicketPriority), nullable=False, default=TicketPriority.NORMAL)
    tags = Column(JSONB, nullable=True)
    custom_fields = Column(JSONB, nullable=True)

    creator_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    assigned_to_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    response_due_at = Column(DateTime, nullable=True)
    resolution_due_at = Column(DateTime, nullable=True)
    first_response_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship(
        "TicketMessage", back_populates="ticket", cascade="all, delete-orphan",
        order_by="TicketMessage.created_at"
    )

    __table_args__ = (
        Index('ix_ticket_status_priority', 'status', 'priority'),
        Index('ix_ticket_creator', 'creator_id'),
        Index('ix_ticket_assignee', 'assigned_to_id'),
    )

    def __repr__(self):
        return f"<SupportTicket(number={self.ticket_number}, status={self.status})>"


class TicketMessage(Base):
    __tablename__ = "ticket_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    ticket_id = Column(UUID(as_uuid=True), ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False, comment="Hidden from clients")
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    attachments = Column(JSONB, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ticket = relationship("SupportTicket", back_populates="messages")

    __table_args__ = (
        Index('ix_ticket_message_ticket', 'ticket_id'),
    )


# =============================================================================
# CITY LANDING PAGES
# =============================================================================

class City(Base):
    __tablename__ = "cities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    state = Column(String(50), nullable=False)
    state_code = Column(String(2), nullable=False)
    slug = Column(String(150), nullable=False, unique=True)
    population = Column(Integer, nullable=False, default=0)
    neighborhoods = Column(JSONB, nullable=True)
    industries = Column(JSONB, nullable=True)
    landmarks = Column(JSONB, nullable=True)
    zip_codes = Column(JSONB, nullable=True)
    irs_office = Column(String(200), nullable=True)
    has_state_tax = Column(Boolean, nullable=False, default=True)
    state_tax_rate = Column(String(20), nullable=True)

    __table_args__ = (
        Index('ix_city_population', 'population'),
    )


class Campaign(Base):
    """Batch of city landing pages for one tax service."""
    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    service_name = Column(String(200), nullable=False)
    service_type = Column(String(32), nullable=False, default="personal")
    starting_price = Column(Numeric(10, 2), nullable=True)
    average_refund = Column(Numeric(10, 2), nullable=True)
    turnaround = Column(String(100), nullable=True)
    specialties = Column(JSONB, nullable=True)
    status = Column(Enum(CampaignStatus), nullable=False, default=CampaignStatus.DRAFT)
    cities_generated = Column(Integer, nullable=False, default=0)
    cities_failed = Column(Integer, nullable=False, default=0)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    generation_started_at = Column(DateTime, nullable=True)
    generation_completed_at = Column(DateTime, nullable=True)

    pages = relationship("SeoLandingPage", back_populates="campaign", cascade="all, delete-orphan")


class SeoLandingPage(Base):
    __tablename__ = "seo_landing_pages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    city_id = Column(UUID(as_uuid=True), ForeignKey("cities.id", ondelete="CASCADE"), nullable=False)
    slug = Column(String(250), nullable=False, unique=True)
    title = Column(String(250), nullable=False)
    meta_desc = Column(String(500), nullable=True)
    h1 = Column(String(250), nullable=True)
    intro = Column(Text, nullable=True)
    benefits = Column(JSONB, nullable=True)
    faqs = Column(JSONB, nullable=True)
    status = Column(Enum(PageStatus), nullable=False, default=PageStatus.DRAFT)
    views = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="pages")
    city = relationship("City")

    __table_args__ = (
        UniqueConstraint('campaign_id', 'city_id', name='uq_page_campaign_city'),
    )


# =============================================================================
# PAGE RESTRICTIONS
# =============================================================================

class PageRestriction(Base):
    """Route access rule. route_path may contain '*' wildcards."""
    __tablename__ = "page_restrictions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    route_path = Column(String(300), nullable=False, unique=True)
    allowed_roles = Column(JSONB, nullable=True)
    blocked_roles = Column(JSONB, nullable=True)
    allowed_usernames = Column(JSONB, nullable=True)
    blocked_usernames = Column(JSONB, nullable=True)
    allow_non_logged_in = Column(Boolean, nullable=False, default=False)
    redirect_url = Column(String(500), nullable=True)
    custom_html_on_block = Column(Text, nullable=True)
    hide_from_nav = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_restriction_active_priority', 'is_active', 'priority'),
    )


# =============================================================================
# PAYMENT WEBHOOKS
# =============================================================================

class PaymentEvent(Base):
    """Received payment webhook event. provider_event_id makes delivery idempotent."""
    __tablename__ = "payment_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(String(32), nullable=False, default="square")
    provider_event_id = Column(String(128), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSONB, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
