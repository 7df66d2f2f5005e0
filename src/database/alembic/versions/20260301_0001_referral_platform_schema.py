"""Referral platform schema

Creates:
- profiles, client_preparers, affiliate_bondings
- marketing_links, link_clicks
- leads, crm_contacts
- commissions, payouts
- support_tickets, ticket_messages
- cities, campaigns, seo_landing_pages
- page_restrictions, payment_events

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '20260301_0001'
down_revision = None
branch_labels = None
depends_on = None


# SQLAlchemy stores Python enums by member name
user_role = sa.Enum('SUPER_ADMIN', 'ADMIN', 'TAX_PREPARER', 'AFFILIATE', 'CLIENT', 'LEAD', name='userrole')
lead_status = sa.Enum('NEW', 'CONTACTED', 'QUALIFIED', 'CONVERTED', 'LOST', name='leadstatus')
attribution_method = sa.Enum('REF_PARAM', 'COOKIE', 'EMAIL_MATCH', 'PHONE_MATCH', 'DIRECT', name='attributionmethod')
commission_status = sa.Enum('PENDING', 'APPROVED', 'PAID', 'CANCELLED', name='commissionstatus')
payout_status = sa.Enum('REQUESTED', 'PROCESSING', 'COMPLETED', 'REJECTED', name='payoutstatus')
link_type = sa.Enum('TAX_INTAKE', 'APPOINTMENT', 'CUSTOM', name='linktype')
ticket_status = sa.Enum(
    'OPEN', 'IN_PROGRESS', 'WAITING_ON_CLIENT', 'WAITING_ON_PREPARER', 'RESOLVED', 'CLOSED',
    name='ticketstatus'
)
ticket_priority = sa.Enum('LOW', 'NORMAL', 'HIGH', 'URGENT', name='ticketpriority')
campaign_status = sa.Enum('DRAFT', 'GENERATING', 'COMPLETED', 'FAILED', name='campaignstatus')
page_status = sa.Enum('DRAFT', 'PUBLISHED', name='pagestatus')

ALL_ENUMS = [
    user_role, lead_status, attribution_method, commission_status, payout_status,
    link_type, ticket_status, ticket_priority, campaign_status, page_status,
]


def upgrade():
    """Create referral platform tables."""

    # =========================================================================
    # PROFILES
    # =========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=True, unique=True),
        sa.Column('username', sa.String(50), nullable=True, unique=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('middle_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('tracking_code', sa.String(32), nullable=True, unique=True),
        sa.Column('custom_tracking_code', sa.String(32), nullable=True, unique=True),
        sa.Column('tracking_code_changed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('tracking_code_finalized', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('tracking_code_qr_url', sa.String(500), nullable=True),
        sa.Column('affiliate_bonded_to_preparer_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'])
    op.create_index('ix_profile_role', 'profiles', ['role'])

    op.create_table(
        'client_preparers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('preparer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('assigned_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_client_preparer_client', 'client_preparers', ['client_id', 'is_active'])

    op.create_table(
        'affiliate_bondings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('affiliate_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('preparer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('commission_structure', postgresql.JSONB, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_bonding_affiliate', 'affiliate_bondings', ['affiliate_id', 'is_active'])

    # =========================================================================
    # MARKETING LINKS
    # =========================================================================
    op.create_table(
        'marketing_links',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('creator_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_type', user_role, nullable=False),
        sa.Column('link_type', link_type, nullable=False),
        sa.Column('code', sa.String(64), nullable=False, unique=True),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('short_url', sa.String(500), nullable=True),
        sa.Column('title', sa.String(200), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('campaign', sa.String(100), nullable=True),
        sa.Column('target_page', sa.String(200), nullable=True),
        sa.Column('clicks', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unique_clicks', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('clicks >= 0', name='ck_link_clicks_positive'),
    )
    op.create_index('ix_link_creator', 'marketing_links', ['creator_id'])

    op.create_table(
        'link_clicks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('link_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('marketing_links.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('referrer', sa.String(1000), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('user_phone', sa.String(32), nullable=True),
        sa.Column('clicked_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_click_email', 'link_clicks', ['user_email', 'clicked_at'])
    op.create_index('ix_click_phone', 'link_clicks', ['user_phone', 'clicked_at'])

    # =========================================================================
    # LEADS AND CRM
    # =========================================================================
    op.create_table(
        'leads',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('middle_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('phone', sa.String(32), nullable=False),
        sa.Column('country_code', sa.String(8), nullable=True),
        sa.Column('date_of_birth', sa.String(20), nullable=True),
        sa.Column('address_line_1', sa.String(200), nullable=True),
        sa.Column('address_line_2', sa.String(200), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('zip_code', sa.String(20), nullable=True),
        sa.Column('filing_status', sa.String(50), nullable=True),
        sa.Column('employment_type', sa.String(50), nullable=True),
        sa.Column('occupation', sa.String(100), nullable=True),
        sa.Column('has_dependents', sa.Boolean, nullable=True),
        sa.Column('number_of_dependents', sa.Integer, nullable=True),
        sa.Column('full_form_data', postgresql.JSONB, nullable=True),
        sa.Column('locale', sa.String(8), nullable=True),
        sa.Column('status', lead_status, nullable=False),
        sa.Column('referrer_username', sa.String(64), nullable=True),
        sa.Column('referrer_type', sa.String(32), nullable=True),
        sa.Column('attribution_method', attribution_method, nullable=True),
        sa.Column('attribution_confidence', sa.Integer, nullable=True),
        sa.Column('commission_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('commission_rate_locked_at', sa.DateTime, nullable=True),
        sa.Column('assigned_preparer_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        sa.Column('utm_source', sa.String(100), nullable=True),
        sa.Column('utm_medium', sa.String(100), nullable=True),
        sa.Column('utm_campaign', sa.String(100), nullable=True),
        sa.Column('utm_term', sa.String(100), nullable=True),
        sa.Column('utm_content', sa.String(100), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint(
            'attribution_confidence IS NULL OR (attribution_confidence >= 0 AND attribution_confidence <= 100)',
            name='ck_lead_confidence_range'
        ),
    )
    op.create_index('ix_leads_referrer_username', 'leads', ['referrer_username'])
    op.create_index('ix_lead_status', 'leads', ['status'])
    op.create_index('ix_lead_assigned_preparer', 'leads', ['assigned_preparer_id'])

    op.create_table(
        'crm_contacts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('lead_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('leads.id', ondelete='SET NULL'), nullable=True),
        sa.Column('profile_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('contact_type', sa.String(32), nullable=False, server_default='lead'),
        sa.Column('stage', sa.String(32), nullable=False, server_default='new'),
        sa.Column('source', sa.String(64), nullable=True),
        sa.Column('assigned_preparer_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # =========================================================================
    # COMMISSIONS AND PAYOUTS
    # =========================================================================
    op.create_table(
        'commissions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('lead_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('leads.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('referrer_username', sa.String(64), nullable=False),
        sa.Column('referrer_type', sa.String(32), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', commission_status, nullable=False),
        sa.Column('lead_status', lead_status, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('approved_at', sa.DateTime, nullable=True),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint('amount >= 0', name='ck_commission_amount_positive'),
    )
    op.create_index('ix_commissions_referrer_username', 'commissions', ['referrer_username'])
    op.create_index('ix_commission_referrer_status', 'commissions', ['referrer_username', 'status'])

    op.create_table(
        'payouts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('referrer_username', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', payout_status, nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('payment_details', postgresql.JSONB, nullable=True),
        sa.Column('requested_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime, nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_payout_amount_positive'),
    )
    op.create_index('ix_payouts_referrer_username', 'payouts', ['referrer_username'])

    # =========================================================================
    # SUPPORT TICKETS
    # =========================================================================
    op.create_table(
        'support_tickets',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('ticket_number', sa.String(32), nullable=False, unique=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('status', ticket_status, nullable=False),
        sa.Column('priority', ticket_priority, nullable=False),
        sa.Column('tags', postgresql.JSONB, nullable=True),
        sa.Column('custom_fields', postgresql.JSONB, nullable=True),
        sa.Column('creator_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_to_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('response_due_at', sa.DateTime, nullable=True),
        sa.Column('resolution_due_at', sa.DateTime, nullable=True),
        sa.Column('first_response_at', sa.DateTime, nullable=True),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('closed_at', sa.DateTime, nullable=True),
        sa.Column('last_activity_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_ticket_status_priority', 'support_tickets', ['status', 'priority'])
    op.create_index('ix_ticket_creator', 'support_tickets', ['creator_id'])
    op.create_index('ix_ticket_assignee', 'support_tickets', ['assigned_to_id'])

    op.create_table(
        'ticket_messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('ticket_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('support_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('is_internal', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_ai_generated', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('attachments', postgresql.JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_ticket_message_ticket', 'ticket_messages', ['ticket_id'])

    # =========================================================================
    # CITY LANDING PAGES
    # =========================================================================
    op.create_table(
        'cities',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('state', sa.String(50), nullable=False),
        sa.Column('state_code', sa.String(2), nullable=False),
        sa.Column('slug', sa.String(150), nullable=False, unique=True),
        sa.Column('population', sa.Integer, nullable=False, server_default='0'),
        sa.Column('neighborhoods', postgresql.JSONB, nullable=True),
        sa.Column('industries', postgresql.JSONB, nullable=True),
        sa.Column('landmarks', postgresql.JSONB, nullable=True),
        sa.Column('zip_codes', postgresql.JSONB, nullable=True),
        sa.Column('irs_office', sa.String(200), nullable=True),
        sa.Column('has_state_tax', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('state_tax_rate', sa.String(20), nullable=True),
    )
    op.create_index('ix_city_population', 'cities', ['population'])

    op.create_table(
        'campaigns',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('service_name', sa.String(200), nullable=False),
        sa.Column('service_type', sa.String(32), nullable=False, server_default='personal'),
        sa.Column('starting_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('average_refund', sa.Numeric(10, 2), nullable=True),
        sa.Column('turnaround', sa.String(100), nullable=True),
        sa.Column('specialties', postgresql.JSONB, nullable=True),
        sa.Column('status', campaign_status, nullable=False),
        sa.Column('cities_generated', sa.Integer, nullable=False, server_default='0'),
        sa.Column('cities_failed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('generation_started_at', sa.DateTime, nullable=True),
        sa.Column('generation_completed_at', sa.DateTime, nullable=True),
    )

    op.create_table(
        'seo_landing_pages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('campaign_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('city_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('cities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('slug', sa.String(250), nullable=False, unique=True),
        sa.Column('title', sa.String(250), nullable=False),
        sa.Column('meta_desc', sa.String(500), nullable=True),
        sa.Column('h1', sa.String(250), nullable=True),
        sa.Column('intro', sa.Text, nullable=True),
        sa.Column('benefits', postgresql.JSONB, nullable=True),
        sa.Column('faqs', postgresql.JSONB, nullable=True),
        sa.Column('status', page_status, nullable=False),
        sa.Column('views', sa.Integer, nullable=False, server_default='0'),
        sa.Column('published_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('campaign_id', 'city_id', name='uq_page_campaign_city'),
    )

    # =========================================================================
    # PAGE RESTRICTIONS AND PAYMENT EVENTS
    # =========================================================================
    op.create_table(
        'page_restrictions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('route_path', sa.String(300), nullable=False, unique=True),
        sa.Column('allowed_roles', postgresql.JSONB, nullable=True),
        sa.Column('blocked_roles', postgresql.JSONB, nullable=True),
        sa.Column('allowed_usernames', postgresql.JSONB, nullable=True),
        sa.Column('blocked_usernames', postgresql.JSONB, nullable=True),
        sa.Column('allow_non_logged_in', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('redirect_url', sa.String(500), nullable=True),
        sa.Column('custom_html_on_block', sa.Text, nullable=True),
        sa.Column('hide_from_nav', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_restriction_active_priority', 'page_restrictions', ['is_active', 'priority'])

    op.create_table(
        'payment_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('provider', sa.String(32), nullable=False, server_default='square'),
        sa.Column('provider_event_id', sa.String(128), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', postgresql.JSONB, nullable=True),
        sa.Column('received_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    """Drop referral platform tables."""
    for table in (
        'payment_events', 'page_restrictions',
        'seo_landing_pages', 'campaigns', 'cities',
        'ticket_messages', 'support_tickets',
        'payouts', 'commissions',
        'crm_contacts', 'leads',
        'link_clicks', 'marketing_links',
        'affiliate_bondings', 'client_preparers', 'profiles',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.drop(bind, checkfirst=True)
