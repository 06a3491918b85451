"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()'))


def _tz(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    # HubSpot contacts mirror (one row per contact per owning user)
    op.create_table(
        'contacts',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('hubspot_contact_id', sa.String(50), nullable=False),
        sa.Column('hs_object_id', sa.String(50), nullable=True),
        sa.Column('hubspot_company_id', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('firstname', sa.String(255), nullable=True),
        sa.Column('lastname', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(100), nullable=True),
        sa.Column('mobilephone', sa.String(100), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.String(255), nullable=True),
        sa.Column('state', sa.String(255), nullable=True),
        sa.Column('zip', sa.String(50), nullable=True),
        sa.Column('country', sa.String(255), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('lifecyclestage', sa.String(100), nullable=True),
        _tz('createdate', nullable=True),
        _tz('lastmodifieddate', nullable=True),
        sa.Column('properties', postgresql.JSONB(), nullable=True),
        sa.Column('locations', postgresql.JSONB(), nullable=True),
        _tz('synced_at', server_default=sa.text('now()'), nullable=True),
        _tz('created_at', server_default=sa.text('now()'), nullable=True),
        _tz('updated_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hubspot_contact_id', 'user_id', name='uq_contacts_hubspot_contact_user'),
    )
    op.create_index('ix_contacts_user_id', 'contacts', ['user_id'])
    op.create_index('ix_contacts_hs_object_id', 'contacts', ['hs_object_id'])
    op.create_index('ix_contacts_hubspot_company_id', 'contacts', ['hubspot_company_id'])
    op.create_index('ix_contacts_lifecyclestage', 'contacts', ['lifecyclestage'])
    op.create_index('ix_contacts_lastmodifieddate', 'contacts', ['lastmodifieddate'])

    # GBP accounts connected through Pipedream Connect
    op.create_table(
        'pipedream_connected_accounts',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('pipedream_account_id', sa.String(255), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=True),
        sa.Column('app_name', sa.String(100), nullable=False, server_default='google_my_business'),
        sa.Column('account_name', sa.String(255), nullable=True),
        sa.Column('account_email', sa.String(255), nullable=True),
        sa.Column('healthy', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('dead', sa.Boolean(), nullable=False, server_default=sa.false()),
        _tz('last_checked_at', nullable=True),
        sa.Column('last_error', sa.String(500), nullable=True),
        sa.Column('hubspot_company_id', sa.String(50), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        _tz('created_at', server_default=sa.text('now()'), nullable=True),
        _tz('updated_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pipedream_account_id'),
    )
    op.create_index('ix_pipedream_connected_accounts_user_id', 'pipedream_connected_accounts', ['user_id'])
    op.create_index(
        'ix_pipedream_connected_accounts_hubspot_company_id',
        'pipedream_connected_accounts', ['hubspot_company_id'],
    )

    # One row per sync run
    op.create_table(
        'sync_jobs',
        _id_column(),
        sa.Column('job_type', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('trigger', sa.String(20), nullable=True),
        sa.Column('records_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', postgresql.JSONB(), nullable=True),
        _tz('started_at', server_default=sa.text('now()'), nullable=False),
        _tz('completed_at', nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_jobs_job_type', 'sync_jobs', ['job_type'])
    op.create_index('ix_sync_jobs_started_at', 'sync_jobs', ['started_at'])

    # Dual-write audit trail
    op.create_table(
        'transaction_log',
        _id_column(),
        sa.Column('contact_id', sa.String(50), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('operation', sa.String(10), nullable=False),
        sa.Column('hubspot_updated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('supabase_updated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rolled_back', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('critical_error', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', postgresql.JSONB(), nullable=True),
        sa.Column('properties_changed', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('previous_state', postgresql.JSONB(), nullable=True),
        sa.Column('new_state', postgresql.JSONB(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(100), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(100), nullable=True),
        _tz('created_at', server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("operation IN ('create', 'update', 'delete')", name='ck_transaction_log_operation'),
    )
    op.create_index('ix_transaction_log_contact_id', 'transaction_log', ['contact_id'])
    op.create_index('ix_transaction_log_created_at', 'transaction_log', ['created_at'])
    # Partial index for the "HubSpot changed, mirror did not" repair queue
    op.execute(
        "CREATE INDEX ix_transaction_log_critical ON transaction_log (created_at) "
        "WHERE critical_error = true"
    )

    # GBP cache
    op.create_table(
        'gbp_locations_sync',
        _id_column(),
        sa.Column('account_id', sa.String(50), nullable=False),
        sa.Column('location_id', sa.String(50), nullable=False),
        sa.Column('location_name', sa.String(255), nullable=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('store_code', sa.String(100), nullable=True),
        sa.Column('address_lines', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('locality', sa.String(255), nullable=True),
        sa.Column('administrative_area', sa.String(255), nullable=True),
        sa.Column('postal_code', sa.String(50), nullable=True),
        sa.Column('country_code', sa.String(10), nullable=True),
        sa.Column('primary_phone', sa.String(100), nullable=True),
        sa.Column('website_uri', sa.Text(), nullable=True),
        sa.Column('primary_category_id', sa.String(255), nullable=True),
        sa.Column('primary_category_name', sa.String(255), nullable=True),
        sa.Column('additional_categories', postgresql.JSONB(), nullable=True),
        sa.Column('verification_state', sa.String(20), nullable=True),
        sa.Column('is_open', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        _tz('create_time', nullable=True),
        _tz('update_time', nullable=True),
        _tz('fetched_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'location_id', name='uq_gbp_locations_account_location'),
    )
    op.create_index('ix_gbp_locations_sync_location_id', 'gbp_locations_sync', ['location_id'])

    op.create_table(
        'gbp_reviews',
        _id_column(),
        sa.Column('account_id', sa.String(50), nullable=False),
        sa.Column('location_id', sa.String(50), nullable=False),
        sa.Column('review_id', sa.String(255), nullable=False),
        sa.Column('reviewer_display_name', sa.String(255), nullable=True),
        sa.Column('reviewer_profile_photo_url', sa.Text(), nullable=True),
        sa.Column('star_rating', sa.Integer(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('reply_comment', sa.Text(), nullable=True),
        _tz('reply_update_time', nullable=True),
        _tz('create_time', nullable=True),
        _tz('update_time', nullable=True),
        _tz('fetched_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'review_id', name='uq_gbp_reviews_location_review'),
        sa.CheckConstraint('star_rating BETWEEN 1 AND 5', name='ck_gbp_reviews_star_rating'),
    )
    op.create_index('ix_gbp_reviews_location_id', 'gbp_reviews', ['location_id'])

    op.create_table(
        'gbp_posts',
        _id_column(),
        sa.Column('account_id', sa.String(50), nullable=False),
        sa.Column('location_id', sa.String(50), nullable=False),
        sa.Column('post_name', sa.String(500), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('language_code', sa.String(20), nullable=True),
        sa.Column('topic_type', sa.String(50), nullable=True),
        sa.Column('call_to_action_type', sa.String(50), nullable=True),
        sa.Column('call_to_action_url', sa.Text(), nullable=True),
        sa.Column('event_title', sa.String(255), nullable=True),
        sa.Column('event_start_date', sa.Date(), nullable=True),
        sa.Column('event_end_date', sa.Date(), nullable=True),
        sa.Column('offer_coupon_code', sa.String(100), nullable=True),
        sa.Column('offer_redeem_online_url', sa.Text(), nullable=True),
        sa.Column('offer_terms_conditions', sa.Text(), nullable=True),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('media_format', sa.String(20), nullable=True),
        sa.Column('state', sa.String(30), nullable=True),
        _tz('create_time', nullable=True),
        _tz('update_time', nullable=True),
        _tz('fetched_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'post_name', name='uq_gbp_posts_location_post'),
    )
    op.create_index('ix_gbp_posts_location_id', 'gbp_posts', ['location_id'])

    op.create_table(
        'gbp_media',
        _id_column(),
        sa.Column('account_id', sa.String(50), nullable=False),
        sa.Column('location_id', sa.String(50), nullable=False),
        sa.Column('media_name', sa.String(500), nullable=False),
        sa.Column('media_format', sa.String(20), nullable=True),
        sa.Column('location_association', sa.String(50), nullable=True),
        sa.Column('google_url', sa.Text(), nullable=True),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('width_pixels', sa.Integer(), nullable=True),
        sa.Column('height_pixels', sa.Integer(), nullable=True),
        sa.Column('attribution_profile_name', sa.String(255), nullable=True),
        sa.Column('attribution_profile_url', sa.Text(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        _tz('create_time', nullable=True),
        _tz('fetched_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'media_name', name='uq_gbp_media_location_media'),
    )
    op.create_index('ix_gbp_media_location_id', 'gbp_media', ['location_id'])

    op.create_table(
        'gbp_analytics_snapshots',
        _id_column(),
        sa.Column('location_id', sa.String(50), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('date_range_start', sa.Date(), nullable=True),
        sa.Column('date_range_end', sa.Date(), nullable=True),
        sa.Column('total_impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_keywords', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('keywords', postgresql.JSONB(), nullable=True),
        _tz('fetched_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'snapshot_date', name='uq_gbp_analytics_location_date'),
    )
    op.create_index('ix_gbp_analytics_snapshots_location_id', 'gbp_analytics_snapshots', ['location_id'])

    # BrightLocal cache, linked to HubSpot by company id
    op.create_table(
        'brightlocal_locations',
        _id_column(),
        sa.Column('brightlocal_location_id', sa.String(50), nullable=False),
        sa.Column('brightlocal_client_id', sa.String(50), nullable=True),
        sa.Column('hubspot_company_id', sa.String(50), nullable=False),
        sa.Column('business_name', sa.String(255), nullable=True),
        sa.Column('address_line_1', sa.Text(), nullable=True),
        sa.Column('address_line_2', sa.Text(), nullable=True),
        sa.Column('city', sa.String(255), nullable=True),
        sa.Column('state_province', sa.String(255), nullable=True),
        sa.Column('postal_code', sa.String(50), nullable=True),
        sa.Column('country', sa.String(10), nullable=True),
        sa.Column('phone', sa.String(100), nullable=True),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('business_categories', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('primary_category', sa.String(255), nullable=True),
        sa.Column('latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('longitude', sa.Numeric(11, 8), nullable=True),
        sa.Column('location_status', sa.String(50), nullable=True),
        _tz('synced_at', nullable=True),
        sa.Column('last_sync_status', sa.String(50), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        _tz('created_at', server_default=sa.text('now()'), nullable=True),
        _tz('updated_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('brightlocal_location_id'),
    )
    op.create_index('ix_brightlocal_locations_hubspot_company_id', 'brightlocal_locations', ['hubspot_company_id'])

    op.create_table(
        'brightlocal_campaigns',
        _id_column(),
        sa.Column('brightlocal_campaign_id', sa.String(50), nullable=False),
        sa.Column('brightlocal_location_id', sa.String(50), nullable=True),
        sa.Column('hubspot_company_id', sa.String(50), nullable=False),
        sa.Column('campaign_name', sa.String(255), nullable=True),
        sa.Column('campaign_type', sa.String(50), nullable=True),
        sa.Column('campaign_status', sa.String(50), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        _tz('last_run_date', nullable=True),
        sa.Column('citations_built', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('citations_pending', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('citations_live', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('citations_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_directories', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('campaign_config', postgresql.JSONB(), nullable=True),
        sa.Column('report_summary', postgresql.JSONB(), nullable=True),
        _tz('synced_at', nullable=True),
        _tz('created_at', server_default=sa.text('now()'), nullable=True),
        _tz('updated_at', server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('brightlocal_campaign_id'),
    )
    op.create_index('ix_brightlocal_campaigns_brightlocal_location_id', 'brightlocal_campaigns', ['brightlocal_location_id'])
    op.create_index('ix_brightlocal_campaigns_hubspot_company_id', 'brightlocal_campaigns', ['hubspot_company_id'])


def downgrade() -> None:
    op.drop_table('brightlocal_campaigns')
    op.drop_table('brightlocal_locations')
    op.drop_table('gbp_analytics_snapshots')
    op.drop_table('gbp_media')
    op.drop_table('gbp_posts')
    op.drop_table('gbp_reviews')
    op.drop_table('gbp_locations_sync')
    op.drop_table('transaction_log')
    op.drop_table('sync_jobs')
    op.drop_table('pipedream_connected_accounts')
    op.drop_table('contacts')
