"""Create ZIP routing, plan cache, API log and navigation event tables

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # ZIP → city / TDSP mappings
    op.create_table('zip_mappings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('zip_code', sa.String(length=5), nullable=False),
        sa.Column('zip_plus4_pattern', sa.String(length=10), nullable=True),
        sa.Column('city_name', sa.String(length=100), nullable=False),
        sa.Column('city_slug', sa.String(length=100), nullable=False),
        sa.Column('county_name', sa.String(length=100), nullable=True),
        sa.Column('tdsp_territory', sa.String(length=100), nullable=False),
        sa.Column('tdsp_duns', sa.String(length=20), nullable=False),
        sa.Column('is_deregulated', sa.Boolean(), nullable=False),
        sa.Column('market_zone', sa.String(length=10), nullable=False),
        sa.Column('priority', sa.Float(), nullable=False),
        sa.Column('last_validated', sa.DateTime(), nullable=True),
        sa.Column('data_source', sa.String(length=10), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('zip_code', 'city_slug', name='uq_zip_mappings_zip_city')
    )
    op.create_index('idx_zip_mappings_zip_code', 'zip_mappings', ['zip_code'], unique=False)
    op.create_index('idx_zip_mappings_city_slug', 'zip_mappings', ['city_slug'], unique=False)
    op.create_index('idx_zip_mappings_tdsp_duns', 'zip_mappings', ['tdsp_duns'], unique=False)
    op.create_index('idx_zip_mappings_market_zone', 'zip_mappings', ['market_zone'], unique=False)
    op.create_index('idx_zip_mappings_is_deregulated', 'zip_mappings', ['is_deregulated'], unique=False)

    # Upstream plan snapshots
    op.create_table('plan_cache',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('cache_key', sa.String(length=500), nullable=False),
        sa.Column('tdsp_duns', sa.String(length=20), nullable=False),
        sa.Column('plans_data', JSON_TYPE, nullable=False),
        sa.Column('plan_count', sa.Integer(), nullable=False),
        sa.Column('lowest_rate', sa.Float(), nullable=False),
        sa.Column('cached_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cache_key')
    )
    op.create_index('idx_plan_cache_expires', 'plan_cache', ['expires_at'], unique=False)
    op.create_index('idx_plan_cache_tdsp', 'plan_cache', ['tdsp_duns'], unique=False)

    op.create_table('api_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('endpoint', sa.String(length=255), nullable=False),
        sa.Column('params', JSON_TYPE, nullable=True),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_api_logs_created_at', 'api_logs', ['created_at'], unique=False)
    op.create_index('idx_api_logs_monitoring', 'api_logs', ['endpoint', 'created_at'], unique=False)

    op.create_table('zip_navigation_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('city_slug', sa.String(length=100), nullable=True),
        sa.Column('error_code', sa.String(length=50), nullable=True),
        sa.Column('error_flag', sa.Boolean(), nullable=False),
        sa.Column('response_time_ms', sa.Float(), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_nav_events_occurred_at', 'zip_navigation_events', ['occurred_at'], unique=False)
    op.create_index('idx_nav_events_type_occurred_at', 'zip_navigation_events', ['event_type', 'occurred_at'], unique=False)
    op.create_index('idx_nav_events_zip_occurred_at', 'zip_navigation_events', ['zip_code', 'occurred_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_nav_events_zip_occurred_at', table_name='zip_navigation_events')
    op.drop_index('idx_nav_events_type_occurred_at', table_name='zip_navigation_events')
    op.drop_index('idx_nav_events_occurred_at', table_name='zip_navigation_events')
    op.drop_table('zip_navigation_events')

    op.drop_index('idx_api_logs_monitoring', table_name='api_logs')
    op.drop_index('idx_api_logs_created_at', table_name='api_logs')
    op.drop_table('api_logs')

    op.drop_index('idx_plan_cache_tdsp', table_name='plan_cache')
    op.drop_index('idx_plan_cache_expires', table_name='plan_cache')
    op.drop_table('plan_cache')

    op.drop_index('idx_zip_mappings_is_deregulated', table_name='zip_mappings')
    op.drop_index('idx_zip_mappings_market_zone', table_name='zip_mappings')
    op.drop_index('idx_zip_mappings_tdsp_duns', table_name='zip_mappings')
    op.drop_index('idx_zip_mappings_city_slug', table_name='zip_mappings')
    op.drop_index('idx_zip_mappings_zip_code', table_name='zip_mappings')
    op.drop_table('zip_mappings')
