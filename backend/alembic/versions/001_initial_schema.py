"""Initial schema

Creates the ROI engine schema.

Tables:
    - portfolio_daily_signals: Published signals (raw, legacy tiers included)
    - allocation_snapshots: Weights per portfolio key from as_of_date on
    - asset_prices_daily: One close per symbol per UTC day
    - performance_series: MODEL/BTC/ETH reference series and computed MODEL_NAV
    - roi_dashboard_snapshots: Cached payload + dirty flag per (scope, key)
    - change_log_events: Annotations shown on the dashboard
    - dashboard_settings: Single-row dashboard configuration

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RISK_PROFILE = sa.Enum('AGGRESSIVE', 'SEMI', 'CONSERVATIVE', name='riskprofile')
SERIES_TYPE = sa.Enum('MODEL', 'MODEL_NAV', 'BTC', 'ETH', name='seriestype')
SNAPSHOT_SCOPE = sa.Enum('PORTFOLIO', 'GLOBAL', name='snapshotscope')


def upgrade() -> None:
    # ==========================================================================
    # SIGNALS
    # ==========================================================================
    op.create_table(
        'portfolio_daily_signals',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tier', sa.String(16), nullable=False),
        sa.Column('category', sa.String(64), nullable=True),
        sa.Column('risk_profile', RISK_PROFILE, nullable=False),
        sa.Column('signal', sa.Text(), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_signal_tier_category_published',
        'portfolio_daily_signals',
        ['tier', 'category', 'published_at'],
    )

    # ==========================================================================
    # ALLOCATION SNAPSHOTS
    # ==========================================================================
    op.create_table(
        'allocation_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_key', sa.String(96), nullable=False, index=True),
        sa.Column('as_of_date', sa.Date(), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column(
            'source_signal_id',
            sa.Integer(),
            sa.ForeignKey('portfolio_daily_signals.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('portfolio_key', 'as_of_date', name='uq_allocation_key_date'),
    )

    # ==========================================================================
    # DAILY PRICES
    # ==========================================================================
    op.create_table(
        'asset_prices_daily',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('symbol', sa.String(20), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('close', sa.Numeric(28, 12), nullable=False),
        sa.Column('source', sa.String(20), nullable=False, server_default='coingecko'),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('symbol', 'date', name='uq_asset_price_symbol_date'),
    )

    # ==========================================================================
    # PERFORMANCE SERIES
    # ==========================================================================
    op.create_table(
        'performance_series',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('series_type', SERIES_TYPE, nullable=False),
        sa.Column('portfolio_key', sa.String(96), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('value', sa.Numeric(28, 12), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('series_type', 'date', 'portfolio_key', name='uq_series_type_date_key'),
    )
    op.create_index(
        'ix_series_type_key_date',
        'performance_series',
        ['series_type', 'portfolio_key', 'date'],
    )

    # ==========================================================================
    # SNAPSHOTS
    # ==========================================================================
    op.create_table(
        'roi_dashboard_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('scope', SNAPSHOT_SCOPE, nullable=False),
        sa.Column('portfolio_key', sa.String(96), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('needs_recompute', sa.Boolean(), nullable=False, server_default='true', index=True),
        sa.Column('recompute_from_date', sa.Date(), nullable=True),
        sa.Column('as_of_date', sa.Date(), nullable=True),
        sa.Column('last_computed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('roi_inception', sa.Numeric(20, 8), nullable=True),
        sa.Column('roi_30d', sa.Numeric(20, 8), nullable=True),
        sa.Column('max_drawdown', sa.Numeric(20, 8), nullable=True),
        sa.Column('volatility', sa.Numeric(20, 8), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('scope', 'portfolio_key', name='uq_snapshot_scope_key'),
    )

    # ==========================================================================
    # DASHBOARD CONTENT
    # ==========================================================================
    op.create_table(
        'change_log_events',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('title', sa.String(120), nullable=False),
        sa.Column('summary', sa.String(300), nullable=False),
        sa.Column('link_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'dashboard_settings',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('inception_date', sa.Date(), nullable=True),
        sa.Column('disclaimer_text', sa.Text(), nullable=False),
        sa.Column('show_btc_benchmark', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_eth_benchmark', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_simulator', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_change_log', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('show_allocation', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('dashboard_settings')
    op.drop_table('change_log_events')
    op.drop_table('roi_dashboard_snapshots')
    op.drop_index('ix_series_type_key_date', table_name='performance_series')
    op.drop_table('performance_series')
    op.drop_table('asset_prices_daily')
    op.drop_table('allocation_snapshots')
    op.drop_index('ix_signal_tier_category_published', table_name='portfolio_daily_signals')
    op.drop_table('portfolio_daily_signals')

    op.execute('DROP TYPE IF EXISTS riskprofile')
    op.execute('DROP TYPE IF EXISTS seriestype')
    op.execute('DROP TYPE IF EXISTS snapshotscope')
