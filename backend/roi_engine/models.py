# backend/roi_engine/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String, Text, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Boolean, JSON, Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


DEFAULT_DISCLAIMER = (
    "This dashboard is for educational purposes only and does not constitute financial advice."
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class RiskProfile(str, enum.Enum):
    AGGRESSIVE = "AGGRESSIVE"
    SEMI = "SEMI"
    CONSERVATIVE = "CONSERVATIVE"


class SeriesType(str, enum.Enum):
    """
    Kinds of stored time series.

    MODEL_NAV is computed per portfolio by the equity curve builder.
    MODEL, BTC and ETH are imported reference series shared by the dashboard.
    """
    MODEL = "MODEL"
    MODEL_NAV = "MODEL_NAV"
    BTC = "BTC"
    ETH = "ETH"


class SnapshotScope(str, enum.Enum):
    PORTFOLIO = "PORTFOLIO"
    GLOBAL = "GLOBAL"


class PortfolioDailySignal(Base):
    """
    A published trading signal. Read-only to the engine once stored.

    `tier` is kept as published (legacy tiers included); mapping to the
    current tier vocabulary happens in services.tier_mapping.
    """
    __tablename__ = "portfolio_daily_signals"
    __table_args__ = (
        Index('ix_signal_tier_category_published', 'tier', 'category', 'published_at'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    tier: Mapped[str] = mapped_column(String(16))
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    risk_profile: Mapped[RiskProfile] = mapped_column(Enum(RiskProfile))
    signal: Mapped[str] = mapped_column(Text)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AllocationSnapshot(Base):
    """
    Weights in effect for a portfolio from `as_of_date` until the next snapshot.

    `items` is an ordered list of {"asset": "BTC", "weight": "0.8"}; weights are
    stored as decimal strings so they round-trip exactly.
    """
    __tablename__ = "allocation_snapshots"
    __table_args__ = (
        UniqueConstraint('portfolio_key', 'as_of_date', name='uq_allocation_key_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_key: Mapped[str] = mapped_column(String(96), index=True)
    as_of_date: Mapped[date] = mapped_column(Date)
    items: Mapped[list] = mapped_column(JSON, default=list)
    source_signal_id: Mapped[int | None] = mapped_column(
        ForeignKey("portfolio_daily_signals.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AssetPriceDaily(Base):
    __tablename__ = "asset_prices_daily"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', name='uq_asset_price_symbol_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    date: Mapped[date] = mapped_column(Date)
    close: Mapped[Decimal] = mapped_column(Numeric(28, 12))
    source: Mapped[str] = mapped_column(String(20), default="coingecko")
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PerformanceSeries(Base):
    """
    One point of a named daily series.

    The unique key (series_type, date, portfolio_key) is what makes every
    recompute an idempotent upsert.
    """
    __tablename__ = "performance_series"
    __table_args__ = (
        UniqueConstraint('series_type', 'date', 'portfolio_key', name='uq_series_type_date_key'),
        Index('ix_series_type_key_date', 'series_type', 'portfolio_key', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    series_type: Mapped[SeriesType] = mapped_column(Enum(SeriesType))
    portfolio_key: Mapped[str] = mapped_column(String(96))
    date: Mapped[date] = mapped_column(Date)
    value: Mapped[Decimal] = mapped_column(Numeric(28, 12))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class RoiDashboardSnapshot(Base):
    """
    Cached dashboard payload for one (scope, portfolio_key).

    State machine:
        needs_recompute=False  -> Clean, payload authoritative as of as_of_date
        needs_recompute=True   -> Dirty; recompute from recompute_from_date on
        last_error set         -> last run failed; stays dirty for the next sweep
    """
    __tablename__ = "roi_dashboard_snapshots"
    __table_args__ = (
        UniqueConstraint('scope', 'portfolio_key', name='uq_snapshot_scope_key'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    scope: Mapped[SnapshotScope] = mapped_column(Enum(SnapshotScope))
    portfolio_key: Mapped[str] = mapped_column(String(96))
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    needs_recompute: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    recompute_from_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    as_of_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Denormalized KPIs for cheap reads (percent values)
    roi_inception: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    roi_30d: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    max_drawdown: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    volatility: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ChangeLogEvent(Base):
    __tablename__ = "change_log_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    date: Mapped[date] = mapped_column(Date, index=True)
    title: Mapped[str] = mapped_column(String(120))
    summary: Mapped[str] = mapped_column(String(300))
    link_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class DashboardSetting(Base):
    """Single-row dashboard configuration overlaid on the charts."""
    __tablename__ = "dashboard_settings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    inception_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    disclaimer_text: Mapped[str] = mapped_column(Text, default=DEFAULT_DISCLAIMER)
    show_btc_benchmark: Mapped[bool] = mapped_column(Boolean, default=True)
    show_eth_benchmark: Mapped[bool] = mapped_column(Boolean, default=True)
    show_simulator: Mapped[bool] = mapped_column(Boolean, default=True)
    show_change_log: Mapped[bool] = mapped_column(Boolean, default=True)
    show_allocation: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
