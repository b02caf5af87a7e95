# backend/roi_engine/schemas/admin.py
"""
Pydantic schemas for the admin API (/api/admin/roi).

Request bodies validate shape only (types, lengths, required fields).
Domain rules such as weight sums, portfolio key grammar and CSV row checks
stay in the services so scripts and the API enforce the same thing.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from roi_engine.models import RiskProfile
from roi_engine.schemas.pagination import PaginationMeta

SIGNAL_MAX_LENGTH = 500


# =============================================================================
# JOBS
# =============================================================================

class BackfillRequest(BaseModel):
    """
    Recompute one portfolio from an earlier start.

    `start_date` wins over `days`; with neither, DEFAULT_BACKFILL_DAYS
    before today is used.
    """

    portfolio_key: str = Field(..., min_length=1, max_length=96)
    days: int | None = Field(default=None, ge=1, le=3650)
    start_date: date | None = None
    strict: bool | None = Field(
        default=None,
        description="Fail on the first price/allocation gap (default: NAV_STRICT_GAPS)"
    )


class JobRunResponse(BaseModel):
    """Summary of a sweep (cron trigger or admin refresh)."""

    trigger: str
    started_at: str
    finished_at: str | None = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    prices_ingested: int = 0
    global_refreshed: bool = False
    warnings: list[str] = Field(default_factory=list)
    outcomes: list[dict] = Field(default_factory=list)


class PortfolioRunResponse(BaseModel):
    """Result of recomputing a single portfolio."""

    portfolio_key: str
    status: str = Field(..., description="computed, cleared or failed")
    curve: dict | None = None
    metrics: dict | None = None
    error: str | None = None
    gaps: list[dict] = Field(default_factory=list)
    duration_ms: int = 0


# =============================================================================
# REFERENCE SERIES
# =============================================================================

class SeriesImportRequest(BaseModel):
    series_type: str = Field(..., description="MODEL, BTC or ETH")
    csv_text: str = Field(..., description="Rows of 'date,value', header optional")
    replace_existing: bool = Field(
        default=False,
        description="Delete the stored series before writing"
    )


class SeriesImportResponse(BaseModel):
    series_type: str
    imported: int
    replaced: bool
    deleted: int = 0
    errors: list[dict] = Field(default_factory=list)


class SeriesPointRequest(BaseModel):
    series_type: str
    date: date
    value: Decimal


class SeriesPointResponse(BaseModel):
    date: str
    value: float


class SeriesListResponse(BaseModel):
    series_type: str
    items: list[SeriesPointResponse]
    pagination: PaginationMeta


# =============================================================================
# SETTINGS / CHANGE LOG
# =============================================================================

class DashboardSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inception_date: date | None = None
    disclaimer_text: str
    show_btc_benchmark: bool
    show_eth_benchmark: bool
    show_simulator: bool
    show_change_log: bool
    show_allocation: bool
    updated_at: datetime | None = None


class DashboardSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""

    inception_date: date | None = None
    disclaimer_text: str | None = Field(default=None, max_length=5000)
    show_btc_benchmark: bool | None = None
    show_eth_benchmark: bool | None = None
    show_simulator: bool | None = None
    show_change_log: bool | None = None
    show_allocation: bool | None = None


class ChangeLogCreate(BaseModel):
    date: date
    title: str = Field(..., min_length=1, max_length=120)
    summary: str = Field(..., min_length=1, max_length=300)
    link_url: str | None = Field(default=None, max_length=500)

    @field_validator("title", "summary")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ChangeLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    title: str
    summary: str
    link_url: str | None = None
    created_at: datetime | None = None


# =============================================================================
# SIGNALS / ALLOCATIONS / PRICES
# =============================================================================

class SignalPublishRequest(BaseModel):
    tier: str = Field(..., min_length=1, max_length=16, description="T1, T2 or a legacy tier")
    category: str | None = Field(default=None, max_length=64)
    risk_profile: RiskProfile
    signal: str = Field(..., min_length=1, max_length=SIGNAL_MAX_LENGTH)
    published_at: datetime | None = Field(
        default=None,
        description="Defaults to now; the allocation takes effect on its UTC date"
    )


class AllocationItemIn(BaseModel):
    asset: str = Field(..., min_length=1, max_length=20)
    weight: Decimal


class AllocationWriteRequest(BaseModel):
    portfolio_key: str = Field(..., min_length=1, max_length=96)
    as_of_date: date
    items: list[AllocationItemIn] = Field(..., min_length=1)
    cash_weight: Decimal | None = Field(default=None, description="Stored as a CASH item")


class AllocationResponse(BaseModel):
    portfolio_key: str
    as_of_date: str
    items: list[dict]
    source_signal_id: int | None = None


class ManualPriceIn(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    date: date
    close: Decimal


class ManualPricesRequest(BaseModel):
    prices: list[ManualPriceIn] = Field(..., min_length=1)


class PriceIngestRequest(BaseModel):
    """
    Either a portfolio (its allocated symbols, from its curve start) or an
    explicit symbol list with a start date.
    """

    portfolio_key: str | None = Field(default=None, max_length=96)
    symbols: list[str] | None = None
    start_date: date | None = None
    end_date: date | None = None


class IngestResponse(BaseModel):
    symbols: list[str]
    start_date: str | None = None
    end_date: str | None = None
    rows_written: int = 0
    changed_from: dict[str, str] = Field(default_factory=dict)
    affected_portfolios: dict[str, str] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
