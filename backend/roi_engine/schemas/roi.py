# backend/roi_engine/schemas/roi.py
"""
Pydantic schemas for the public ROI API.

Design decisions:
- Fields are snake_case, query parameters included
- Percent values are floats already scaled to percent (12.5 = 12.5%)
- NAV is a float; the Decimal source of truth stays in the database
- Null means "not computable yet" (fewer than two NAV points, no prices)
- Dates are ISO "YYYY-MM-DD" strings, timestamps ISO 8601
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


# =============================================================================
# PORTFOLIO VIEW
# =============================================================================

class NavPoint(BaseModel):
    date: str
    nav: float


class AllocationWeight(BaseModel):
    asset: str
    weight: float = Field(..., description="Fraction of the portfolio (0.8 = 80%)")


class RoiKpis(BaseModel):
    """Headline metrics, all in percent."""

    roi_inception: float | None = Field(None, description="ROI since the first NAV point")
    roi_30d: float | None = Field(None, description="ROI over the trailing 30 calendar days")
    max_drawdown: float | None = Field(None, description="Largest peak-to-trough fall (negative)")
    volatility: float | None = Field(None, description="Annualized volatility of daily returns")
    as_of_date: str | None = None


class LastRebalance(BaseModel):
    effective_date: str | None = None
    allocations: list[AllocationWeight] = Field(default_factory=list)


class PortfolioRoiResponse(BaseModel):
    """
    Cached ROI view of one portfolio.

    status:
        ok        snapshot clean and inputs fresh
        updating  a recompute is pending
        stale     signal newer than the NAV, or prices too old or missing
        error     nothing to show and the last run failed
    """

    portfolio_key: str
    status: str = Field(..., description="ok, updating, stale or error")
    needs_recompute: bool = False
    as_of_date: str | None = None
    last_computed_at: str | None = None
    last_signal_date: str | None = None
    last_price_date: str | None = None
    primary_symbol: str | None = None
    primary_ticker: str | None = None
    last_error: str | None = None
    nav_series: list[NavPoint] = Field(default_factory=list)
    kpis: RoiKpis
    last_rebalance: LastRebalance | None = None


# =============================================================================
# GLOBAL DASHBOARD
# =============================================================================

class DashboardSeries(BaseModel):
    model: list[dict] = Field(default_factory=list)
    btc: list[dict] = Field(default_factory=list)
    eth: list[dict] = Field(default_factory=list)


class DashboardResponse(BaseModel):
    """
    GLOBAL dashboard payload as cached on the snapshot, plus its status.

    Nested blocks are passed through as built by the payload assembler.
    """

    settings: dict = Field(default_factory=dict)
    series: DashboardSeries = Field(default_factory=DashboardSeries)
    allocation: dict | None = None
    change_log_events: list[dict] = Field(default_factory=list)
    metrics: dict = Field(default_factory=dict)
    benchmarks: dict = Field(default_factory=dict)
    monthly_returns: list[dict] = Field(default_factory=list)
    monthly_stats: dict = Field(default_factory=dict)
    validation: dict = Field(default_factory=dict)
    status: str
    last_error: str | None = None
    last_computed_at: str | None = None


# =============================================================================
# SIMULATOR
# =============================================================================

class SimulateRequest(BaseModel):
    """Invest `amount` on `start_date`, optionally adding a monthly contribution."""

    amount: Decimal = Field(..., gt=0, description="Initial investment")
    start_date: date | None = Field(
        default=None,
        description="Defaults to the dashboard inception date"
    )
    monthly_contribution: Decimal = Field(default=Decimal("0"), ge=0)


class SimulationPoint(BaseModel):
    date: str
    balance: float


class SimulationResult(BaseModel):
    start_date: str | None = None
    final_balance: float | None = None
    total_contributed: float | None = None
    profit: float | None = None
    roi_pct: float | None = None
    max_drawdown_pct: float | None = None
    max_drawdown_amount: float | None = None
    series: list[SimulationPoint] = Field(default_factory=list)


class SimulateResponse(BaseModel):
    amount: float
    monthly_contribution: float
    start_date: str
    results: dict[str, SimulationResult] = Field(
        ...,
        description="Keyed by model, btc and eth"
    )
