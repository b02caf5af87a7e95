# backend/roi_engine/routers/roi.py
"""
Public ROI endpoints.

Reads are served from the snapshot cache; `force_refresh=true` recomputes
synchronously before answering. Otherwise a pending recompute only shows
up as `status: "updating"` and the last good numbers are returned.

Endpoints:
- GET  /api/roi            per-portfolio NAV series, KPIs and status
- GET  /api/roi/dashboard  GLOBAL dashboard payload
- POST /api/roi/simulate   investment simulator over MODEL, BTC and ETH
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from roi_engine.database import get_db
from roi_engine.dependencies import get_dashboard_service
from roi_engine.middleware.rate_limit import RATE_LIMIT_JOB, RATE_LIMIT_READ, limiter
from roi_engine.schemas.roi import (
    DashboardResponse,
    PortfolioRoiResponse,
    SimulateRequest,
    SimulateResponse,
)
from roi_engine.services.constants import DEFAULT_RANGE, RANGE_DAYS
from roi_engine.services.dashboard.service import DashboardService

logger = logging.getLogger(__name__)

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/api/roi",
    tags=["ROI"],
)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get(
    "",
    response_model=PortfolioRoiResponse,
    summary="Portfolio ROI",
    response_description="NAV series, KPIs and freshness status",
)
@limiter.limit(RATE_LIMIT_READ)
def get_portfolio_roi(
        request: Request,  # Required for rate limiting
        portfolio_key: str | None = Query(
            default=None,
            description="e.g. t1_none_semi; defaults to the latest T1 risk profile",
        ),
        range_key: str = Query(
            default=DEFAULT_RANGE,
            alias="range",
            description=f"One of: {', '.join(RANGE_DAYS)}",
        ),
        force_refresh: bool = Query(default=False),
        db: Session = Depends(get_db),
        service: DashboardService = Depends(get_dashboard_service),
) -> PortfolioRoiResponse:
    """
    Get the ROI view of one portfolio.

    - **nav_series** is windowed by `range` (counted back from the last NAV point)
    - **kpis** always cover the whole history
    - **status** is `ok`, `updating`, `stale` or `error`

    Raises **400** for an invalid portfolio key or range.
    """
    view = service.get_portfolio_roi(
        db,
        portfolio_key=portfolio_key,
        range_key=range_key,
        force_refresh=force_refresh,
    )
    return PortfolioRoiResponse.model_validate(view)


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Global dashboard",
)
@limiter.limit(RATE_LIMIT_READ)
def get_dashboard(
        request: Request,  # Required for rate limiting
        force_refresh: bool = Query(default=False),
        db: Session = Depends(get_db),
        service: DashboardService = Depends(get_dashboard_service),
) -> DashboardResponse:
    """
    Get the GLOBAL dashboard: reference series, allocation, change log,
    metrics, benchmarks, monthly returns and the validation summary.

    The payload is built on first access and then served from cache until
    an import, settings change or change-log edit dirties it.
    """
    return DashboardResponse.model_validate(service.get_global(db, force_refresh=force_refresh))


@router.post(
    "/simulate",
    response_model=SimulateResponse,
    summary="Investment simulator",
)
@limiter.limit(RATE_LIMIT_JOB)
def simulate(
        request: Request,  # Required for rate limiting
        body: SimulateRequest,
        db: Session = Depends(get_db),
        service: DashboardService = Depends(get_dashboard_service),
) -> SimulateResponse:
    """
    Replay an investment in MODEL, BTC and ETH over the same window.

    Raises **404** when the simulator is switched off in dashboard settings.
    """
    result = service.simulate(
        db,
        amount=body.amount,
        start_date=body.start_date,
        monthly_contribution=body.monthly_contribution,
    )
    return SimulateResponse.model_validate(result)
