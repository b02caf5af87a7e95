# backend/roi_engine/routers/admin.py
"""
Admin endpoints for the ROI engine.

Every route requires the X-Admin-Key header (see require_admin_key).
Mutations commit first and then dirty the affected snapshot; nothing here
recomputes except /backfill and /refresh, which run synchronously.

Endpoints (prefix /api/admin/roi):
- POST   /backfill            recompute one portfolio from an earlier start
- POST   /refresh             force-recompute one portfolio now
- GET    /diagnostics         why a portfolio looks the way it does
- POST   /series/import       CSV import of MODEL/BTC/ETH
- GET    /series              page through a reference series
- POST   /series              write or correct one point
- GET    /settings            dashboard settings
- PUT    /settings            update dashboard settings
- GET    /change-log          list change-log events
- POST   /change-log          add an event
- DELETE /change-log/{id}     remove an event
- POST   /signals             publish a signal (derives the allocation)
- POST   /allocation          write an allocation snapshot directly
- POST   /prices              manual daily closes
- POST   /prices/ingest       fetch closes from the price provider
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from roi_engine.config import settings
from roi_engine.database import get_db
from roi_engine.dependencies import (
    get_change_log_service,
    get_price_ingest_service,
    get_series_import_service,
    get_settings_service,
    get_signal_service,
    get_snapshot_service,
    require_admin_key,
)
from roi_engine.middleware.rate_limit import RATE_LIMIT_ADMIN, RATE_LIMIT_IMPORT, RATE_LIMIT_JOB, limiter
from roi_engine.schemas.admin import (
    AllocationResponse,
    AllocationWriteRequest,
    BackfillRequest,
    ChangeLogCreate,
    ChangeLogResponse,
    DashboardSettingsResponse,
    DashboardSettingsUpdate,
    IngestResponse,
    ManualPricesRequest,
    PortfolioRunResponse,
    PriceIngestRequest,
    SeriesImportRequest,
    SeriesImportResponse,
    SeriesListResponse,
    SeriesPointRequest,
    SeriesPointResponse,
    SignalPublishRequest,
)
from roi_engine.schemas.pagination import PaginationMeta
from roi_engine.services import numeric
from roi_engine.services.dashboard.settings_service import ChangeLogService, DashboardSettingsService
from roi_engine.services.diagnostics import diagnose_portfolio
from roi_engine.services.exceptions import ValidationError
from roi_engine.services.market_data import PriceIngestService
from roi_engine.services.portfolio_key import parse_portfolio_key
from roi_engine.services.series_import import SeriesImportService, parse_series_type
from roi_engine.services.signals import SignalService, allocation_to_dict
from roi_engine.services.snapshot_service import SnapshotService
from roi_engine.utils.date_utils import utc_today

logger = logging.getLogger(__name__)

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/api/admin/roi",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key)],
)


# =============================================================================
# JOBS
# =============================================================================

@router.post("/backfill", response_model=PortfolioRunResponse, summary="Backfill a portfolio")
@limiter.limit(RATE_LIMIT_JOB)
def backfill(
        request: Request,  # Required for rate limiting
        body: BackfillRequest,
        service: SnapshotService = Depends(get_snapshot_service),
) -> PortfolioRunResponse:
    """
    Recompute a portfolio from `start_date` (or `days` back from today).

    Runs synchronously and returns the curve range, points written, gaps
    and metrics. In strict mode a missing price or allocation aborts the
    run with **409** and the gap list.
    """
    key = parse_portfolio_key(body.portfolio_key).key
    start_date = body.start_date or utc_today() - timedelta(
        days=body.days or settings.default_backfill_days
    )
    outcome = service.backfill(key, start_date, strict=body.strict)
    return PortfolioRunResponse.model_validate(outcome.to_dict())


@router.post("/refresh", response_model=PortfolioRunResponse, summary="Force refresh a portfolio")
@limiter.limit(RATE_LIMIT_JOB)
def refresh(
        request: Request,  # Required for rate limiting
        portfolio_key: str = Query(..., min_length=1),
        service: SnapshotService = Depends(get_snapshot_service),
) -> PortfolioRunResponse:
    """Recompute now from the watermark, ignoring the dirty flag."""
    key = parse_portfolio_key(portfolio_key).key
    outcome = service.force_refresh(key)
    return PortfolioRunResponse.model_validate(outcome.to_dict())


@router.get("/diagnostics", summary="Portfolio diagnostics")
@limiter.limit(RATE_LIMIT_ADMIN)
def diagnostics(
        request: Request,  # Required for rate limiting
        portfolio_key: str = Query(..., min_length=1),
        db: Session = Depends(get_db),
) -> dict:
    """
    Latest signal, allocation, NAV point and price date per allocated
    symbol, snapshot state and provider configuration. Read-only.
    """
    return diagnose_portfolio(db, portfolio_key).to_dict()


# =============================================================================
# REFERENCE SERIES
# =============================================================================

@router.post("/series/import", response_model=SeriesImportResponse, summary="Import a reference series")
@limiter.limit(RATE_LIMIT_IMPORT)
def import_series(
        request: Request,  # Required for rate limiting
        body: SeriesImportRequest,
        db: Session = Depends(get_db),
        service: SeriesImportService = Depends(get_series_import_service),
) -> SeriesImportResponse:
    """
    Import `date,value` rows for MODEL, BTC or ETH.

    All-or-nothing: any bad row returns **422** with every row error and
    nothing is written.
    """
    result = service.import_csv(
        db,
        body.series_type,
        body.csv_text,
        replace_existing=body.replace_existing,
    )
    return SeriesImportResponse.model_validate(result.to_dict())


@router.get("/series", response_model=SeriesListResponse, summary="List a reference series")
@limiter.limit(RATE_LIMIT_ADMIN)
def list_series(
        request: Request,  # Required for rate limiting
        series_type: str = Query(...),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=50, ge=1, le=500),
        db: Session = Depends(get_db),
        service: SeriesImportService = Depends(get_series_import_service),
) -> SeriesListResponse:
    """Points newest first."""
    series = parse_series_type(series_type)
    total, rows = service.list_points(db, series, page=page, page_size=page_size)
    return SeriesListResponse(
        series_type=series.value,
        items=[
            SeriesPointResponse(date=row.date.isoformat(), value=numeric.to_num(row.value))
            for row in rows
        ],
        pagination=PaginationMeta.create(total=total, page=page, page_size=page_size),
    )


@router.post("/series", response_model=SeriesPointResponse, summary="Write one series point")
@limiter.limit(RATE_LIMIT_ADMIN)
def upsert_series_point(
        request: Request,  # Required for rate limiting
        body: SeriesPointRequest,
        db: Session = Depends(get_db),
        service: SeriesImportService = Depends(get_series_import_service),
) -> SeriesPointResponse:
    point = service.upsert_point(db, body.series_type, body.date, body.value)
    return SeriesPointResponse(date=point.date.isoformat(), value=numeric.to_num(point.value))


# =============================================================================
# SETTINGS / CHANGE LOG
# =============================================================================

@router.get("/settings", response_model=DashboardSettingsResponse, summary="Get dashboard settings")
@limiter.limit(RATE_LIMIT_ADMIN)
def get_settings(
        request: Request,  # Required for rate limiting
        db: Session = Depends(get_db),
        service: DashboardSettingsService = Depends(get_settings_service),
) -> DashboardSettingsResponse:
    return DashboardSettingsResponse.model_validate(service.get_or_create_default(db))


@router.put("/settings", response_model=DashboardSettingsResponse, summary="Update dashboard settings")
@limiter.limit(RATE_LIMIT_ADMIN)
def update_settings(
        request: Request,  # Required for rate limiting
        body: DashboardSettingsUpdate,
        db: Session = Depends(get_db),
        service: DashboardSettingsService = Depends(get_settings_service),
) -> DashboardSettingsResponse:
    """Only the fields present in the body change; dirties the GLOBAL snapshot."""
    result = service.update_settings(db, **body.model_dump(exclude_unset=True))
    return DashboardSettingsResponse.model_validate(result.settings)


@router.get("/change-log", response_model=list[ChangeLogResponse], summary="List change-log events")
@limiter.limit(RATE_LIMIT_ADMIN)
def list_change_log(
        request: Request,  # Required for rate limiting
        limit: int | None = Query(default=None, ge=1, le=500),
        db: Session = Depends(get_db),
        service: ChangeLogService = Depends(get_change_log_service),
) -> list[ChangeLogResponse]:
    return [ChangeLogResponse.model_validate(event) for event in service.list_events(db, limit=limit)]


@router.post(
    "/change-log",
    response_model=ChangeLogResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a change-log event",
)
@limiter.limit(RATE_LIMIT_ADMIN)
def create_change_log_event(
        request: Request,  # Required for rate limiting
        body: ChangeLogCreate,
        db: Session = Depends(get_db),
        service: ChangeLogService = Depends(get_change_log_service),
) -> ChangeLogResponse:
    event = service.create_event(db, body.date, body.title, body.summary, link_url=body.link_url)
    return ChangeLogResponse.model_validate(event)


@router.delete(
    "/change-log/{event_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a change-log event",
)
@limiter.limit(RATE_LIMIT_ADMIN)
def delete_change_log_event(
        request: Request,  # Required for rate limiting
        event_id: int,
        db: Session = Depends(get_db),
        service: ChangeLogService = Depends(get_change_log_service),
) -> Response:
    """Raises **404** if the event does not exist."""
    service.delete_event(db, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# SIGNALS / ALLOCATIONS / PRICES
# =============================================================================

@router.post("/signals", status_code=status.HTTP_201_CREATED, summary="Publish a signal")
@limiter.limit(RATE_LIMIT_ADMIN)
def publish_signal(
        request: Request,  # Required for rate limiting
        body: SignalPublishRequest,
        db: Session = Depends(get_db),
        service: SignalService = Depends(get_signal_service),
) -> dict:
    """
    Store a signal, derive the allocation for its portfolio key and dirty
    that portfolio from the publish date.

    Raises **400** for an unknown tier, a tier/category mismatch, a signal
    naming no known asset, or a risk profile missing a required asset.
    """
    result = service.publish(
        db,
        tier=body.tier,
        category=body.category,
        risk_profile=body.risk_profile,
        signal=body.signal,
        published_at=body.published_at,
    )
    return result.to_dict()


@router.post(
    "/allocation",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Write an allocation snapshot",
)
@limiter.limit(RATE_LIMIT_ADMIN)
def write_allocation(
        request: Request,  # Required for rate limiting
        body: AllocationWriteRequest,
        db: Session = Depends(get_db),
        service: SignalService = Depends(get_signal_service),
) -> AllocationResponse:
    """
    Weights must lie in [0, 1] and sum to one (**422** otherwise). Use
    portfolio key `dashboard` for the GLOBAL display allocation.
    """
    snapshot = service.write_allocation(
        db,
        body.portfolio_key,
        body.as_of_date,
        [(item.asset, item.weight) for item in body.items],
        cash_weight=body.cash_weight,
    )
    return AllocationResponse.model_validate(allocation_to_dict(snapshot))


@router.post("/prices", response_model=IngestResponse, summary="Store manual daily closes")
@limiter.limit(RATE_LIMIT_ADMIN)
def store_manual_prices(
        request: Request,  # Required for rate limiting
        body: ManualPricesRequest,
        service: PriceIngestService = Depends(get_price_ingest_service),
) -> IngestResponse:
    """Overwrites existing closes; portfolios holding a changed symbol are dirtied."""
    result = service.store_manual_prices(
        [(price.symbol, price.date, price.close) for price in body.prices]
    )
    return IngestResponse.model_validate(result.to_dict())


@router.post("/prices/ingest", response_model=IngestResponse, summary="Fetch closes from the provider")
@limiter.limit(RATE_LIMIT_JOB)
def ingest_prices(
        request: Request,  # Required for rate limiting
        body: PriceIngestRequest,
        service: PriceIngestService = Depends(get_price_ingest_service),
) -> IngestResponse:
    """
    With `portfolio_key`: that portfolio's allocated symbols from its curve
    start. Otherwise `symbols` and `start_date` are required.

    Raises **502** when the provider is down for every symbol, **429** when
    it rate-limits us.
    """
    if body.portfolio_key:
        key = parse_portfolio_key(body.portfolio_key).key
        result = service.ingest_for_portfolio(key, end_date=body.end_date)
    else:
        if not body.symbols:
            raise ValidationError("Either portfolio_key or symbols is required", field="symbols")
        if body.start_date is None:
            raise ValidationError("start_date is required with symbols", field="start_date")
        result = service.ingest(body.symbols, body.start_date, body.end_date)
    return IngestResponse.model_validate(result.to_dict())
