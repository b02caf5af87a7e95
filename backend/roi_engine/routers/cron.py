# backend/roi_engine/routers/cron.py
"""
Scheduled recompute trigger.

The scheduler calls this once a day (GET or POST). It ingests missing
prices, recomputes every dirty portfolio and refreshes the GLOBAL snapshot.
Failures are per portfolio and reported in the body; the request itself
succeeds unless authorization fails.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from roi_engine.dependencies import get_snapshot_service, require_cron_secret
from roi_engine.middleware.rate_limit import RATE_LIMIT_JOB, limiter
from roi_engine.schemas.admin import JobRunResponse
from roi_engine.services.portfolio_key import parse_portfolio_key
from roi_engine.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["Cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.api_route(
    "/portfolio-roi",
    methods=["GET", "POST"],
    response_model=JobRunResponse,
    summary="Run the portfolio ROI job",
)
@limiter.limit(RATE_LIMIT_JOB)
def run_portfolio_roi_job(
        request: Request,  # Required for rate limiting
        portfolio_key: str | None = Query(default=None, description="Restrict to one portfolio"),
        trigger: str = Query(default="cron", max_length=32),
        ingest_prices: bool = Query(default=True),
        service: SnapshotService = Depends(get_snapshot_service),
) -> JobRunResponse:
    """
    Sweep pending portfolios.

    Authorized by `?secret=`, `Authorization: Bearer <secret>` or the
    `x-vercel-cron` header.
    """
    key = parse_portfolio_key(portfolio_key).key if portfolio_key else None
    result = service.run_pending(portfolio_key=key, trigger=trigger, ingest_prices=ingest_prices)
    if result.failed:
        logger.warning(f"ROI job ({trigger}) finished with {result.failed} failed portfolio(s)")
    return JobRunResponse.model_validate(result.to_dict())
