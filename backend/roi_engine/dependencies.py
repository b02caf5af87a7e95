# backend/roi_engine/dependencies.py
"""
Dependency injection for FastAPI routers.

Stateless services and the price provider (which owns an HTTP connection
pool) are lazily created singletons. Services that hold a database session
(SnapshotService, PriceIngestService) are built per request from `get_db`.

Usage in routers:
    from roi_engine.dependencies import get_dashboard_service, require_admin_key

    @router.get("/roi")
    def get_roi(service: DashboardService = Depends(get_dashboard_service)):
        ...

Tests override `get_invalidator` to point fire-and-forget invalidation at
the test session factory, and `get_price_provider` with a fake provider.
"""

import logging
import secrets
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from roi_engine.config import settings
from roi_engine.database import get_db
from roi_engine.services.dashboard.service import DashboardService
from roi_engine.services.dashboard.settings_service import ChangeLogService, DashboardSettingsService
from roi_engine.services.exceptions import AuthorizationError
from roi_engine.services.market_data import CoinGeckoProvider, PriceIngestService, PriceProvider
from roi_engine.services.series_import import SeriesImportService
from roi_engine.services.signals import SignalService
from roi_engine.services.snapshot_service import Invalidator, SnapshotInvalidator, SnapshotService

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_KEY_HEADER = "X-Admin-Key"


# =============================================================================
# SINGLETONS
# =============================================================================
# Order matters: provider and invalidator first, services that take the
# invalidator after.


@lru_cache(maxsize=1)
def get_price_provider() -> PriceProvider:
    """Shared CoinGecko provider (one httpx connection pool per process)."""
    logger.debug("Initializing singleton CoinGeckoProvider")
    return CoinGeckoProvider()


@lru_cache(maxsize=1)
def get_invalidator() -> Invalidator:
    """Fire-and-forget snapshot dirtying in its own session."""
    logger.debug("Initializing singleton SnapshotInvalidator")
    return SnapshotInvalidator()


@lru_cache(maxsize=1)
def get_dashboard_service() -> DashboardService:
    logger.debug("Initializing singleton DashboardService")
    return DashboardService()


def get_signal_service(
        invalidator: Annotated[Invalidator, Depends(get_invalidator)],
) -> SignalService:
    return SignalService(invalidator=invalidator)


def get_series_import_service(
        invalidator: Annotated[Invalidator, Depends(get_invalidator)],
) -> SeriesImportService:
    return SeriesImportService(invalidator=invalidator)


def get_settings_service(
        invalidator: Annotated[Invalidator, Depends(get_invalidator)],
) -> DashboardSettingsService:
    return DashboardSettingsService(invalidator=invalidator)


def get_change_log_service(
        invalidator: Annotated[Invalidator, Depends(get_invalidator)],
) -> ChangeLogService:
    return ChangeLogService(invalidator=invalidator)


# =============================================================================
# REQUEST-SCOPED SERVICES
# =============================================================================


def get_price_ingest_service(
        db: Annotated[Session, Depends(get_db)],
        provider: Annotated[PriceProvider, Depends(get_price_provider)],
) -> PriceIngestService:
    """
    Ingestion bound to the request session.

    No invalidator: affected portfolios are dirtied in the same transaction
    as the price upsert, so a sweep that ingests then recomputes sees them.
    """
    return PriceIngestService(db, provider=provider)


def get_snapshot_service(
        db: Annotated[Session, Depends(get_db)],
        price_ingest: Annotated[PriceIngestService, Depends(get_price_ingest_service)],
) -> SnapshotService:
    return SnapshotService(db, price_ingest=price_ingest)


# =============================================================================
# AUTHORIZATION
# =============================================================================


def _matches(provided: str | None, expected: str) -> bool:
    return provided is not None and secrets.compare_digest(provided.encode(), expected.encode())


def require_admin_key(
        x_admin_key: Annotated[str | None, Header(alias=ADMIN_KEY_HEADER)] = None,
) -> None:
    """
    Guard for /api/admin/*.

    Without ADMIN_API_KEY configured the admin API is open outside
    production (production refuses to start without it).

    Raises:
        AuthorizationError: Header missing or wrong
    """
    expected = settings.admin_api_key
    if not expected:
        if settings.is_production:
            raise AuthorizationError("Admin API key is not configured")
        return
    if not _matches(x_admin_key, expected):
        logger.warning("Rejected admin request with a missing or invalid key")
        raise AuthorizationError("Invalid or missing admin key")


def require_cron_secret(
        credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
        secret: Annotated[str | None, Query(description="Shared cron secret")] = None,
        x_vercel_cron: Annotated[str | None, Header(alias="x-vercel-cron")] = None,
) -> None:
    """
    Guard for the scheduled recompute trigger.

    Accepted: `?secret=`, `Authorization: Bearer <secret>`, or the
    scheduler's `x-vercel-cron` header. Open outside production when no
    CRON_SECRET is configured.

    Raises:
        AuthorizationError: No accepted credential
    """
    if x_vercel_cron:
        return

    expected = settings.cron_secret
    if not expected:
        if settings.is_production:
            raise AuthorizationError("Cron secret is not configured")
        return

    bearer = credentials.credentials if credentials is not None else None
    if _matches(secret, expected) or _matches(bearer, expected):
        return

    logger.warning("Rejected cron trigger with a missing or invalid secret")
    raise AuthorizationError("Invalid or missing cron secret")


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================


def clear_service_caches() -> None:
    """Drop singletons so the next request builds fresh ones (tests, reloads)."""
    get_price_provider.cache_clear()
    get_invalidator.cache_clear()
    get_dashboard_service.cache_clear()
    logger.info("Cleared all service singleton caches")
