# backend/roi_engine/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Registers global exception handlers (service errors -> HTTP)
- Registers the ROI, admin and cron routers
- Defines health endpoints
"""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from roi_engine.config import settings
from roi_engine.database import get_db
from roi_engine.middleware import (
    RATE_LIMIT_HEALTH,
    CorrelationIdMiddleware,
    SlowAPIMiddleware,
    limiter,
    rate_limit_exceeded_handler,
)
from roi_engine.routers import admin_router, cron_router, roi_router
from roi_engine.schemas.errors import ErrorDetail, ValidationErrorDetail
from roi_engine.services.exceptions import (
    AllocationWeightError,
    AuthorizationError,
    CsvValidationError,
    DataGapError,
    DataIntegrityError,
    InvalidPortfolioKeyError,
    MissingAssetError,
    NonPositivePriceError,
    NotFoundError,
    PriceProviderError,
    PriceProviderRateLimitError,
    PriceProviderUnavailableError,
    ServiceError,
    UnsupportedSymbolError,
    ValidationError,
)
from roi_engine.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Portfolio ROI computation and caching engine",
    version="0.1.0",
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# =============================================================================
# MIDDLEWARE (order matters: last added = first executed)
# =============================================================================

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Starlette picks the handler registered for the most specific class in
# the exception's MRO, so subclasses below override their base handlers.
# =============================================================================

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error_response(
        status_code: int,
        exc: Exception,
        details: dict | None = None,
        headers: dict | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=type(exc).__name__,
            message=str(exc),
            details=details,
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle input validation errors (400)."""
    logger.warning(f"Validation error: {exc}")
    return _error_response(400, exc, {"field": exc.field} if exc.field else None)


@app.exception_handler(MissingAssetError)
async def missing_asset_handler(request: Request, exc: MissingAssetError) -> JSONResponse:
    """Handle a risk profile needing an asset the signal lacks (400)."""
    logger.warning(f"Missing asset: {exc}")
    return _error_response(
        400,
        exc,
        {"field": exc.field, "risk_profile": exc.risk_profile, "role": exc.role},
    )


@app.exception_handler(InvalidPortfolioKeyError)
async def invalid_portfolio_key_handler(request: Request, exc: InvalidPortfolioKeyError) -> JSONResponse:
    """Handle unparseable portfolio keys (400)."""
    logger.warning(f"Invalid portfolio key: {exc.portfolio_key} ({exc.reason})")
    return _error_response(400, exc, {"portfolio_key": exc.portfolio_key, "reason": exc.reason})


@app.exception_handler(CsvValidationError)
async def csv_validation_handler(request: Request, exc: CsvValidationError) -> JSONResponse:
    """Handle rejected CSV imports (422 with every row error)."""
    logger.info(f"CSV import rejected: {len(exc.errors)} error(s)")
    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(
            error="CsvValidationError",
            message=str(exc),
            details=exc.errors,
        ).model_dump(),
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing resources (404)."""
    logger.warning(f"Not found: {exc}")
    details = {"resource_type": exc.resource_type, "resource_id": exc.resource_id}
    return _error_response(404, exc, details if exc.resource_type else None)


@app.exception_handler(DataGapError)
async def data_gap_handler(request: Request, exc: DataGapError) -> JSONResponse:
    """Handle strict-mode data gaps (409 with the gap list)."""
    logger.warning(f"Data gap: {exc}")
    return _error_response(409, exc, {"portfolio_key": exc.portfolio_key, "gaps": exc.gaps})


@app.exception_handler(DataIntegrityError)
async def data_integrity_handler(request: Request, exc: DataIntegrityError) -> JSONResponse:
    """Handle corrupt upstream data (422)."""
    logger.error(f"Data integrity error: {exc}")
    return _error_response(422, exc)


@app.exception_handler(NonPositivePriceError)
async def non_positive_price_handler(request: Request, exc: NonPositivePriceError) -> JSONResponse:
    """Handle zero or negative closes (422)."""
    logger.error(f"Non-positive price: {exc}")
    return _error_response(
        422,
        exc,
        {"symbol": exc.symbol, "date": exc.price_date.isoformat(), "price": str(exc.price)},
    )


@app.exception_handler(AllocationWeightError)
async def allocation_weight_handler(request: Request, exc: AllocationWeightError) -> JSONResponse:
    """Handle weights outside [0, 1] or not summing to one (422)."""
    logger.warning(f"Allocation weight error: {exc}")
    return _error_response(422, exc, {"total": str(exc.total)} if exc.total is not None else None)


@app.exception_handler(PriceProviderError)
async def price_provider_error_handler(request: Request, exc: PriceProviderError) -> JSONResponse:
    """Handle generic price provider failures (502)."""
    logger.error(f"Price provider error: {exc}")
    return _error_response(502, exc, {"provider": exc.provider} if exc.provider else None)


@app.exception_handler(PriceProviderUnavailableError)
async def price_provider_unavailable_handler(
        request: Request, exc: PriceProviderUnavailableError
) -> JSONResponse:
    """Handle the provider being down after retries (502)."""
    logger.error(f"Price provider unavailable: {exc}")
    return _error_response(502, exc, {"provider": exc.provider} if exc.provider else None)


@app.exception_handler(PriceProviderRateLimitError)
async def price_provider_rate_limit_handler(
        request: Request, exc: PriceProviderRateLimitError
) -> JSONResponse:
    """Handle provider rate limiting (429 with Retry-After when known)."""
    logger.warning(f"Price provider rate limit: {exc}")
    return _error_response(
        429,
        exc,
        {"provider": exc.provider, "retry_after": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)} if exc.retry_after else None,
    )


@app.exception_handler(UnsupportedSymbolError)
async def unsupported_symbol_handler(request: Request, exc: UnsupportedSymbolError) -> JSONResponse:
    """Handle symbols the provider cannot price (400)."""
    logger.warning(f"Unsupported symbol: {exc.symbol}")
    return _error_response(400, exc, {"symbol": exc.symbol, "provider": exc.provider})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    """Handle missing or wrong cron/admin secrets (401)."""
    return _error_response(401, exc)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle any other service error (500)."""
    logger.error(f"Service error: {exc}")
    return _error_response(500, exc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Convert FastAPI's {"detail": ...} into the ErrorDetail format."""
    error_types = {
        400: "BadRequestError",
        401: "UnauthorizedError",
        403: "ForbiddenError",
        404: "NotFoundError",
        405: "MethodNotAllowedError",
        409: "ConflictError",
        422: "ValidationError",
        429: "RateLimitError",
        500: "InternalServerError",
        503: "ServiceUnavailableError",
    }
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorDetail(
            error=error_types.get(exc.status_code, "HTTPError"),
            message=str(exc.detail) if exc.detail else "An error occurred",
            details=None,
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation failures (422)."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(
            error="ValidationError",
            message="Request validation failed",
            details=errors,
        ).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(roi_router)  # /api/roi/*
app.include_router(admin_router)  # /api/admin/roi/*
app.include_router(cron_router)  # /api/cron/*


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Database connectivity plus price provider configuration.

    Returns **503** when the database is unreachable.
    """
    checks = {
        "price_provider": {
            "status": "configured",
            "critical": False,
            "api_key_present": bool(settings.coingecko_api_key),
        },
    }
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy", "critical": True}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {"status": "unhealthy", "critical": True, "error": str(e)}
        return JSONResponse(status_code=503, content={"status": "unhealthy", "checks": checks})

    return {"status": "healthy", "checks": checks}


@app.get("/health/live", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def liveness_check(request: Request):
    """Always 200 while the process is up."""
    return {"status": "alive"}
