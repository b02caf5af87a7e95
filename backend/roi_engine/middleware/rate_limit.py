# backend/roi_engine/middleware/rate_limit.py
"""
Rate limiting for the ROI API (slowapi).

Limits protect the database from dashboard polling loops and keep the
price provider quota safe from repeated ingest/backfill calls. Values live
in services/constants.py:

    RATE_LIMIT_READ    public reads (/api/roi, /api/roi/dashboard)
    RATE_LIMIT_ADMIN   admin mutations
    RATE_LIMIT_JOB     recompute triggers (cron, backfill, refresh, ingest)
    RATE_LIMIT_IMPORT  CSV imports
    RATE_LIMIT_HEALTH  health checks

Key: client IP (forwarded headers only from trusted proxies).
Storage: in-memory, per process.

Usage:
    @router.get("/roi")
    @limiter.limit(RATE_LIMIT_READ)
    def get_roi(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from roi_engine.config import settings
from roi_engine.services.constants import (
    RATE_LIMIT_ADMIN,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_IMPORT,
    RATE_LIMIT_JOB,
    RATE_LIMIT_READ,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def _get_client_ip(request: Request) -> str:
    """
    Client address for rate limit keys.

    X-Forwarded-For / X-Real-IP are honoured only when the direct peer is a
    trusted proxy (or TRUST_PROXY_HEADERS is set), so clients cannot pick
    their own bucket.
    """
    direct_ip = get_remote_address(request)
    if settings.trust_proxy_headers or direct_ip in settings.trusted_proxy_ips:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip
    return direct_ip


limiter = Limiter(
    key_func=_get_client_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=not settings.is_test,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the standard ErrorDetail shape, with Retry-After."""
    limit_info = str(exc.detail) if exc.detail else "Rate limit exceeded"
    logger.warning(f"Rate limit exceeded for {_get_client_ip(request)}: {limit_info}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimitError",
            "message": f"Too many requests. {limit_info}",
            "details": {"retry_after": RETRY_AFTER_SECONDS},
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


__all__ = [
    "limiter",
    "rate_limit_exceeded_handler",
    "SlowAPIMiddleware",
    "RATE_LIMIT_DEFAULT",
    "RATE_LIMIT_READ",
    "RATE_LIMIT_ADMIN",
    "RATE_LIMIT_JOB",
    "RATE_LIMIT_IMPORT",
    "RATE_LIMIT_HEALTH",
]
