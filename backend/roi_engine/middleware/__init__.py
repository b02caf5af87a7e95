# backend/roi_engine/middleware/__init__.py
"""
ASGI middleware for the ROI engine: correlation IDs and rate limiting.

Usage:
    from roi_engine.middleware import CorrelationIdMiddleware, limiter

    app.add_middleware(CorrelationIdMiddleware)
    app.state.limiter = limiter
"""

from roi_engine.middleware.correlation import CorrelationIdMiddleware
from roi_engine.middleware.rate_limit import (
    RATE_LIMIT_ADMIN,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_IMPORT,
    RATE_LIMIT_JOB,
    RATE_LIMIT_READ,
    SlowAPIMiddleware,
    limiter,
    rate_limit_exceeded_handler,
)

__all__ = [
    "CorrelationIdMiddleware",
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
