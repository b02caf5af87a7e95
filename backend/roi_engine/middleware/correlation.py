# backend/roi_engine/middleware/correlation.py
"""
Correlation ID middleware for request tracing.

For each request the correlation ID is taken from X-Correlation-ID, then
X-Request-ID, else a new UUID is generated. It is stored in the request
context (picked up by the logging filter) and echoed in the
X-Correlation-ID response header.

Usage:
    app.add_middleware(CorrelationIdMiddleware)

    curl -H "X-Correlation-ID: trace-123" http://localhost:8000/api/roi
    # < X-Correlation-ID: trace-123
"""

import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from roi_engine.utils.context import clear_correlation_id, new_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to every request and its response."""

    async def dispatch(
            self,
            request: Request,
            call_next: Callable[[Request], Response],
    ) -> Response:
        correlation_id = (
            request.headers.get(CORRELATION_ID_HEADER)
            or request.headers.get(REQUEST_ID_HEADER)
            or new_correlation_id()
        )
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()
