# backend/roi_engine/utils/__init__.py
"""
Cross-cutting utilities for the ROI engine.

- logging: Logging setup with correlation ID support
- context: Correlation ID storage for requests and job runs
- date_utils: UTC calendar-day helpers
"""

from roi_engine.utils.context import (
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    set_correlation_id,
)
from roi_engine.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "new_correlation_id",
    "correlation_scope",
]
