# backend/roi_engine/utils/context.py
"""
Request and job context for the ROI engine.

Holds the correlation ID of the current request (or job run) in a
ContextVar so every log line written while serving it can be traced back.
ContextVars propagate through async/await and are isolated per thread, so
the FastAPI threadpool and background tasks each see their own value.

Usage:
    from roi_engine.utils.context import correlation_scope, get_correlation_id

    with correlation_scope("cron-2024-06-01"):
        logger.info("...")  # stamped with cron-2024-06-01
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Correlation ID of the current context, or None outside a request/job."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def new_correlation_id(prefix: str | None = None) -> str:
    """A fresh UUID, optionally prefixed with the job name ("cron-<uuid>")."""
    value = str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Run a block under a correlation ID, restoring the previous one afterwards.

    Scripts and jobs outside the HTTP middleware use this so their logs are
    traceable the same way request logs are.
    """
    value = correlation_id or new_correlation_id()
    token = _correlation_id_var.set(value)
    try:
        yield value
    finally:
        _correlation_id_var.reset(token)
