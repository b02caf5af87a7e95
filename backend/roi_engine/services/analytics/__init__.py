# backend/roi_engine/services/analytics/__init__.py
"""
Metrics engine package.

Pure Decimal functions over (date, value) series:
- ROI since inception and over a trailing window
- Drawdown series and max drawdown
- Monthly returns and their statistics
- Annualized volatility

Architecture:
    analytics/
    ├── __init__.py              # This file - package exports
    ├── types.py                 # Result dataclasses
    ├── returns.py               # ROI, daily and monthly returns
    ├── risk.py                  # Drawdown, volatility
    └── metrics.py               # MetricsCalculator (all at once)

Usage:
    from roi_engine.services.analytics import MetricsCalculator

    metrics = MetricsCalculator.calculate_all(points)
    print(metrics.roi_inception, metrics.max_drawdown)
"""

from roi_engine.services.analytics.metrics import MetricsCalculator
from roi_engine.services.analytics.returns import (
    daily_returns,
    find_on_or_before,
    monthly_return_stats,
    monthly_returns,
    population_std_dev,
    roi_last_n_days,
    roi_since_inception,
)
from roi_engine.services.analytics.risk import (
    annualized_volatility,
    drawdown_series,
    max_drawdown,
)
from roi_engine.services.analytics.types import (
    DrawdownPoint,
    MonthlyReturn,
    MonthlyReturnStats,
    SeriesMetrics,
)

__all__ = [
    "MetricsCalculator",

    # Types
    "DrawdownPoint",
    "MonthlyReturn",
    "MonthlyReturnStats",
    "SeriesMetrics",

    # Individual functions (for testing)
    "roi_since_inception",
    "roi_last_n_days",
    "find_on_or_before",
    "daily_returns",
    "monthly_returns",
    "monthly_return_stats",
    "population_std_dev",
    "drawdown_series",
    "max_drawdown",
    "annualized_volatility",
]
