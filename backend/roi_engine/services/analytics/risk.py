# backend/roi_engine/services/analytics/risk.py
"""
Risk calculation functions for the metrics engine.

This module contains pure functions for:
- Drawdown series: running peak and (value / peak - 1) * 100 per point
- Max Drawdown: minimum of the drawdown series (<= 0, percent)
- Volatility: population std dev of daily returns, annualized over
  calendar days

Formulas:
    peak_t = max(value_0 .. value_t)
    drawdown_t = (value_t / peak_t - 1) * 100

    Volatility (annualized) = std(daily_returns) * sqrt(365) * 100
"""

import logging
from decimal import Decimal

from roi_engine.services import numeric
from roi_engine.services.analytics.returns import daily_returns, population_std_dev, sort_points
from roi_engine.services.analytics.types import DrawdownPoint
from roi_engine.services.constants import CALENDAR_DAYS_PER_YEAR, HUNDRED, ONE, ZERO
from roi_engine.services.series_store import SeriesPoint

logger = logging.getLogger(__name__)


# =============================================================================
# DRAWDOWN
# =============================================================================

def drawdown_series(points: list[SeriesPoint]) -> list[DrawdownPoint]:
    """
    Running-peak drawdown for every point.

    Each value is <= 0 and exactly 0 whenever the point sets a new peak.
    """
    result: list[DrawdownPoint] = []
    peak: Decimal | None = None

    for point in sort_points(points):
        peak = point.value if peak is None else numeric.max_of(peak, point.value)
        if numeric.lte(peak, ZERO):
            drawdown = ZERO
        else:
            drawdown = numeric.min_of(
                numeric.mul(numeric.sub(numeric.safe_div(point.value, peak), ONE), HUNDRED),
                ZERO,
            )
        result.append(DrawdownPoint(
            date=point.date,
            value=point.value,
            peak=peak,
            drawdown_pct=drawdown,
        ))

    return result


def max_drawdown(points: list[SeriesPoint]) -> Decimal | None:
    """Deepest drawdown in percent (<= 0); None for an empty series."""
    series = drawdown_series(points)
    if not series:
        return None
    return min(point.drawdown_pct for point in series)


# =============================================================================
# VOLATILITY
# =============================================================================

def annualized_volatility(points: list[SeriesPoint]) -> Decimal | None:
    """
    Annualized volatility of daily returns in percent.

    Returns None when fewer than two returns are available.
    """
    returns = daily_returns(points)
    if len(returns) < 2:
        return None

    daily_std = population_std_dev(returns)
    annualization = numeric.sqrt(CALENDAR_DAYS_PER_YEAR)
    return numeric.mul(numeric.mul(daily_std, annualization), HUNDRED)
