# backend/roi_engine/services/analytics/metrics.py
"""
MetricsCalculator: one entry point for every metric of a series.

Used by the snapshot service (KPI columns and payload), the read API and
the audit script. Inputs are SeriesPoint lists as loaded from
performance_series; outputs are Decimal until the payload boundary.
"""

import logging

from roi_engine.services.analytics.returns import (
    monthly_return_stats,
    monthly_returns,
    roi_last_n_days,
    roi_since_inception,
    sort_points,
)
from roi_engine.services.analytics.risk import annualized_volatility, max_drawdown
from roi_engine.services.analytics.types import SeriesMetrics
from roi_engine.services.constants import ROI_LOOKBACK_DAYS
from roi_engine.services.series_store import SeriesPoint

logger = logging.getLogger(__name__)


class MetricsCalculator:
    """Calculator for all series metrics."""

    @staticmethod
    def calculate_all(
            points: list[SeriesPoint],
            lookback_days: int = ROI_LOOKBACK_DAYS,
            include_monthly: bool = True,
    ) -> SeriesMetrics:
        """
        Calculate headline metrics (and optionally monthly breakdown).

        Args:
            points: Series points in any order
            lookback_days: Window of the trailing ROI
            include_monthly: Also compute monthly returns and their stats

        Returns:
            SeriesMetrics; fields stay None where the series is too short
        """
        ordered = sort_points(points)
        result = SeriesMetrics(point_count=len(ordered))
        if not ordered:
            return result

        result.first_date = ordered[0].date
        result.last_date = ordered[-1].date
        result.last_value = ordered[-1].value
        result.roi_inception = roi_since_inception(ordered)
        result.roi_30d = roi_last_n_days(ordered, lookback_days)
        result.max_drawdown = max_drawdown(ordered)
        result.volatility = annualized_volatility(ordered)

        if include_monthly:
            result.monthly_returns = monthly_returns(ordered)
            result.monthly_stats = monthly_return_stats(result.monthly_returns)

        logger.debug(
            f"Metrics over {len(ordered)} points: roi={result.roi_inception}, "
            f"roi_{lookback_days}d={result.roi_30d}, mdd={result.max_drawdown}"
        )
        return result
