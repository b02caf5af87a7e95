# backend/roi_engine/services/analytics/returns.py
"""
Return calculation functions for the metrics engine.

Pure functions over ascending SeriesPoint lists:
- ROI since inception: (last / first - 1) * 100
- ROI over the trailing N days, anchored on the nearest point on or before
  last_date - N (the first point when the series is shorter)
- Daily simple returns
- Monthly returns (last / first - 1 within each calendar month) and their
  aggregate statistics

Every computation goes through services.numeric; nothing here touches float.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from itertools import groupby

from roi_engine.services import numeric
from roi_engine.services.analytics.types import MonthlyReturn, MonthlyReturnStats
from roi_engine.services.constants import HUNDRED, ONE, ROI_LOOKBACK_DAYS, ZERO
from roi_engine.services.series_store import SeriesPoint
from roi_engine.utils.date_utils import month_key

logger = logging.getLogger(__name__)


def _ratio_pct(end_value: Decimal, start_value: Decimal) -> Decimal | None:
    if numeric.lte(start_value, ZERO):
        return None
    return numeric.mul(numeric.sub(numeric.safe_div(end_value, start_value), ONE), HUNDRED)


def sort_points(points: list[SeriesPoint]) -> list[SeriesPoint]:
    return sorted(points, key=lambda point: point.date)


def roi_since_inception(points: list[SeriesPoint]) -> Decimal | None:
    """
    Percent return from the first to the last point.

    Returns None for fewer than two points or a non-positive first value.

    Example:
        [100, 110, 121] -> Decimal("21")
    """
    if len(points) < 2:
        return None
    ordered = sort_points(points)
    return _ratio_pct(ordered[-1].value, ordered[0].value)


def find_on_or_before(points: list[SeriesPoint], target) -> SeriesPoint | None:
    """Latest point with date <= target in an ascending list."""
    found = None
    for point in points:
        if point.date > target:
            break
        found = point
    return found


def roi_last_n_days(points: list[SeriesPoint], days: int = ROI_LOOKBACK_DAYS) -> Decimal | None:
    """
    Percent return over the trailing `days` calendar days.

    Anchors on the nearest point on or before (last date - days); falls back
    to the first point when the series is shorter than the window.
    """
    if len(points) < 2:
        return None
    ordered = sort_points(points)
    last = ordered[-1]
    anchor = find_on_or_before(ordered, last.date - timedelta(days=days)) or ordered[0]
    return _ratio_pct(last.value, anchor.value)


def daily_returns(points: list[SeriesPoint]) -> list[Decimal]:
    """Simple returns between consecutive points (fractions)."""
    ordered = sort_points(points)
    return [
        numeric.sub(numeric.safe_div(current.value, previous.value), ONE)
        for previous, current in zip(ordered, ordered[1:])
    ]


# =============================================================================
# MONTHLY RETURNS
# =============================================================================

def monthly_returns(points: list[SeriesPoint]) -> list[MonthlyReturn]:
    """
    Group points by calendar month, chronologically.

    A month with a single point has a return of zero. Months with a
    non-positive first value are skipped.
    """
    results: list[MonthlyReturn] = []
    for key, group in groupby(sort_points(points), key=lambda point: month_key(point.date)):
        month_points = list(group)
        first, last = month_points[0], month_points[-1]
        if numeric.lte(first.value, ZERO):
            logger.warning(f"Skipping month {key}: non-positive first value {first.value}")
            continue
        results.append(MonthlyReturn(
            month=key,
            start_date=first.date,
            end_date=last.date,
            start_value=first.value,
            end_value=last.value,
            return_value=numeric.sub(numeric.safe_div(last.value, first.value), ONE),
        ))
    return results


def _median(values: list[Decimal]) -> Decimal:
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return numeric.safe_div(numeric.add(ordered[middle - 1], ordered[middle]), 2)


def population_std_dev(values: list[Decimal]) -> Decimal | None:
    """sqrt(sum((x - mean)^2) / n); None for an empty list."""
    if not values:
        return None
    mean = numeric.safe_div(numeric.total(values), len(values))
    squared = numeric.total(numeric.pow(numeric.sub(value, mean), 2) for value in values)
    return numeric.sqrt(numeric.safe_div(squared, len(values)))


def monthly_return_stats(months: list[MonthlyReturn]) -> MonthlyReturnStats:
    """Best/worst month, mean, median, population std dev and win/loss counts."""
    stats = MonthlyReturnStats(count=len(months))
    if not months:
        return stats

    values = [month.return_value for month in months]
    stats.best = max(months, key=lambda month: month.return_value)
    stats.worst = min(months, key=lambda month: month.return_value)
    stats.mean = numeric.safe_div(numeric.total(values), len(values))
    stats.median = _median(values)
    stats.std_dev = population_std_dev(values)
    stats.winning_months = sum(1 for value in values if numeric.gt(value, ZERO))
    stats.losing_months = sum(1 for value in values if numeric.lt(value, ZERO))
    stats.flat_months = stats.count - stats.winning_months - stats.losing_months
    return stats
