# backend/tests/services/analytics/test_returns.py
"""
Unit tests for return calculations.

These tests verify the pure calculation logic WITHOUT database dependencies.
All tests use known values that can be verified by hand.

Test Coverage:
- roi_since_inception: first-to-last percent return
- roi_last_n_days: trailing window anchored on or before the cutoff
- daily_returns: consecutive simple returns
- monthly_returns / monthly_return_stats: calendar-month buckets
- population_std_dev
"""

from datetime import date
from decimal import Decimal

import pytest

from roi_engine.services.analytics.returns import (
    daily_returns,
    find_on_or_before,
    monthly_return_stats,
    monthly_returns,
    population_std_dev,
    roi_last_n_days,
    roi_since_inception,
)
from tests.conftest import series_points


# =============================================================================
# ROI SINCE INCEPTION
# =============================================================================

class TestRoiSinceInception:
    """Tests for roi_since_inception()."""

    def test_positive_return(self):
        points = series_points(date(2024, 1, 1), [100, 110, 121])
        assert roi_since_inception(points) == Decimal("21")

    def test_negative_return(self):
        points = series_points(date(2024, 1, 1), [100, 80])
        assert roi_since_inception(points) == Decimal("-20")

    def test_order_does_not_matter(self):
        points = series_points(date(2024, 1, 1), [100, 110, 121])
        assert roi_since_inception(list(reversed(points))) == Decimal("21")

    def test_single_point_is_none(self):
        assert roi_since_inception(series_points(date(2024, 1, 1), [100])) is None

    def test_empty_is_none(self):
        assert roi_since_inception([]) is None

    def test_non_positive_first_value_is_none(self):
        assert roi_since_inception(series_points(date(2024, 1, 1), [0, 110])) is None


# =============================================================================
# TRAILING ROI
# =============================================================================

class TestRoiLastNDays:
    """Tests for roi_last_n_days()."""

    def test_anchors_on_exact_cutoff(self):
        # 41 daily points 100..140; cutoff is day 10 (value 110)
        points = series_points(date(2024, 1, 1), list(range(100, 141)))
        result = roi_last_n_days(points, 30)
        assert float(result) == pytest.approx(27.2727272727, rel=1e-9)

    def test_anchors_on_nearest_point_before_cutoff(self):
        # Weekly points: cutoff 2024-01-06 falls between 01-01 and 01-08
        points = series_points(date(2024, 1, 1), [100, 120, 120, 120, 120, 150], step_days=7)
        assert roi_last_n_days(points, 30) == Decimal("50")

    def test_short_series_falls_back_to_first_point(self):
        points = series_points(date(2024, 1, 1), [100, 105, 110])
        assert roi_last_n_days(points, 30) == Decimal("10")

    def test_single_point_is_none(self):
        assert roi_last_n_days(series_points(date(2024, 1, 1), [100]), 30) is None


class TestFindOnOrBefore:
    """Tests for find_on_or_before()."""

    def test_exact_and_between(self):
        points = series_points(date(2024, 1, 1), [1, 2, 3], step_days=2)
        assert find_on_or_before(points, date(2024, 1, 3)).value == Decimal("2")
        assert find_on_or_before(points, date(2024, 1, 4)).value == Decimal("2")

    def test_before_first_is_none(self):
        points = series_points(date(2024, 1, 5), [1])
        assert find_on_or_before(points, date(2024, 1, 1)) is None


# =============================================================================
# DAILY / MONTHLY RETURNS
# =============================================================================

class TestDailyReturns:
    """Tests for daily_returns()."""

    def test_simple_returns(self):
        points = series_points(date(2024, 1, 1), [100, 110, 99])
        assert daily_returns(points) == [Decimal("0.1"), Decimal("-0.1")]

    def test_single_point_has_no_returns(self):
        assert daily_returns(series_points(date(2024, 1, 1), [100])) == []


class TestMonthlyReturns:
    """Tests for monthly_returns() and monthly_return_stats()."""

    @pytest.fixture
    def two_months(self):
        return [
            *series_points(date(2024, 1, 1), [100]),
            *series_points(date(2024, 1, 31), [110]),
            *series_points(date(2024, 2, 1), [110]),
            *series_points(date(2024, 2, 29), [99]),
        ]

    def test_buckets_by_calendar_month(self, two_months):
        months = monthly_returns(two_months)

        assert [month.month for month in months] == ["2024-01", "2024-02"]
        assert months[0].return_value == Decimal("0.1")
        assert months[1].return_value == Decimal("-0.1")
        assert months[0].return_pct == Decimal("10")

    def test_single_point_month_is_flat(self):
        months = monthly_returns(series_points(date(2024, 3, 15), [100]))
        assert months[0].return_value == Decimal("0")

    def test_skips_month_with_non_positive_start(self):
        points = [
            *series_points(date(2024, 1, 1), [0, 10]),
            *series_points(date(2024, 2, 1), [10, 12]),
        ]
        assert [month.month for month in monthly_returns(points)] == ["2024-02"]

    def test_stats(self, two_months):
        stats = monthly_return_stats(monthly_returns(two_months))

        assert stats.count == 2
        assert stats.best.month == "2024-01"
        assert stats.worst.month == "2024-02"
        assert stats.mean == Decimal("0")
        assert stats.median == Decimal("0")
        assert stats.std_dev == Decimal("0.1")
        assert (stats.winning_months, stats.losing_months, stats.flat_months) == (1, 1, 0)

    def test_stats_of_nothing(self):
        stats = monthly_return_stats([])
        assert stats.count == 0
        assert stats.best is None
        assert stats.to_dict()["mean_pct"] is None


class TestPopulationStdDev:
    """Tests for population_std_dev()."""

    def test_known_value(self):
        values = [Decimal(v) for v in (2, 4, 4, 4, 5, 5, 7, 9)]
        assert population_std_dev(values) == Decimal("2")

    def test_constant_series(self):
        assert population_std_dev([Decimal("1"), Decimal("1")]) == Decimal("0")

    def test_empty(self):
        assert population_std_dev([]) is None
