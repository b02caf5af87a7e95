# backend/roi_engine/services/analytics/types.py
"""
Data types for the metrics engine.

All values are Decimal. Percent-valued fields are named *_pct or documented
as percent; monthly returns are kept as fractions (0.05 = 5%) with a
percent view for payloads. Conversion to float happens only in to_dict().

Architecture:
    - SeriesPoint (from series_store): input (date, value)
    - DrawdownPoint: running peak and drawdown for one day
    - MonthlyReturn / MonthlyReturnStats: calendar-month buckets
    - SeriesMetrics: headline numbers for one series
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from roi_engine.services.constants import HUNDRED
from roi_engine.services.numeric import mul, to_num


def _date_key(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class DrawdownPoint:
    """
    Attributes:
        peak: Running maximum up to and including this day
        drawdown_pct: (value / peak - 1) * 100, always <= 0
    """
    date: date
    value: Decimal
    peak: Decimal
    drawdown_pct: Decimal

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "value": to_num(self.value),
            "peak": to_num(self.peak),
            "drawdown_pct": to_num(self.drawdown_pct),
        }


@dataclass(frozen=True)
class MonthlyReturn:
    """
    Return of one calendar month: last point / first point - 1.

    Attributes:
        month: "YYYY-MM"
        return_value: Fractional return
    """
    month: str
    start_date: date
    end_date: date
    start_value: Decimal
    end_value: Decimal
    return_value: Decimal

    @property
    def return_pct(self) -> Decimal:
        return mul(self.return_value, HUNDRED)

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "return_pct": to_num(self.return_pct),
        }


@dataclass
class MonthlyReturnStats:
    """Aggregate statistics over monthly returns (fractions)."""
    count: int = 0
    best: MonthlyReturn | None = None
    worst: MonthlyReturn | None = None
    mean: Decimal | None = None
    median: Decimal | None = None
    std_dev: Decimal | None = None
    winning_months: int = 0
    losing_months: int = 0
    flat_months: int = 0

    def to_dict(self) -> dict:
        def pct(value: Decimal | None) -> float | None:
            return to_num(mul(value, HUNDRED)) if value is not None else None

        return {
            "count": self.count,
            "best": self.best.to_dict() if self.best else None,
            "worst": self.worst.to_dict() if self.worst else None,
            "mean_pct": pct(self.mean),
            "median_pct": pct(self.median),
            "std_dev_pct": pct(self.std_dev),
            "winning_months": self.winning_months,
            "losing_months": self.losing_months,
            "flat_months": self.flat_months,
        }


@dataclass
class SeriesMetrics:
    """
    Headline metrics for one series. Percent values; None when the series is
    too short to say anything.
    """
    roi_inception: Decimal | None = None
    roi_30d: Decimal | None = None
    max_drawdown: Decimal | None = None
    volatility: Decimal | None = None
    first_date: date | None = None
    last_date: date | None = None
    last_value: Decimal | None = None
    point_count: int = 0
    monthly_returns: list[MonthlyReturn] = field(default_factory=list)
    monthly_stats: MonthlyReturnStats = field(default_factory=MonthlyReturnStats)

    def to_dict(self, include_monthly: bool = True) -> dict:
        data = {
            "roi_inception": to_num(self.roi_inception),
            "roi_30d": to_num(self.roi_30d),
            "max_drawdown": to_num(self.max_drawdown),
            "volatility": to_num(self.volatility),
            "first_date": _date_key(self.first_date),
            "last_date": _date_key(self.last_date),
            "last_value": to_num(self.last_value),
            "point_count": self.point_count,
        }
        if include_monthly:
            data["monthly_returns"] = [m.to_dict() for m in self.monthly_returns]
            data["monthly_stats"] = self.monthly_stats.to_dict()
        return data
