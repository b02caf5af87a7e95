# backend/roi_engine/services/dashboard/simulator.py
"""
Investment simulator.

Replays a stored series as if `starting_capital` had been invested on the
nearest point on or before `start_date`, optionally adding a fixed
contribution on the first day of every following month. Each contribution
grows with the series from the point in effect on its date.

All arithmetic is Decimal; results are serialized by to_dict().
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from roi_engine.services import numeric
from roi_engine.services.analytics.returns import find_on_or_before, sort_points
from roi_engine.services.constants import HUNDRED, ZERO
from roi_engine.services.series_store import SeriesPoint


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: Decimal


@dataclass
class SimulationResult:
    start_date: date | None = None
    series: list[BalancePoint] = field(default_factory=list)
    final_balance: Decimal = ZERO
    total_contributed: Decimal = ZERO
    profit: Decimal = ZERO
    roi_pct: Decimal = ZERO
    max_drawdown_pct: Decimal = ZERO
    max_drawdown_amount: Decimal = ZERO

    def to_dict(self, include_series: bool = True) -> dict:
        data = {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "final_balance": numeric.to_num(self.final_balance),
            "total_contributed": numeric.to_num(self.total_contributed),
            "profit": numeric.to_num(self.profit),
            "roi_pct": numeric.to_num(self.roi_pct),
            "max_drawdown_pct": numeric.to_num(self.max_drawdown_pct),
            "max_drawdown_amount": numeric.to_num(self.max_drawdown_amount),
        }
        if include_series:
            data["series"] = [
                {"date": point.date.isoformat(), "balance": numeric.to_num(point.balance)}
                for point in self.series
            ]
        return data


def contribution_dates(start_date: date, end_date: date) -> list[date]:
    """First day of each month after start_date (or from it, if it is the 1st) up to end_date."""
    if start_date.day == 1:
        cursor = start_date
    else:
        cursor = _add_month(start_date.replace(day=1))

    dates = []
    while cursor <= end_date:
        dates.append(cursor)
        cursor = _add_month(cursor)
    return dates


def _add_month(value: date) -> date:
    if value.month == 12:
        return value.replace(year=value.year + 1, month=1)
    return value.replace(month=value.month + 1)


def _drawdown(series: list[BalancePoint]) -> tuple[Decimal, Decimal]:
    worst_pct, worst_amount = ZERO, ZERO
    if len(series) < 2:
        return worst_pct, worst_amount

    peak = series[0].balance
    for point in series:
        if numeric.gt(point.balance, peak):
            peak = point.balance
            continue
        if numeric.gt(peak, ZERO):
            pct = numeric.mul(numeric.sub(numeric.safe_div(point.balance, peak), 1), HUNDRED)
            if numeric.lt(pct, worst_pct):
                worst_pct = pct
                worst_amount = numeric.sub(peak, point.balance)
    return worst_pct, worst_amount


def run_simulation(
        points: list[SeriesPoint],
        starting_capital: Decimal,
        start_date: date,
        monthly_contribution: Decimal = ZERO,
) -> SimulationResult:
    """
    Simulate an investment that follows `points`.

    Args:
        points: Series to follow (any order)
        starting_capital: Initial amount (negative treated as 0)
        start_date: Requested start; resolved to the nearest point on or before
        monthly_contribution: Added on the 1st of each month (negative treated as 0)
    """
    ordered = sort_points(points)
    if not ordered:
        return SimulationResult()

    capital = numeric.max_of(starting_capital, ZERO)
    contribution = numeric.max_of(monthly_contribution, ZERO)

    start_point = find_on_or_before(ordered, start_date) or ordered[0]
    start_value = start_point.value
    window = [point for point in ordered if point.date >= start_point.date]
    last_date = ordered[-1].date

    dates = contribution_dates(start_point.date, last_date) if numeric.gt(contribution, ZERO) else []
    anchors = [(day, find_on_or_before(ordered, day)) for day in dates]

    series: list[BalancePoint] = []
    for point in window:
        if numeric.gt(start_value, ZERO):
            balance = numeric.mul(capital, numeric.safe_div(point.value, start_value))
        else:
            balance = capital
        for day, anchor in anchors:
            if anchor is None or point.date < day:
                continue
            growth = numeric.safe_div(point.value, anchor.value) if numeric.gt(anchor.value, ZERO) else 1
            balance = numeric.add(balance, numeric.mul(growth, contribution))
        series.append(BalancePoint(date=point.date, balance=balance))

    total_contributed = numeric.add(capital, numeric.mul(contribution, len(dates)))
    final_balance = series[-1].balance if series else capital
    profit = numeric.sub(final_balance, total_contributed)
    drawdown_pct, drawdown_amount = _drawdown(series)

    return SimulationResult(
        start_date=start_point.date,
        series=series,
        final_balance=final_balance,
        total_contributed=total_contributed,
        profit=profit,
        roi_pct=numeric.mul(numeric.safe_div(profit, total_contributed), HUNDRED),
        max_drawdown_pct=drawdown_pct,
        max_drawdown_amount=drawdown_amount,
    )
