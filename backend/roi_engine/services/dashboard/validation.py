# backend/roi_engine/services/dashboard/validation.py
"""
Dashboard validation summary.

Checks the data a dashboard payload is built from and reports problems as
human-readable errors (payload should not be trusted) and warnings (payload
is usable but incomplete or old).

Rules:
    - MODEL series empty -> error; BTC / ETH empty -> warning
    - non-positive value -> error
    - dates not strictly increasing -> warning
    - latest point older than 7 days -> warning
    - allocation missing -> warning
    - allocation weight outside [0, 1] or sum off by more than 0.005 -> error
    - settings missing -> error
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from roi_engine.services import numeric
from roi_engine.services.allocation import AllocationItem
from roi_engine.services.constants import (
    ONE,
    SERIES_STALE_DAYS,
    VALIDATION_WEIGHT_TOLERANCE,
    ZERO,
)
from roi_engine.services.series_store import SeriesPoint
from roi_engine.utils.date_utils import utc_today


@dataclass
class ValidationSummary:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationSummary") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def to_dict(self) -> dict:
        return {
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "is_valid": self.is_valid,
        }


def validate_series(
        points: Sequence[SeriesPoint],
        label: str,
        allow_empty: bool = False,
        today: date | None = None,
) -> ValidationSummary:
    """Validate one series. Points are checked in the order given."""
    summary = ValidationSummary()

    if not points:
        message = f"{label} series has no data."
        if allow_empty:
            summary.warnings.append(message)
        else:
            summary.errors.append(message)
        return summary

    if any(numeric.lte(point.value, ZERO) for point in points):
        summary.errors.append(f"{label} series contains non-positive values.")

    if any(current.date <= previous.date for previous, current in zip(points, points[1:])):
        summary.warnings.append(f"{label} series dates are not strictly increasing.")

    age_days = ((today or utc_today()) - max(point.date for point in points)).days
    if age_days > SERIES_STALE_DAYS:
        summary.warnings.append(f"{label} series has not been updated in {age_days} days.")

    return summary


def validate_allocation(items: Sequence[AllocationItem] | None) -> ValidationSummary:
    summary = ValidationSummary()

    if items is None:
        summary.warnings.append("Allocation snapshot is missing.")
        return summary

    for item in items:
        if numeric.lt(item.weight, ZERO) or numeric.gt(item.weight, ONE):
            summary.errors.append(f"Allocation weight for {item.symbol} must be between 0 and 1.")
            break

    weight_sum = numeric.total(item.weight for item in items)
    if numeric.gt(abs(numeric.sub(weight_sum, ONE)), VALIDATION_WEIGHT_TOLERANCE):
        summary.errors.append("Allocation weights must sum to 1.0 within 0.5% tolerance.")

    return summary


def validate_dashboard(
        settings_present: bool,
        model_series: Sequence[SeriesPoint],
        btc_series: Sequence[SeriesPoint],
        eth_series: Sequence[SeriesPoint],
        allocation: Sequence[AllocationItem] | None,
        today: date | None = None,
) -> ValidationSummary:
    """
    Build the validation summary shown alongside the dashboard.

    Args:
        settings_present: Whether a dashboard_settings row exists
        model_series / btc_series / eth_series: Series as stored (ascending)
        allocation: Items of the latest dashboard allocation, or None
        today: Reference date for staleness (default: today UTC)
    """
    summary = ValidationSummary()

    if not settings_present:
        summary.errors.append("Dashboard settings are missing.")

    summary.extend(validate_series(model_series, "Model", today=today))
    summary.extend(validate_series(btc_series, "BTC", allow_empty=True, today=today))
    summary.extend(validate_series(eth_series, "ETH", allow_empty=True, today=today))
    summary.extend(validate_allocation(allocation))

    return summary
