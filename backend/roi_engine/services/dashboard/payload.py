# backend/roi_engine/services/dashboard/payload.py
"""
GLOBAL dashboard payload builder.

Reads the shared reference series (MODEL, BTC, ETH under the "dashboard"
key), the dashboard allocation, settings and recent change-log events, and
assembles the payload cached in the GLOBAL snapshot:

    {settings, series: {model, btc, eth}, allocation, change_log_events,
     metrics, benchmarks, monthly_returns, validation}

ROI figures are computed independently for each series so the dashboard
can compare the model with buy-and-hold on the same basis.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roi_engine.models import (
    DEFAULT_DISCLAIMER,
    AllocationSnapshot,
    ChangeLogEvent,
    DashboardSetting,
    PerformanceSeries,
    SeriesType,
)
from roi_engine.services import numeric
from roi_engine.services.allocation import AllocationItem, items_from_snapshot
from roi_engine.services.analytics import MetricsCalculator, SeriesMetrics
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY, HUNDRED, ONE, ZERO
from roi_engine.services.dashboard.validation import validate_dashboard
from roi_engine.services.series_store import SeriesPoint, load_series
from roi_engine.services.tickers import is_cash
from roi_engine.utils.date_utils import to_date_key, utc_today

logger = logging.getLogger(__name__)

RECENT_CHANGE_LOG_EVENTS = 5


def settings_payload(record: DashboardSetting | None, fallback_inception: str | None) -> dict:
    """Settings as served to the dashboard; defaults when the row is missing."""
    if record is None:
        return {
            "inception_date": fallback_inception,
            "disclaimer_text": DEFAULT_DISCLAIMER,
            "show_btc_benchmark": True,
            "show_eth_benchmark": True,
            "show_simulator": True,
            "show_change_log": True,
            "show_allocation": True,
        }
    return {
        "inception_date": to_date_key(record.inception_date) or fallback_inception,
        "disclaimer_text": record.disclaimer_text,
        "show_btc_benchmark": record.show_btc_benchmark,
        "show_eth_benchmark": record.show_eth_benchmark,
        "show_simulator": record.show_simulator,
        "show_change_log": record.show_change_log,
        "show_allocation": record.show_allocation,
    }


def change_log_payload(event: ChangeLogEvent) -> dict:
    return {
        "id": event.id,
        "date": to_date_key(event.date),
        "title": event.title,
        "summary": event.summary,
        "link_url": event.link_url,
    }


def series_payload(points: list[SeriesPoint]) -> list[dict]:
    return [{"date": point.date.isoformat(), "value": numeric.to_num(point.value)} for point in points]


def allocation_split(items: list[AllocationItem] | None) -> tuple[Decimal, Decimal]:
    """(invested %, cash %) of an allocation; zeros when there is none."""
    if not items:
        return ZERO, ZERO
    cash = numeric.total(item.weight for item in items if is_cash(item.symbol))
    cash = numeric.min_of(numeric.max_of(cash, ZERO), ONE)
    cash_pct = numeric.mul(cash, HUNDRED)
    return numeric.max_of(numeric.sub(HUNDRED, cash_pct), ZERO), cash_pct


def _latest_update(db: Session):
    candidates = [
        db.scalar(select(func.max(DashboardSetting.updated_at))),
        db.scalar(
            select(func.max(AllocationSnapshot.created_at))
            .where(AllocationSnapshot.portfolio_key == GLOBAL_PORTFOLIO_KEY)
        ),
        db.scalar(select(func.max(ChangeLogEvent.created_at))),
        db.scalar(
            select(func.max(PerformanceSeries.updated_at))
            .where(PerformanceSeries.portfolio_key == GLOBAL_PORTFOLIO_KEY)
        ),
    ]
    present = [value for value in candidates if value is not None]
    return max(present) if present else None


def build_global_payload(db: Session) -> tuple[dict, SeriesMetrics]:
    """
    Assemble the GLOBAL payload from the store.

    Returns:
        (payload, metrics of the MODEL series)
    """
    model = load_series(db, SeriesType.MODEL, GLOBAL_PORTFOLIO_KEY)
    btc = load_series(db, SeriesType.BTC, GLOBAL_PORTFOLIO_KEY)
    eth = load_series(db, SeriesType.ETH, GLOBAL_PORTFOLIO_KEY)

    settings_record = db.scalar(select(DashboardSetting).order_by(DashboardSetting.id.asc()).limit(1))
    allocation_record = db.scalar(
        select(AllocationSnapshot)
        .where(AllocationSnapshot.portfolio_key == GLOBAL_PORTFOLIO_KEY)
        .order_by(AllocationSnapshot.as_of_date.desc())
        .limit(1)
    )
    events = db.scalars(
        select(ChangeLogEvent)
        .order_by(ChangeLogEvent.date.desc(), ChangeLogEvent.id.desc())
        .limit(RECENT_CHANGE_LOG_EVENTS)
    ).all()

    allocation_items = items_from_snapshot(allocation_record.items) if allocation_record else None
    model_metrics = MetricsCalculator.calculate_all(model)
    btc_metrics = MetricsCalculator.calculate_all(btc, include_monthly=False)
    eth_metrics = MetricsCalculator.calculate_all(eth, include_monthly=False)
    invested_pct, cash_pct = allocation_split(allocation_items)

    fallback_inception = model[0].date.isoformat() if model else utc_today().isoformat()
    last_updated = _latest_update(db)
    as_of_date = (
        to_date_key(allocation_record.as_of_date) if allocation_record
        else to_date_key(model_metrics.last_date)
    )

    validation = validate_dashboard(
        settings_present=settings_record is not None,
        model_series=model,
        btc_series=btc,
        eth_series=eth,
        allocation=allocation_items,
    )

    payload = {
        "settings": settings_payload(settings_record, fallback_inception),
        "series": {
            "model": series_payload(model),
            "btc": series_payload(btc),
            "eth": series_payload(eth),
        },
        "allocation": {
            "as_of_date": to_date_key(allocation_record.as_of_date),
            "items": [
                {"asset": item.symbol, "weight": numeric.to_num(item.weight)}
                for item in allocation_items
            ],
        } if allocation_record else None,
        "change_log_events": [change_log_payload(event) for event in events],
        "metrics": {
            "roi_since_inception_pct": numeric.to_num(model_metrics.roi_inception),
            "roi_last_30_days_pct": numeric.to_num(model_metrics.roi_30d),
            "max_drawdown_pct": numeric.to_num(model_metrics.max_drawdown),
            "volatility_pct": numeric.to_num(model_metrics.volatility),
            "invested_pct": numeric.to_num(invested_pct),
            "cash_pct": numeric.to_num(cash_pct),
            "last_updated_at": last_updated.isoformat() if last_updated else None,
            "as_of_date": as_of_date,
        },
        "benchmarks": {
            "btc": btc_metrics.to_dict(include_monthly=False),
            "eth": eth_metrics.to_dict(include_monthly=False),
        },
        "monthly_returns": [month.to_dict() for month in model_metrics.monthly_returns],
        "monthly_stats": model_metrics.monthly_stats.to_dict(),
        "validation": validation.to_dict(),
    }

    logger.debug(
        f"Built global payload: model={len(model)}, btc={len(btc)}, eth={len(eth)} points, "
        f"{len(validation.errors)} error(s), {len(validation.warnings)} warning(s)"
    )
    return payload, model_metrics
