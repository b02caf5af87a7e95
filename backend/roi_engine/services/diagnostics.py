# backend/roi_engine/services/diagnostics.py
"""
Read-only diagnostics for one portfolio.

Answers "why does this dashboard look stale?" straight from the data model:
latest signal, latest allocation, latest NAV point, latest price date per
allocated symbol, snapshot state and price provider configuration. Nothing
is computed or written.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roi_engine.config import settings
from roi_engine.models import AssetPriceDaily, SeriesType
from roi_engine.services import numeric
from roi_engine.services.allocation import items_from_snapshot, parse_signal_assets
from roi_engine.services.portfolio_key import parse_portfolio_key
from roi_engine.services.series_store import latest_point
from roi_engine.services.signals import latest_allocation, latest_signal
from roi_engine.services.snapshot_service import get_snapshot
from roi_engine.services.tickers import canonical_ticker
from roi_engine.utils.date_utils import to_date_key

logger = logging.getLogger(__name__)


@dataclass
class PortfolioDiagnostics:
    portfolio_key: str
    latest_signal: dict | None = None
    latest_allocation: dict | None = None
    latest_nav: dict | None = None
    latest_price_dates: list[dict] = field(default_factory=list)
    snapshot: dict | None = None
    provider_config: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "portfolio_key": self.portfolio_key,
            "latest_signal": self.latest_signal,
            "latest_allocation": self.latest_allocation,
            "latest_nav": self.latest_nav,
            "latest_price_dates": self.latest_price_dates,
            "snapshot": self.snapshot,
            "provider_config": self.provider_config,
        }


def latest_price_dates(db: Session, tickers: list[str]) -> dict[str, date | None]:
    """Latest stored close date per ticker (None when there is none)."""
    if not tickers:
        return {}
    rows = db.execute(
        select(AssetPriceDaily.symbol, func.max(AssetPriceDaily.date))
        .where(AssetPriceDaily.symbol.in_(tickers))
        .group_by(AssetPriceDaily.symbol)
    ).all()
    found = {symbol: latest for symbol, latest in rows}
    return {ticker: found.get(ticker) for ticker in tickers}


def diagnose_portfolio(db: Session, portfolio_key: str) -> PortfolioDiagnostics:
    """
    Raises:
        InvalidPortfolioKeyError: If the key cannot be parsed
    """
    key = parse_portfolio_key(portfolio_key)
    report = PortfolioDiagnostics(portfolio_key=key.key)

    signal = latest_signal(db, key)
    if signal is not None:
        assets = parse_signal_assets(signal.signal)
        report.latest_signal = {
            "id": signal.id,
            "date": to_date_key(signal.published_at),
            "tier": signal.tier,
            "category": signal.category,
            "risk_profile": signal.risk_profile.value,
            "assets": assets.to_dict() if assets else None,
        }

    allocation = latest_allocation(db, key.key)
    tickers: list[str] = []
    if allocation is not None:
        items = items_from_snapshot(allocation.items)
        report.latest_allocation = {
            "as_of_date": to_date_key(allocation.as_of_date),
            "allocations": [
                {"asset": item.symbol, "weight": numeric.to_num(item.weight)} for item in items
            ],
        }
        for item in items:
            ticker = canonical_ticker(item.symbol)
            if ticker not in tickers:
                tickers.append(ticker)

    nav = latest_point(db, SeriesType.MODEL_NAV, key.key)
    if nav is not None:
        report.latest_nav = {"date": nav.date.isoformat(), "nav": numeric.to_num(nav.value)}

    report.latest_price_dates = [
        {"symbol": ticker, "date": to_date_key(latest)}
        for ticker, latest in latest_price_dates(db, tickers).items()
    ]

    snapshot = get_snapshot(db, key.key)
    if snapshot is not None:
        report.snapshot = {
            "needs_recompute": snapshot.needs_recompute,
            "recompute_from_date": to_date_key(snapshot.recompute_from_date),
            "as_of_date": to_date_key(snapshot.as_of_date),
            "last_computed_at": snapshot.last_computed_at.isoformat() if snapshot.last_computed_at else None,
            "last_error": snapshot.last_error,
        }

    report.provider_config = {
        "coingecko_api_key_present": bool(settings.coingecko_api_key),
        "coingecko_base_url": settings.coingecko_base_url,
    }

    logger.debug(f"Diagnostics for {key.key}: signal={signal is not None}, nav={nav is not None}")
    return report
