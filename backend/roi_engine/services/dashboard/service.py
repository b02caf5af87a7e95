# backend/roi_engine/services/dashboard/service.py
"""
Dashboard read service.

This service handles:
- The per-portfolio ROI view (NAV series, KPIs, status, last rebalance)
- The GLOBAL dashboard payload
- The investment simulator over the reference series

Reads come from the cached snapshot. A forced refresh recomputes
synchronously first; otherwise a pending or failing recompute only shows in
`status`, and the last good payload is still served.

Status rules (per portfolio):
    updating  snapshot is dirty
    error     no NAV and a last error (or no signal/allocation at all)
    updating  no NAV yet but upstream data exists
    stale     latest signal after as_of_date, primary price too old, or missing
    ok        otherwise

Usage:
    from roi_engine.services.dashboard.service import DashboardService

    service = DashboardService()
    view = service.get_portfolio_roi(db, "t1_none_semi", range_key="3m")
    print(view["status"], view["kpis"]["roi_inception"])
"""

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from roi_engine.config import settings
from roi_engine.models import (
    DashboardSetting,
    PortfolioDailySignal,
    RiskProfile,
    SeriesType,
    SnapshotScope,
)
from roi_engine.services import numeric
from roi_engine.services.allocation import items_from_snapshot, parse_signal_assets
from roi_engine.services.analytics import MetricsCalculator
from roi_engine.services.constants import (
    DEFAULT_RANGE,
    GLOBAL_PORTFOLIO_KEY,
    RANGE_DAYS,
    ZERO,
)
from roi_engine.services.dashboard.simulator import run_simulation
from roi_engine.services.diagnostics import latest_price_dates
from roi_engine.services.exceptions import NotFoundError, ValidationError
from roi_engine.services.portfolio_key import PortfolioKey, parse_portfolio_key
from roi_engine.services.series_store import load_series, latest_point
from roi_engine.services.signals import latest_allocation, latest_signal
from roi_engine.services.snapshot_service import SnapshotService, get_snapshot
from roi_engine.services.tickers import canonical_ticker, is_cash, normalize_asset_symbol
from roi_engine.utils.date_utils import to_date_key, to_utc_date, utc_today

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_UPDATING = "updating"
STATUS_STALE = "stale"
STATUS_ERROR = "error"

DEFAULT_RISK_PROFILE = RiskProfile.CONSERVATIVE


def _kpi_value(value) -> float | None:
    return numeric.to_num(value) if value is not None else None


class DashboardService:
    """Read side of the engine. Stateless; sessions are passed per call."""

    def __init__(self, price_stale_days: int | None = None) -> None:
        self._price_stale_days = (
            settings.price_stale_days if price_stale_days is None else price_stale_days
        )

    # =========================================================================
    # PORTFOLIO VIEW
    # =========================================================================

    def default_portfolio_key(self, db: Session) -> str:
        """T1 portfolio of the latest T1 signal's risk profile (conservative if none)."""
        t1_key = PortfolioKey("T1", None, DEFAULT_RISK_PROFILE)
        signal = db.scalar(
            select(PortfolioDailySignal)
            .where(t1_key.source_filter())
            .order_by(PortfolioDailySignal.published_at.desc())
            .limit(1)
        )
        profile = signal.risk_profile if signal is not None else DEFAULT_RISK_PROFILE
        return PortfolioKey("T1", None, profile).key

    def get_portfolio_roi(
            self,
            db: Session,
            portfolio_key: str | None = None,
            range_key: str | None = None,
            force_refresh: bool = False,
    ) -> dict:
        """
        Raises:
            InvalidPortfolioKeyError: If the key cannot be parsed
            ValidationError: Unknown range
        """
        key = parse_portfolio_key(portfolio_key).key if portfolio_key else self.default_portfolio_key(db)
        range_key = (range_key or DEFAULT_RANGE).lower()
        if range_key not in RANGE_DAYS:
            raise ValidationError(
                f"Unknown range '{range_key}'. Valid options: {', '.join(RANGE_DAYS)}", field="range"
            )

        if force_refresh:
            SnapshotService(db).force_refresh(key)

        snapshot = get_snapshot(db, key)
        allocation = latest_allocation(db, key)
        signal = latest_signal(db, key)

        nav_series = self._nav_window(db, key, RANGE_DAYS[range_key])
        if snapshot is not None:
            kpis = {
                "roi_inception": _kpi_value(snapshot.roi_inception),
                "roi_30d": _kpi_value(snapshot.roi_30d),
                "max_drawdown": _kpi_value(snapshot.max_drawdown),
                "volatility": _kpi_value(snapshot.volatility),
                "as_of_date": to_date_key(snapshot.as_of_date),
            }
        else:
            metrics = MetricsCalculator.calculate_all(
                load_series(db, SeriesType.MODEL_NAV, key), include_monthly=False
            )
            kpis = {
                "roi_inception": _kpi_value(metrics.roi_inception),
                "roi_30d": _kpi_value(metrics.roi_30d),
                "max_drawdown": _kpi_value(metrics.max_drawdown),
                "volatility": _kpi_value(metrics.volatility),
                "as_of_date": to_date_key(metrics.last_date),
            }

        primary_symbol = self._primary_symbol(signal, allocation)
        primary_ticker = canonical_ticker(primary_symbol) if primary_symbol else None
        # CASH has no market price to go stale
        priced_ticker = primary_ticker if primary_ticker and not is_cash(primary_ticker) else None
        last_price_date = (
            latest_price_dates(db, [priced_ticker])[priced_ticker] if priced_ticker else None
        )
        last_signal_date = to_utc_date(signal.published_at) if signal is not None else None

        last_error = snapshot.last_error if snapshot is not None else None
        status = self._status(
            needs_recompute=snapshot.needs_recompute if snapshot is not None else False,
            has_nav=bool(nav_series),
            last_error=last_error,
            has_upstream=signal is not None or allocation is not None,
            as_of_date=date.fromisoformat(kpis["as_of_date"]) if kpis["as_of_date"] else None,
            last_signal_date=last_signal_date,
            primary_ticker=priced_ticker,
            last_price_date=last_price_date,
        )

        return {
            "portfolio_key": key,
            "status": status,
            "needs_recompute": snapshot.needs_recompute if snapshot is not None else False,
            "as_of_date": kpis["as_of_date"],
            "last_computed_at": (
                snapshot.last_computed_at.isoformat() if snapshot is not None and snapshot.last_computed_at
                else None
            ),
            "last_signal_date": to_date_key(last_signal_date),
            "last_price_date": to_date_key(last_price_date),
            "primary_symbol": primary_symbol,
            "primary_ticker": primary_ticker,
            "last_error": last_error,
            "nav_series": nav_series,
            "kpis": kpis,
            "last_rebalance": {
                "effective_date": to_date_key(allocation.as_of_date),
                "allocations": [
                    {"asset": item.symbol, "weight": numeric.to_num(item.weight)}
                    for item in items_from_snapshot(allocation.items)
                ],
            } if allocation is not None else None,
        }

    @staticmethod
    def _nav_window(db: Session, portfolio_key: str, days: int | None) -> list[dict]:
        """NAV points within `days` of the latest point (all when days is None)."""
        start_date = None
        if days is not None:
            latest = latest_point(db, SeriesType.MODEL_NAV, portfolio_key)
            anchor = latest.date if latest is not None else utc_today()
            start_date = anchor - timedelta(days=days)
        points = load_series(db, SeriesType.MODEL_NAV, portfolio_key, start_date=start_date)
        return [{"date": point.date.isoformat(), "nav": numeric.to_num(point.value)} for point in points]

    @staticmethod
    def _primary_symbol(signal: PortfolioDailySignal | None, allocation) -> str | None:
        """Primary asset of the latest signal, else the allocation's largest weight."""
        if signal is not None:
            assets = parse_signal_assets(signal.signal)
            if assets is not None and assets.primary:
                return normalize_asset_symbol(assets.primary)
        if allocation is not None:
            items = items_from_snapshot(allocation.items)
            if items:
                heaviest = max(items, key=lambda item: item.weight)
                return normalize_asset_symbol(heaviest.symbol)
        return None

    def _status(
            self,
            *,
            needs_recompute: bool,
            has_nav: bool,
            last_error: str | None,
            has_upstream: bool,
            as_of_date: date | None,
            last_signal_date: date | None,
            primary_ticker: str | None,
            last_price_date: date | None,
    ) -> str:
        if needs_recompute:
            return STATUS_UPDATING
        if not has_nav:
            if last_error:
                return STATUS_ERROR
            return STATUS_UPDATING if has_upstream else STATUS_ERROR

        cutoff = utc_today() - timedelta(days=self._price_stale_days)
        signal_ahead = bool(last_signal_date and as_of_date and as_of_date < last_signal_date)
        price_stale = bool(last_price_date and last_price_date < cutoff)
        missing_prices = bool(primary_ticker) and last_price_date is None
        if signal_ahead or price_stale or missing_prices:
            return STATUS_STALE
        return STATUS_OK

    # =========================================================================
    # GLOBAL DASHBOARD
    # =========================================================================

    def get_global(self, db: Session, force_refresh: bool = False) -> dict:
        """
        The cached GLOBAL payload with a status.

        The payload is built on first access (no snapshot yet) and on a
        forced refresh; otherwise a dirty snapshot is served as "updating".
        """
        snapshot = get_snapshot(db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL)
        if force_refresh or snapshot is None or not snapshot.payload:
            SnapshotService(db).refresh_global(force=True)
            snapshot = get_snapshot(db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL)

        payload = dict(snapshot.payload or {})
        if snapshot.needs_recompute:
            status = STATUS_ERROR if snapshot.last_error and not payload.get("series") else STATUS_UPDATING
        else:
            status = STATUS_OK
        payload["status"] = status
        payload["last_error"] = snapshot.last_error
        payload["last_computed_at"] = (
            snapshot.last_computed_at.isoformat() if snapshot.last_computed_at else None
        )
        return payload

    # =========================================================================
    # SIMULATOR
    # =========================================================================

    def simulate(
            self,
            db: Session,
            amount: Decimal,
            start_date: date | None = None,
            monthly_contribution: Decimal = ZERO,
    ) -> dict:
        """
        Replay `amount` invested in MODEL, BTC and ETH over the same window.

        Raises:
            NotFoundError: The simulator is switched off
            ValidationError: Non-positive amount or negative contribution
        """
        setting = db.scalar(select(DashboardSetting).order_by(DashboardSetting.id.asc()).limit(1))
        if setting is not None and not setting.show_simulator:
            raise NotFoundError("Simulator is disabled", resource_type="Simulator")

        capital = numeric.dec(amount)
        contribution = numeric.dec(monthly_contribution)
        if capital <= ZERO:
            raise ValidationError("Amount must be positive", field="amount")
        if contribution < ZERO:
            raise ValidationError("Monthly contribution cannot be negative", field="monthly_contribution")

        model = load_series(db, SeriesType.MODEL, GLOBAL_PORTFOLIO_KEY)
        if start_date is None:
            start_date = (
                setting.inception_date if setting is not None and setting.inception_date
                else (model[0].date if model else utc_today())
            )

        results = {}
        for label, series_type in (("model", SeriesType.MODEL), ("btc", SeriesType.BTC), ("eth", SeriesType.ETH)):
            points = model if series_type == SeriesType.MODEL else load_series(db, series_type, GLOBAL_PORTFOLIO_KEY)
            results[label] = run_simulation(points, capital, start_date, contribution).to_dict()

        logger.debug(f"Simulated {capital} from {start_date} (+{contribution}/month)")
        return {
            "amount": numeric.to_num(capital),
            "monthly_contribution": numeric.to_num(contribution),
            "start_date": start_date.isoformat(),
            "results": results,
        }
