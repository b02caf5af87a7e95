#!/usr/bin/env python3
# backend/scripts/roi_audit.py
"""
Audit the stored inputs and outputs of portfolio ROI computation.

For each portfolio key: allocation count and date range, NAV point count
and range, latest close per allocated symbol, and snapshot state. Read-only.

Usage:
    python backend/scripts/roi_audit.py
    python backend/scripts/roi_audit.py --portfolio-key t1_none_semi
"""
import argparse
import logging
import sys
from pathlib import Path

# Setup path to import roi_engine
backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from roi_engine.database import SessionLocal
from roi_engine.models import AllocationSnapshot, PerformanceSeries, SeriesType
from roi_engine.services.allocation import items_from_snapshot
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY
from roi_engine.services.diagnostics import latest_price_dates
from roi_engine.services.portfolio_key import parse_portfolio_key
from roi_engine.services.snapshot_service import get_snapshot
from roi_engine.services.tickers import canonical_ticker
from roi_engine.utils import correlation_scope, new_correlation_id, setup_logging
from roi_engine.utils.date_utils import to_date_key

logger = logging.getLogger(__name__)


def audit_portfolio(db: Session, portfolio_key: str) -> dict:
    """Collect the audit facts for one portfolio key."""
    allocation_count, first_allocation, last_allocation = db.execute(
        select(
            func.count(AllocationSnapshot.id),
            func.min(AllocationSnapshot.as_of_date),
            func.max(AllocationSnapshot.as_of_date),
        ).where(AllocationSnapshot.portfolio_key == portfolio_key)
    ).one()

    nav_count, first_nav, last_nav = db.execute(
        select(
            func.count(PerformanceSeries.id),
            func.min(PerformanceSeries.date),
            func.max(PerformanceSeries.date),
        ).where(
            PerformanceSeries.series_type == SeriesType.MODEL_NAV,
            PerformanceSeries.portfolio_key == portfolio_key,
        )
    ).one()

    tickers: list[str] = []
    for snapshot in db.scalars(
            select(AllocationSnapshot).where(AllocationSnapshot.portfolio_key == portfolio_key)
    ):
        for item in items_from_snapshot(snapshot.items):
            ticker = canonical_ticker(item.symbol)
            if ticker not in tickers:
                tickers.append(ticker)

    snapshot = get_snapshot(db, portfolio_key)
    return {
        "portfolio_key": portfolio_key,
        "allocations": allocation_count,
        "allocation_range": (to_date_key(first_allocation), to_date_key(last_allocation)),
        "nav_points": nav_count,
        "nav_range": (to_date_key(first_nav), to_date_key(last_nav)),
        "latest_prices": {
            ticker: to_date_key(latest) for ticker, latest in latest_price_dates(db, sorted(tickers)).items()
        },
        "snapshot": None if snapshot is None else {
            "needs_recompute": snapshot.needs_recompute,
            "recompute_from_date": to_date_key(snapshot.recompute_from_date),
            "as_of_date": to_date_key(snapshot.as_of_date),
            "last_error": snapshot.last_error,
        },
    }


def print_report(report: dict) -> None:
    print(f"\n=== {report['portfolio_key']} ===")
    first, last = report["allocation_range"]
    print(f"  allocations : {report['allocations']} ({first} .. {last})")
    first, last = report["nav_range"]
    print(f"  nav points  : {report['nav_points']} ({first} .. {last})")
    if report["latest_prices"]:
        for ticker, latest in report["latest_prices"].items():
            print(f"  price {ticker:<8}: {latest or 'MISSING'}")
    else:
        print("  prices      : no allocated symbols")
    snapshot = report["snapshot"]
    if snapshot is None:
        print("  snapshot    : none")
    else:
        state = "dirty" if snapshot["needs_recompute"] else "clean"
        print(
            f"  snapshot    : {state}, from={snapshot['recompute_from_date']}, "
            f"as_of={snapshot['as_of_date']}"
        )
        if snapshot["last_error"]:
            print(f"  last error  : {snapshot['last_error']}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit portfolio ROI inputs and snapshots")
    parser.add_argument("--portfolio-key", help="Audit a single portfolio (default: all with allocations)")
    args = parser.parse_args(argv)

    setup_logging()
    db = SessionLocal()
    try:
        with correlation_scope(new_correlation_id("roi-audit")):
            if args.portfolio_key:
                keys = [parse_portfolio_key(args.portfolio_key).key]
            else:
                keys = list(db.scalars(
                    select(distinct(AllocationSnapshot.portfolio_key))
                    .where(AllocationSnapshot.portfolio_key != GLOBAL_PORTFOLIO_KEY)
                    .order_by(AllocationSnapshot.portfolio_key)
                ))
            if not keys:
                logger.info("No portfolios with allocations")
                return 0

            logger.info(f"Auditing {len(keys)} portfolio(s)")
            for key in keys:
                print_report(audit_portfolio(db, key))
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
