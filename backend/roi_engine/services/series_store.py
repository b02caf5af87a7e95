# backend/roi_engine/services/series_store.py
"""
Persistence helpers for time series and daily prices.

Writes are INSERT ... ON CONFLICT DO UPDATE keyed on the tables' unique
constraints, so re-running any computation overwrites instead of
duplicating. The dialect's own insert construct is used (PostgreSQL in
production, SQLite in tests); both expose the same upsert API.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from roi_engine.models import AssetPriceDaily, PerformanceSeries, SeriesType
from roi_engine.services.exceptions import ServiceError
from roi_engine.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

# Rows per INSERT statement; keeps bind parameter counts under driver limits
UPSERT_BATCH_SIZE = 500


@dataclass(frozen=True)
class SeriesPoint:
    """One (date, value) pair of a series."""
    date: date
    value: Decimal


def _dialect_insert(db: Session, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise ServiceError(f"Upserts are not supported on the '{dialect}' dialect")


def _batches(records: list[dict], size: int = UPSERT_BATCH_SIZE) -> Iterable[list[dict]]:
    for start in range(0, len(records), size):
        yield records[start:start + size]


# =============================================================================
# PERFORMANCE SERIES
# =============================================================================

def upsert_series_points(
        db: Session,
        series_type: SeriesType,
        portfolio_key: str,
        points: Sequence[SeriesPoint],
) -> int:
    """
    Upsert points keyed by (series_type, date, portfolio_key).

    Does not commit; the caller owns the transaction.

    Returns:
        Number of points written
    """
    if not points:
        return 0

    now = utc_now()
    records = [
        {
            "series_type": series_type,
            "portfolio_key": portfolio_key,
            "date": point.date,
            "value": point.value,
            "updated_at": now,
        }
        for point in points
    ]

    for batch in _batches(records):
        stmt = _dialect_insert(db, PerformanceSeries).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=["series_type", "date", "portfolio_key"],
            set_={
                "value": stmt.excluded.value,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)

    logger.debug(f"Upserted {len(records)} {series_type.value} points for {portfolio_key}")
    return len(records)


def delete_series(db: Session, series_type: SeriesType, portfolio_key: str) -> int:
    """Delete every point of one series. Does not commit."""
    result = db.execute(
        delete(PerformanceSeries).where(
            PerformanceSeries.series_type == series_type,
            PerformanceSeries.portfolio_key == portfolio_key,
        )
    )
    return result.rowcount or 0


def load_series(
        db: Session,
        series_type: SeriesType,
        portfolio_key: str,
        start_date: date | None = None,
        end_date: date | None = None,
) -> list[SeriesPoint]:
    """Points of one series in ascending date order, optionally bounded."""
    stmt = select(PerformanceSeries.date, PerformanceSeries.value).where(
        PerformanceSeries.series_type == series_type,
        PerformanceSeries.portfolio_key == portfolio_key,
    )
    if start_date is not None:
        stmt = stmt.where(PerformanceSeries.date >= start_date)
    if end_date is not None:
        stmt = stmt.where(PerformanceSeries.date <= end_date)
    stmt = stmt.order_by(PerformanceSeries.date.asc())

    return [SeriesPoint(date=row.date, value=Decimal(row.value)) for row in db.execute(stmt)]


def last_point_before(
        db: Session,
        series_type: SeriesType,
        portfolio_key: str,
        before: date,
) -> SeriesPoint | None:
    """Latest point strictly before `before`."""
    row = db.execute(
        select(PerformanceSeries.date, PerformanceSeries.value)
        .where(
            PerformanceSeries.series_type == series_type,
            PerformanceSeries.portfolio_key == portfolio_key,
            PerformanceSeries.date < before,
        )
        .order_by(PerformanceSeries.date.desc())
        .limit(1)
    ).first()
    return SeriesPoint(date=row.date, value=Decimal(row.value)) if row else None


def latest_point(db: Session, series_type: SeriesType, portfolio_key: str) -> SeriesPoint | None:
    row = db.execute(
        select(PerformanceSeries.date, PerformanceSeries.value)
        .where(
            PerformanceSeries.series_type == series_type,
            PerformanceSeries.portfolio_key == portfolio_key,
        )
        .order_by(PerformanceSeries.date.desc())
        .limit(1)
    ).first()
    return SeriesPoint(date=row.date, value=Decimal(row.value)) if row else None


# =============================================================================
# DAILY PRICES
# =============================================================================

@dataclass(frozen=True)
class PriceRecord:
    symbol: str
    date: date
    close: Decimal
    source: str


def upsert_prices(db: Session, records: Sequence[PriceRecord]) -> int:
    """
    Upsert daily closes keyed by (symbol, date). Does not commit.

    A conflicting row is only rewritten when its close changes, so
    fetched_at marks the last real change and re-fetching is a no-op.

    Returns:
        Number of rows written
    """
    if not records:
        return 0

    now = utc_now()
    rows = [
        {
            "symbol": record.symbol,
            "date": record.date,
            "close": record.close,
            "source": record.source,
            "fetched_at": now,
        }
        for record in records
    ]

    for batch in _batches(rows):
        stmt = _dialect_insert(db, AssetPriceDaily).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "date"],
            set_={
                "close": stmt.excluded.close,
                "source": stmt.excluded.source,
                "fetched_at": stmt.excluded.fetched_at,
            },
            where=AssetPriceDaily.close != stmt.excluded.close,
        )
        db.execute(stmt)

    return len(rows)
