# backend/roi_engine/services/market_data/ingest_service.py
"""
Daily price ingestion.

This service handles:
- Fetching daily closes for canonical tickers from a PriceProvider
- Constant closes for CASH (source "constant")
- Manual closes pushed by an admin (source "manual")
- Dirtying every portfolio that holds a symbol whose closes changed

Only dates whose stored close actually changed move a watermark, so the
daily re-fetch of an unchanged window does not widen any recompute.

Design Principles:
- Dependency Injection: provider and invalidator passed to the constructor
- No HTTP Knowledge: raises domain exceptions, not HTTPException
- Partial Success: a failing symbol is reported as a warning, the rest
  are still stored
- Idempotent: rows are upserted on (symbol, date)

Usage:
    from roi_engine.services.market_data import CoinGeckoProvider, PriceIngestService

    service = PriceIngestService(db, CoinGeckoProvider())
    result = service.ingest(["BTC", "ETH"], date(2024, 1, 1), date(2024, 3, 31))
    print(result.rows_written, result.affected_portfolios)
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from roi_engine.models import AllocationSnapshot, AssetPriceDaily, SnapshotScope
from roi_engine.services import numeric
from roi_engine.services.allocation import items_from_snapshot
from roi_engine.services.constants import (
    CASH_PRICE,
    CASH_SYMBOL,
    GLOBAL_PORTFOLIO_KEY,
    PRICE_FETCH_PADDING_DAYS,
    PRICE_QUANTUM,
    ZERO,
)
from roi_engine.services.exceptions import (
    PriceProviderError,
    UnsupportedSymbolError,
    ValidationError,
)
from roi_engine.services.market_data.base import PriceProvider
from roi_engine.services.series_store import PriceRecord, upsert_prices
from roi_engine.services.snapshot_service import Invalidator, get_snapshot, mark_dirty
from roi_engine.services.tickers import canonical_ticker
from roi_engine.utils.date_utils import date_range, utc_today

logger = logging.getLogger(__name__)

SOURCE_CONSTANT = "constant"
SOURCE_MANUAL = "manual"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class IngestResult:
    """
    Outcome of one ingestion.

    Attributes:
        symbols: Canonical tickers requested
        rows_written: Rows upserted (changed or not)
        changed_from: Earliest date per symbol whose close changed
        affected_portfolios: Portfolio keys dirtied, with their watermark
        warnings: Skipped symbols and provider failures
    """

    symbols: list[str] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    rows_written: int = 0
    changed_from: dict[str, date] = field(default_factory=dict)
    affected_portfolios: dict[str, date] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbols": self.symbols,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "rows_written": self.rows_written,
            "changed_from": {symbol: day.isoformat() for symbol, day in self.changed_from.items()},
            "affected_portfolios": {
                key: day.isoformat() for key, day in self.affected_portfolios.items()
            },
            "warnings": self.warnings,
        }


# =============================================================================
# SERVICE
# =============================================================================

class PriceIngestService:
    """
    Stores daily closes and invalidates the portfolios that depend on them.

    With no invalidator, dirtying happens in the same session and commits
    with the prices. With one (the HTTP paths pass a SnapshotInvalidator),
    it runs after the commit and may fail without losing the prices.
    """

    def __init__(
            self,
            db: Session,
            provider: PriceProvider | None = None,
            invalidator: Invalidator | None = None,
    ) -> None:
        self._db = db
        self._provider = provider
        self._invalidate = invalidator

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def ingest(
            self,
            symbols: Iterable[str],
            start_date: date,
            end_date: date | None = None,
    ) -> IngestResult:
        """
        Fetch and store closes for [start_date, end_date] (default today).

        Raises:
            ValidationError: If start_date is after end_date
            PriceProviderError: If every symbol failed at the provider
        """
        end_date = end_date or utc_today()
        if start_date > end_date:
            raise ValidationError(
                f"start_date {start_date} is after end_date {end_date}", field="start_date"
            )

        tickers = self._canonical_symbols(symbols)
        result = IngestResult(symbols=tickers, start_date=start_date, end_date=end_date)

        records: list[PriceRecord] = []
        errors: list[PriceProviderError] = []
        for ticker in tickers:
            if ticker == CASH_SYMBOL:
                records.extend(
                    PriceRecord(CASH_SYMBOL, day, CASH_PRICE, SOURCE_CONSTANT)
                    for day in date_range(start_date, end_date)
                )
                continue

            try:
                records.extend(self._fetch(ticker, start_date, end_date, result))
            except UnsupportedSymbolError as e:
                result.warnings.append(str(e))
            except PriceProviderError as e:
                logger.warning(f"Price fetch failed for {ticker}: {e}")
                result.warnings.append(f"{ticker}: {e}")
                errors.append(e)

        if errors and len(errors) == len(tickers):
            raise errors[0]

        self._store(records, result)
        return result

    def ingest_for_portfolio(self, portfolio_key: str, end_date: date | None = None) -> IngestResult:
        """
        Fetch closes for every non-cash symbol a portfolio ever allocated to.

        The window starts PRICE_FETCH_PADDING_DAYS before the next curve
        start (watermark, else the day after as_of_date, else inception) so
        the first computed day has a previous close.
        """
        end_date = end_date or utc_today()
        snapshots = self._db.scalars(
            select(AllocationSnapshot)
            .where(AllocationSnapshot.portfolio_key == portfolio_key)
            .order_by(AllocationSnapshot.as_of_date.asc())
        ).all()
        if not snapshots:
            return IngestResult()

        tickers = sorted({
            canonical_ticker(item.symbol)
            for snapshot in snapshots
            for item in items_from_snapshot(snapshot.items)
        } - {CASH_SYMBOL})
        if not tickers:
            return IngestResult()

        curve_start = snapshots[0].as_of_date
        snapshot = get_snapshot(self._db, portfolio_key)
        if snapshot is not None:
            if snapshot.needs_recompute and snapshot.recompute_from_date:
                curve_start = max(curve_start, snapshot.recompute_from_date)
            elif snapshot.as_of_date:
                curve_start = max(curve_start, snapshot.as_of_date + timedelta(days=1))

        start_date = min(curve_start, end_date) - timedelta(days=PRICE_FETCH_PADDING_DAYS)
        logger.info(f"Ingesting {', '.join(tickers)} for {portfolio_key} from {start_date} to {end_date}")
        return self.ingest(tickers, start_date, end_date)

    def store_manual_prices(self, prices: Sequence[tuple[str, date, Decimal]]) -> IngestResult:
        """
        Store closes typed in by an admin (source "manual").

        Raises:
            ValidationError: On an empty list or a non-positive close
        """
        if not prices:
            raise ValidationError("No prices given", field="prices")

        records = []
        for symbol, day, close in prices:
            value = numeric.dec(close)
            if value <= ZERO:
                raise ValidationError(
                    f"Close for {symbol} on {day.isoformat()} must be positive, got {close}",
                    field="close",
                )
            records.append(PriceRecord(canonical_ticker(symbol), day, value, SOURCE_MANUAL))

        days = [record.date for record in records]
        result = IngestResult(
            symbols=sorted({record.symbol for record in records}),
            start_date=min(days),
            end_date=max(days),
        )
        self._store(records, result)
        return result

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _canonical_symbols(symbols: Iterable[str]) -> list[str]:
        tickers: list[str] = []
        for symbol in symbols:
            try:
                ticker = canonical_ticker(symbol)
            except ValueError:
                continue
            if ticker not in tickers:
                tickers.append(ticker)
        if not tickers:
            raise ValidationError("No symbols given", field="symbols")
        return tickers

    def _fetch(
            self,
            ticker: str,
            start_date: date,
            end_date: date,
            result: IngestResult,
    ) -> list[PriceRecord]:
        if self._provider is None:
            raise PriceProviderError("No price provider configured")
        if not self._provider.supports(ticker):
            raise UnsupportedSymbolError(ticker, self._provider.name)

        fetched = self._provider.get_daily_closes(ticker, start_date, end_date)
        if fetched.missing_dates:
            result.warnings.append(
                f"{ticker}: no close for {len(fetched.missing_dates)} day(s), "
                f"first {fetched.missing_dates[0].isoformat()}"
            )
        source = fetched.source or self._provider.name
        return [PriceRecord(ticker, close.date, close.close, source) for close in fetched.closes]

    def _existing_closes(self, ticker: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        rows = self._db.execute(
            select(AssetPriceDaily.date, AssetPriceDaily.close).where(
                AssetPriceDaily.symbol == ticker,
                AssetPriceDaily.date >= start_date,
                AssetPriceDaily.date <= end_date,
            )
        )
        return {row.date: Decimal(row.close) for row in rows}

    def _changed_from(self, records: list[PriceRecord]) -> dict[str, date]:
        """Earliest date per symbol whose close is new or different."""
        by_symbol: dict[str, list[PriceRecord]] = {}
        for record in records:
            by_symbol.setdefault(record.symbol, []).append(record)

        changed: dict[str, date] = {}
        for ticker, rows in by_symbol.items():
            days = [row.date for row in rows]
            existing = self._existing_closes(ticker, min(days), max(days))
            for row in sorted(rows, key=lambda r: r.date):
                stored = existing.get(row.date)
                if stored is None or not numeric.eq(stored, row.close):
                    changed[ticker] = row.date
                    break
        return changed

    def _store(self, records: list[PriceRecord], result: IngestResult) -> None:
        records = [
            PriceRecord(r.symbol, r.date, numeric.quantize(r.close, PRICE_QUANTUM), r.source)
            for r in records
        ]
        result.changed_from = self._changed_from(records)
        result.rows_written = upsert_prices(self._db, records)
        result.affected_portfolios = self._affected_portfolios(result.changed_from)

        if self._invalidate is None:
            for key, from_date in result.affected_portfolios.items():
                mark_dirty(self._db, key, from_date, SnapshotScope.PORTFOLIO)
            self._db.commit()
        else:
            self._db.commit()
            for key, from_date in result.affected_portfolios.items():
                self._invalidate(key, from_date, SnapshotScope.PORTFOLIO)

        logger.info(
            f"Stored {result.rows_written} price rows for {', '.join(result.symbols) or 'no symbols'}; "
            f"changed: {len(result.changed_from)} symbol(s), dirtied {len(result.affected_portfolios)} portfolio(s)"
        )

    def _affected_portfolios(self, changed_from: dict[str, date]) -> dict[str, date]:
        """Portfolio key -> earliest changed date among the symbols it allocates to."""
        if not changed_from:
            return {}

        rows = self._db.execute(
            select(AllocationSnapshot.portfolio_key, AllocationSnapshot.items)
            .where(AllocationSnapshot.portfolio_key != GLOBAL_PORTFOLIO_KEY)
        )
        affected: dict[str, date] = {}
        for row in rows:
            for item in items_from_snapshot(row.items):
                changed = changed_from.get(canonical_ticker(item.symbol))
                if changed is None:
                    continue
                current = affected.get(row.portfolio_key)
                affected[row.portfolio_key] = changed if current is None else min(current, changed)
        return affected
