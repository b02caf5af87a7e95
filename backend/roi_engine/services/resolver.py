# backend/roi_engine/services/resolver.py
"""
Price/Allocation resolver.

For one portfolio and a date range, loads the allocation snapshots and the
daily closes of every allocated asset once, then answers per-day questions:

    - which allocation is in effect on day D (latest snapshot with
      as_of_date <= D)
    - the close of each allocated asset on D, and its previous close
      (latest close strictly before D)

Missing inputs are never guessed. A day without an allocation, or without a
close on that exact day for an allocated asset, comes back with explicit
Gap markers; the equity curve builder decides what a gap means.

Usage:
    resolver = AllocationPriceResolver(db, "t1_none_aggressive")
    resolver.load(start_date, end_date)
    inputs = resolver.resolve(day)
    if inputs.gaps:
        ...
"""

import bisect
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from roi_engine.models import AllocationSnapshot, AssetPriceDaily
from roi_engine.services.allocation import AllocationItem, items_from_snapshot
from roi_engine.services.constants import CASH_PRICE, PRICE_FETCH_PADDING_DAYS
from roi_engine.services.tickers import canonical_ticker, is_cash

logger = logging.getLogger(__name__)


# =============================================================================
# TYPES
# =============================================================================

class GapKind(str, Enum):
    NO_ALLOCATION = "no_allocation"
    MISSING_PRICE = "missing_price"
    MISSING_PREVIOUS_PRICE = "missing_previous_price"


@dataclass(frozen=True)
class Gap:
    """A required input that is absent for one day."""
    date: date
    kind: GapKind
    symbol: str | None = None

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "kind": self.kind.value,
            "symbol": self.symbol,
        }


@dataclass(frozen=True)
class ResolvedAllocation:
    as_of_date: date
    items: tuple[AllocationItem, ...]


@dataclass
class DayInputs:
    """
    Everything the curve builder needs for one day.

    prices and previous_prices are keyed by canonical ticker and only hold
    values that exist; anything missing is listed in gaps.
    """
    date: date
    allocation: ResolvedAllocation | None
    prices: dict[str, Decimal] = field(default_factory=dict)
    previous_prices: dict[str, Decimal] = field(default_factory=dict)
    gaps: list[Gap] = field(default_factory=list)

    @property
    def has_gap(self) -> bool:
        return bool(self.gaps)


# =============================================================================
# RESOLVER
# =============================================================================

class AllocationPriceResolver:
    """
    Range-scoped lookup of allocations and prices for one portfolio.

    Call load() before resolve(); lookups are in-memory afterwards.
    """

    def __init__(self, db: Session, portfolio_key: str) -> None:
        self._db = db
        self.portfolio_key = portfolio_key
        self._allocation_dates: list[date] = []
        self._allocations: list[ResolvedAllocation] = []
        # ticker -> (sorted dates, closes aligned with dates)
        self._price_dates: dict[str, list[date]] = {}
        self._price_values: dict[str, list[Decimal]] = {}
        self._loaded = False

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, start_date: date, end_date: date) -> None:
        """Load allocations up to end_date and prices for allocated tickers."""
        snapshots = self._db.scalars(
            select(AllocationSnapshot)
            .where(
                AllocationSnapshot.portfolio_key == self.portfolio_key,
                AllocationSnapshot.as_of_date <= end_date,
            )
            .order_by(AllocationSnapshot.as_of_date.asc())
        ).all()

        self._allocation_dates = [snapshot.as_of_date for snapshot in snapshots]
        self._allocations = [
            ResolvedAllocation(
                as_of_date=snapshot.as_of_date,
                items=tuple(items_from_snapshot(snapshot.items)),
            )
            for snapshot in snapshots
        ]

        tickers = sorted({
            canonical_ticker(item.symbol)
            for allocation in self._allocations
            for item in allocation.items
            if not is_cash(item.symbol)
        })
        window_start = start_date - timedelta(days=PRICE_FETCH_PADDING_DAYS)
        for ticker in tickers:
            self._load_prices(ticker, window_start, end_date)

        self._loaded = True
        logger.debug(
            f"Resolver loaded {len(self._allocations)} allocations and "
            f"{len(tickers)} price series for {self.portfolio_key}"
        )

    def _load_prices(self, ticker: str, window_start: date, end_date: date) -> None:
        rows = self._db.execute(
            select(AssetPriceDaily.date, AssetPriceDaily.close)
            .where(
                AssetPriceDaily.symbol == ticker,
                AssetPriceDaily.date >= window_start,
                AssetPriceDaily.date <= end_date,
            )
            .order_by(AssetPriceDaily.date.asc())
        ).all()

        # The last close before the window is the previous close of its first day
        anchor = self._db.execute(
            select(AssetPriceDaily.date, AssetPriceDaily.close)
            .where(
                AssetPriceDaily.symbol == ticker,
                AssetPriceDaily.date < window_start,
            )
            .order_by(AssetPriceDaily.date.desc())
            .limit(1)
        ).first()

        ordered = ([anchor] if anchor else []) + list(rows)
        self._price_dates[ticker] = [row.date for row in ordered]
        self._price_values[ticker] = [Decimal(row.close) for row in ordered]

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @property
    def inception_date(self) -> date | None:
        """Date of the first allocation snapshot."""
        return self._allocation_dates[0] if self._allocation_dates else None

    def allocation_on(self, day: date) -> ResolvedAllocation | None:
        index = bisect.bisect_right(self._allocation_dates, day) - 1
        return self._allocations[index] if index >= 0 else None

    def price_on(self, symbol: str, day: date) -> Decimal | None:
        """Close on exactly `day`, or None."""
        if is_cash(symbol):
            return CASH_PRICE
        ticker = canonical_ticker(symbol)
        dates = self._price_dates.get(ticker, [])
        index = bisect.bisect_left(dates, day)
        if index < len(dates) and dates[index] == day:
            return self._price_values[ticker][index]
        return None

    def previous_price(self, symbol: str, day: date) -> Decimal | None:
        """Latest close strictly before `day`, or None."""
        if is_cash(symbol):
            return CASH_PRICE
        ticker = canonical_ticker(symbol)
        dates = self._price_dates.get(ticker, [])
        index = bisect.bisect_left(dates, day) - 1
        return self._price_values[ticker][index] if index >= 0 else None

    def resolve(self, day: date) -> DayInputs:
        if not self._loaded:
            raise RuntimeError("AllocationPriceResolver.load() must be called first")

        allocation = self.allocation_on(day)
        inputs = DayInputs(date=day, allocation=allocation)
        if allocation is None:
            inputs.gaps.append(Gap(date=day, kind=GapKind.NO_ALLOCATION))
            return inputs

        for item in allocation.items:
            ticker = canonical_ticker(item.symbol)
            close = self.price_on(item.symbol, day)
            previous = self.previous_price(item.symbol, day)
            if close is None:
                inputs.gaps.append(Gap(date=day, kind=GapKind.MISSING_PRICE, symbol=ticker))
            else:
                inputs.prices[ticker] = close
            if previous is None:
                inputs.gaps.append(Gap(date=day, kind=GapKind.MISSING_PREVIOUS_PRICE, symbol=ticker))
            else:
                inputs.previous_prices[ticker] = previous

        return inputs
