# backend/roi_engine/services/equity_curve.py
"""
Equity Curve Builder.

Produces or extends the MODEL_NAV series of one portfolio.

Algorithm:
    1. start = max(inception, watermark or force_start); with include_clean
       the caller's force_start wins over the watermark. end = force_end or
       today (UTC).
    2. Seed NAV from the last persisted MODEL_NAV point before start, or 100
       when there is none. A missing seed after inception means history was
       never written, so the range is widened back to inception.
    3. For each day: r = sum(w_i * (p_i[t] / p_i[t-1] - 1)),
       NAV[t] = NAV[t-1] * (1 + r). A day with a gap is flat (r = 0) unless
       strict mode is on, in which case the whole range fails and nothing is
       written.
    4. Upsert every computed point on (series_type, date, portfolio_key).

Zero or negative prices and allocations whose weights do not sum to one are
integrity errors and always abort.

Usage:
    builder = EquityCurveBuilder(db)
    result = builder.build("t1_none_aggressive", watermark=date(2024, 3, 1))
    db.commit()
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roi_engine.models import AllocationSnapshot, SeriesType
from roi_engine.services import numeric
from roi_engine.services.allocation import validate_weights
from roi_engine.services.constants import NAV_BASE_VALUE, NAV_QUANTUM, ONE, ZERO
from roi_engine.services.exceptions import DataGapError, NonPositivePriceError
from roi_engine.services.resolver import AllocationPriceResolver, DayInputs, Gap
from roi_engine.services.series_store import SeriesPoint, last_point_before, upsert_series_points
from roi_engine.services.tickers import canonical_ticker
from roi_engine.utils.date_utils import date_range, utc_today

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class CurvePoint:
    date: date
    nav: Decimal
    daily_return: Decimal
    is_gap: bool = False


@dataclass
class EquityCurveResult:
    """
    Outcome of one build.

    Attributes:
        start_date / end_date: Range actually computed (None if nothing to do)
        seed_nav: NAV the range compounded from
        points: Computed points, ascending
        gaps: Every gap marker met in the range
        points_written: Rows upserted (0 when persist=False)
    """
    portfolio_key: str
    start_date: date | None = None
    end_date: date | None = None
    seed_nav: Decimal = NAV_BASE_VALUE
    seed_date: date | None = None
    points: list[CurvePoint] = field(default_factory=list)
    gaps: list[Gap] = field(default_factory=list)
    points_written: int = 0

    @property
    def gap_dates(self) -> list[date]:
        return sorted({gap.date for gap in self.gaps})

    @property
    def last_nav(self) -> Decimal | None:
        return self.points[-1].nav if self.points else None

    def to_dict(self) -> dict:
        return {
            "portfolio_key": self.portfolio_key,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "seed_nav": numeric.to_num(self.seed_nav),
            "seed_date": self.seed_date.isoformat() if self.seed_date else None,
            "points_computed": len(self.points),
            "points_written": self.points_written,
            "last_nav": numeric.to_num(self.last_nav),
            "gap_dates": [d.isoformat() for d in self.gap_dates],
            "gaps": [gap.to_dict() for gap in self.gaps],
        }


# =============================================================================
# BUILDER
# =============================================================================

class EquityCurveBuilder:
    """
    Compounds weighted daily returns into the MODEL_NAV series.

    Stateless between builds; safe to share per session.
    """

    def __init__(self, db: Session, strict: bool = False) -> None:
        self._db = db
        self.strict = strict

    def inception_date(self, portfolio_key: str) -> date | None:
        """First allocation date of the portfolio."""
        return self._db.scalar(
            select(func.min(AllocationSnapshot.as_of_date))
            .where(AllocationSnapshot.portfolio_key == portfolio_key)
        )

    def build(
            self,
            portfolio_key: str,
            *,
            force_start_date: date | None = None,
            force_end_date: date | None = None,
            watermark: date | None = None,
            include_clean: bool = False,
            strict: bool | None = None,
            persist: bool = True,
    ) -> EquityCurveResult:
        """
        Compute (and by default persist) NAV for a range.

        Args:
            portfolio_key: Portfolio to compute
            force_start_date: Caller-chosen start (backfill / repair)
            force_end_date: Last day to compute (default: today UTC)
            watermark: Snapshot's recompute_from_date
            include_clean: Start from force_start_date even if it precedes the watermark
            strict: Override the builder's strictness for this call
            persist: Upsert points; the caller commits

        Raises:
            DataGapError: In strict mode, when any day has a gap
            NonPositivePriceError: On a zero or negative close
            AllocationWeightError: On an allocation whose weights are invalid
        """
        strict = self.strict if strict is None else strict
        result = EquityCurveResult(portfolio_key=portfolio_key)

        inception = self.inception_date(portfolio_key)
        if inception is None:
            logger.info(f"No allocations for {portfolio_key}, nothing to compute")
            return result

        end_date = force_end_date or utc_today()
        start_date = self._start_date(inception, force_start_date, watermark, include_clean)

        seed = last_point_before(self._db, SeriesType.MODEL_NAV, portfolio_key, start_date)
        if seed is None and start_date > inception:
            logger.info(
                f"No NAV before {start_date} for {portfolio_key}, widening range to inception {inception}"
            )
            start_date = inception

        result.start_date = start_date
        result.end_date = end_date
        if start_date > end_date:
            logger.debug(f"{portfolio_key}: start {start_date} after end {end_date}, nothing to compute")
            return result

        if seed is not None:
            result.seed_nav = seed.value
            result.seed_date = seed.date

        resolver = AllocationPriceResolver(self._db, portfolio_key)
        resolver.load(start_date, end_date)

        checked_allocations: set[date] = set()
        nav = result.seed_nav
        for day in date_range(start_date, end_date):
            inputs = resolver.resolve(day)
            self._check_inputs(inputs, checked_allocations)

            if inputs.has_gap:
                result.gaps.extend(inputs.gaps)
                daily_return = ZERO
            else:
                daily_return = self._weighted_return(inputs)

            nav = numeric.quantize(numeric.mul(nav, numeric.add(ONE, daily_return)), NAV_QUANTUM)
            result.points.append(CurvePoint(
                date=day,
                nav=nav,
                daily_return=daily_return,
                is_gap=inputs.has_gap,
            ))

        if strict and result.gaps:
            raise DataGapError(portfolio_key, [gap.to_dict() for gap in result.gaps])

        if persist:
            result.points_written = upsert_series_points(
                self._db,
                SeriesType.MODEL_NAV,
                portfolio_key,
                [SeriesPoint(date=point.date, value=point.nav) for point in result.points],
            )

        logger.info(
            f"Built NAV for {portfolio_key}: {start_date}..{end_date}, "
            f"{len(result.points)} points, {len(result.gap_dates)} gap day(s), "
            f"last NAV {result.last_nav}"
        )
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _start_date(
            inception: date,
            force_start_date: date | None,
            watermark: date | None,
            include_clean: bool,
    ) -> date:
        candidates = [inception]
        if force_start_date is not None:
            candidates.append(force_start_date)
        if watermark is not None and not include_clean:
            candidates.append(watermark)
        return max(candidates)

    @staticmethod
    def _check_inputs(inputs: DayInputs, checked_allocations: set[date]) -> None:
        allocation = inputs.allocation
        if allocation is not None and allocation.as_of_date not in checked_allocations:
            validate_weights(list(allocation.items))
            checked_allocations.add(allocation.as_of_date)

        for prices in (inputs.prices, inputs.previous_prices):
            for ticker, price in prices.items():
                if numeric.lte(price, ZERO):
                    raise NonPositivePriceError(ticker, inputs.date, price)

    @staticmethod
    def _weighted_return(inputs: DayInputs) -> Decimal:
        weighted = ZERO
        for item in inputs.allocation.items:
            ticker = canonical_ticker(item.symbol)
            asset_return = numeric.sub(
                numeric.safe_div(inputs.prices[ticker], inputs.previous_prices[ticker]),
                ONE,
            )
            weighted = numeric.add(weighted, numeric.mul(item.weight, asset_return))
        return weighted
