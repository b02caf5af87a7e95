# backend/roi_engine/services/snapshot_service.py
"""
Snapshot cache and job runner.

Every (scope, portfolio_key) has one roi_dashboard_snapshots row acting as a
persisted state machine:

    Clean  (needs_recompute=False)  payload authoritative as of as_of_date
    Dirty  (needs_recompute=True)   recompute from recompute_from_date on
    Error  (dirty + last_error)     last run failed, retried by the next sweep

This service handles:
- Dirtying snapshots and lowering their watermark (mark_dirty)
- Fire-and-forget dirtying from publish/import paths (SnapshotInvalidator)
- Recomputing one portfolio: equity curve -> metrics -> payload
- Sweeping every pending portfolio (run_pending), then the GLOBAL snapshot
- Forced synchronous refresh for admin and read paths

Design Principles:
- Idempotency over locking: NAV upserts converge, the snapshot row is
  last-writer-wins
- The watermark is only cleared after a success covering it through today
- Each sweep re-derives dirtiness from upstream timestamps, so a lost
  invalidation only delays a recompute
- Errors are caught per portfolio at the job boundary and never stop the sweep

Usage:
    from roi_engine.services.snapshot_service import SnapshotService

    service = SnapshotService(db, price_ingest=PriceIngestService(db, provider))
    result = service.run_pending(trigger="cron")
    print(result.succeeded, result.failed)
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session, sessionmaker

from roi_engine.config import settings
from roi_engine.database import session_scope
from roi_engine.models import (
    AllocationSnapshot,
    AssetPriceDaily,
    RoiDashboardSnapshot,
    SeriesType,
    SnapshotScope,
)
from roi_engine.services import numeric
from roi_engine.services.allocation import items_from_snapshot
from roi_engine.services.analytics import MetricsCalculator, SeriesMetrics
from roi_engine.services.constants import CASH_SYMBOL, GLOBAL_PORTFOLIO_KEY, KPI_QUANTUM
from roi_engine.services.dashboard.payload import build_global_payload
from roi_engine.services.equity_curve import EquityCurveBuilder, EquityCurveResult
from roi_engine.services.exceptions import DataGapError, PriceProviderError
from roi_engine.services.series_store import load_series
from roi_engine.services.tickers import canonical_ticker
from roi_engine.utils.date_utils import to_date_key, utc_now, utc_today

if TYPE_CHECKING:
    from roi_engine.services.market_data.ingest_service import PriceIngestService

logger = logging.getLogger(__name__)

# Stored error text is truncated to this many characters
MAX_ERROR_LENGTH = 2000


# =============================================================================
# DIRTY FLAG
# =============================================================================

def get_snapshot(
        db: Session,
        portfolio_key: str,
        scope: SnapshotScope = SnapshotScope.PORTFOLIO,
) -> RoiDashboardSnapshot | None:
    return db.scalar(
        select(RoiDashboardSnapshot).where(
            RoiDashboardSnapshot.scope == scope,
            RoiDashboardSnapshot.portfolio_key == portfolio_key,
        )
    )


def get_or_create_snapshot(
        db: Session,
        portfolio_key: str,
        scope: SnapshotScope = SnapshotScope.PORTFOLIO,
) -> RoiDashboardSnapshot:
    """Existing snapshot, or a new dirty one (flushed, not committed)."""
    snapshot = get_snapshot(db, portfolio_key, scope)
    if snapshot is None:
        snapshot = RoiDashboardSnapshot(
            scope=scope,
            portfolio_key=portfolio_key,
            payload={},
            needs_recompute=True,
        )
        db.add(snapshot)
        db.flush()
    return snapshot


def mark_dirty(
        db: Session,
        portfolio_key: str,
        from_date: date | None = None,
        scope: SnapshotScope = SnapshotScope.PORTFOLIO,
) -> RoiDashboardSnapshot:
    """
    Flag a snapshot for recompute and lower its watermark.

    The watermark only moves earlier: a dirty snapshot keeps the earliest
    date any mutation asked for. Passing no date on a clean snapshot keeps
    the watermark unset (the runner then resumes from as_of_date).

    Does not commit.
    """
    snapshot = get_or_create_snapshot(db, portfolio_key, scope)
    was_dirty = snapshot.needs_recompute
    snapshot.needs_recompute = True

    if from_date is not None:
        current = snapshot.recompute_from_date if was_dirty else None
        snapshot.recompute_from_date = from_date if current is None else min(current, from_date)

    logger.debug(
        f"Marked {scope.value}/{portfolio_key} dirty from {snapshot.recompute_from_date}"
    )
    return snapshot


class SnapshotInvalidator:
    """
    Fire-and-forget dirtying in a session of its own.

    Called after the caller's own transaction has committed. Failures are
    logged and reported as False; the next sweep re-derives dirtiness from
    upstream state, so a lost flag only delays a recompute.
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory

    def __call__(
            self,
            portfolio_key: str,
            from_date: date | None = None,
            scope: SnapshotScope = SnapshotScope.PORTFOLIO,
    ) -> bool:
        try:
            with session_scope(self._session_factory) as db:
                mark_dirty(db, portfolio_key, from_date, scope)
            return True
        except Exception as e:
            logger.warning(
                f"Could not mark {scope.value}/{portfolio_key} dirty: {e}",
                exc_info=True,
            )
            return False


Invalidator = Callable[..., bool]


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class PortfolioRunOutcome:
    """
    Result of recomputing one portfolio.

    status: "computed", "cleared" (no allocations) or "failed"
    """
    portfolio_key: str
    status: str
    curve: EquityCurveResult | None = None
    metrics: SeriesMetrics | None = None
    error: str | None = None
    gaps: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> dict:
        return {
            "portfolio_key": self.portfolio_key,
            "status": self.status,
            "curve": self.curve.to_dict() if self.curve else None,
            "metrics": self.metrics.to_dict(include_monthly=False) if self.metrics else None,
            "error": self.error,
            "gaps": self.gaps,
            "duration_ms": self.duration_ms,
        }


@dataclass
class JobRunResult:
    """Complete result of one sweep."""
    trigger: str
    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[PortfolioRunOutcome] = field(default_factory=list)
    prices_ingested: int = 0
    global_refreshed: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "prices_ingested": self.prices_ingested,
            "global_refreshed": self.global_refreshed,
            "warnings": self.warnings,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def _kpi(value) -> Any:
    return numeric.quantize(value, KPI_QUANTUM) if value is not None else None


def _error_text(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]


# =============================================================================
# SERVICE
# =============================================================================

class SnapshotService:
    """
    Recomputes and caches dashboard snapshots.

    Owns commits: each portfolio is committed on its own so one failure
    never rolls back another portfolio's results.
    """

    def __init__(
            self,
            db: Session,
            curve_builder: EquityCurveBuilder | None = None,
            price_ingest: "PriceIngestService | None" = None,
            strict: bool | None = None,
    ) -> None:
        self._db = db
        self._strict = settings.nav_strict_gaps if strict is None else strict
        self._curve_builder = curve_builder or EquityCurveBuilder(db, strict=self._strict)
        self._price_ingest = price_ingest

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(
            self,
            portfolio_key: str,
            scope: SnapshotScope = SnapshotScope.PORTFOLIO,
    ) -> RoiDashboardSnapshot | None:
        return get_snapshot(self._db, portfolio_key, scope)

    def mark_dirty(
            self,
            portfolio_key: str,
            from_date: date | None = None,
            scope: SnapshotScope = SnapshotScope.PORTFOLIO,
    ) -> RoiDashboardSnapshot:
        """Dirty a snapshot and commit."""
        snapshot = mark_dirty(self._db, portfolio_key, from_date, scope)
        self._db.commit()
        return snapshot

    def allocated_portfolio_keys(self) -> list[str]:
        """Every portfolio key that has at least one allocation snapshot."""
        keys = self._db.scalars(
            select(distinct(AllocationSnapshot.portfolio_key))
            .where(AllocationSnapshot.portfolio_key != GLOBAL_PORTFOLIO_KEY)
        ).all()
        return sorted(keys)

    def upstream_changed_from(self, portfolio_key: str, since: datetime) -> date | None:
        """
        Earliest date whose inputs changed after `since`.

        Looks at allocation snapshots written or rewritten after `since` and
        at closes stored after it for any ticker the portfolio allocates to.
        """
        candidates = []
        allocation_date = self._db.scalar(
            select(func.min(AllocationSnapshot.as_of_date)).where(
                AllocationSnapshot.portfolio_key == portfolio_key,
                AllocationSnapshot.updated_at > since,
            )
        )
        if allocation_date is not None:
            candidates.append(allocation_date)

        all_items = self._db.scalars(
            select(AllocationSnapshot.items).where(AllocationSnapshot.portfolio_key == portfolio_key)
        ).all()
        tickers = {
            canonical_ticker(item.symbol)
            for items in all_items
            for item in items_from_snapshot(items)
        } - {CASH_SYMBOL}
        if tickers:
            price_date = self._db.scalar(
                select(func.min(AssetPriceDaily.date)).where(
                    AssetPriceDaily.symbol.in_(sorted(tickers)),
                    AssetPriceDaily.fetched_at > since,
                )
            )
            if price_date is not None:
                candidates.append(price_date)

        return min(candidates) if candidates else None

    def rederive_dirty(self, portfolio_key: str | None = None) -> dict[str, date]:
        """
        Dirty snapshots whose upstream data changed after their last run.

        Recovers invalidations that were lost after a publish, an allocation
        write or a price upsert: a clean snapshot is dirtied, a dirty one has
        its watermark lowered when the change is earlier. Commits.

        Returns:
            Portfolio key -> watermark for every snapshot dirtied or lowered here
        """
        stmt = select(RoiDashboardSnapshot).where(
            RoiDashboardSnapshot.scope == SnapshotScope.PORTFOLIO,
            RoiDashboardSnapshot.last_computed_at.is_not(None),
        )
        if portfolio_key is not None:
            stmt = stmt.where(RoiDashboardSnapshot.portfolio_key == portfolio_key)

        dirtied: dict[str, date] = {}
        for snapshot in self._db.scalars(stmt).all():
            changed_from = self.upstream_changed_from(snapshot.portfolio_key, snapshot.last_computed_at)
            if changed_from is None:
                continue
            if snapshot.needs_recompute:
                # No date while dirty means pending from inception
                current = self._watermark(snapshot)
                if current is None or current <= changed_from:
                    continue
            mark_dirty(self._db, snapshot.portfolio_key, changed_from)
            dirtied[snapshot.portfolio_key] = changed_from
            logger.warning(
                f"Upstream data for {snapshot.portfolio_key} changed since its last run, "
                f"dirtying from {changed_from}"
            )

        if dirtied:
            self._db.commit()
        return dirtied

    def pending_portfolio_keys(self, portfolio_key: str | None = None) -> list[str]:
        """
        Portfolios needing a recompute.

        Dirty PORTFOLIO snapshots, plus portfolios with allocations but no
        snapshot at all (a lost invalidation). Run rederive_dirty first to
        also catch clean snapshots with newer upstream data.
        """
        dirty_stmt = select(RoiDashboardSnapshot.portfolio_key).where(
            RoiDashboardSnapshot.scope == SnapshotScope.PORTFOLIO,
            RoiDashboardSnapshot.needs_recompute.is_(True),
        )
        known_stmt = select(RoiDashboardSnapshot.portfolio_key).where(
            RoiDashboardSnapshot.scope == SnapshotScope.PORTFOLIO,
        )
        if portfolio_key is not None:
            dirty_stmt = dirty_stmt.where(RoiDashboardSnapshot.portfolio_key == portfolio_key)
            known_stmt = known_stmt.where(RoiDashboardSnapshot.portfolio_key == portfolio_key)

        pending = set(self._db.scalars(dirty_stmt).all())
        known = set(self._db.scalars(known_stmt).all())

        allocated = self.allocated_portfolio_keys()
        if portfolio_key is not None:
            allocated = [key for key in allocated if key == portfolio_key]
        pending.update(key for key in allocated if key not in known)

        return sorted(pending)

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    @staticmethod
    def _watermark(snapshot: RoiDashboardSnapshot) -> date | None:
        """Earliest of recompute_from_date and as_of_date (either may be unset)."""
        candidates = [d for d in (snapshot.recompute_from_date, snapshot.as_of_date) if d is not None]
        return min(candidates) if candidates else None

    def recompute_portfolio(
            self,
            portfolio_key: str,
            *,
            force_start_date: date | None = None,
            force_end_date: date | None = None,
            include_clean: bool = False,
            strict: bool | None = None,
            raise_errors: bool = False,
    ) -> PortfolioRunOutcome:
        """
        Rebuild NAV from the watermark forward and refresh the snapshot.

        Args:
            portfolio_key: Portfolio to recompute
            force_start_date: Recompute from this date (backfill)
            force_end_date: Last date to compute (default: today UTC)
            include_clean: Ignore the watermark and start from force_start_date
            strict: Fail on gaps instead of flat days
            raise_errors: Re-raise after recording the failure

        Returns:
            PortfolioRunOutcome
        """
        started = time.monotonic()
        # Upstream writes after this instant are picked up by the next sweep
        started_at = utc_now()
        strict = self._strict if strict is None else strict

        try:
            snapshot = get_or_create_snapshot(self._db, portfolio_key)
            watermark = None if include_clean else self._watermark(snapshot)
            inception = self._curve_builder.inception_date(portfolio_key)

            # A dirty snapshot without any date is pending from inception
            pending_from = None
            if snapshot.needs_recompute:
                pending_from = self._watermark(snapshot) or inception

            if inception is None:
                outcome = self._clear(snapshot)
            else:
                curve = self._curve_builder.build(
                    portfolio_key,
                    force_start_date=force_start_date,
                    force_end_date=force_end_date,
                    watermark=watermark,
                    include_clean=include_clean,
                    strict=strict,
                )
                outcome = self._store_result(snapshot, curve, force_end_date, pending_from, started_at)

            self._db.commit()

        except Exception as e:
            self._db.rollback()
            outcome = PortfolioRunOutcome(
                portfolio_key=portfolio_key,
                status="failed",
                error=_error_text(e),
                gaps=e.gaps if isinstance(e, DataGapError) else [],
            )
            logger.error(f"Recompute failed for {portfolio_key}: {e}", exc_info=True)
            self._record_failure(portfolio_key, SnapshotScope.PORTFOLIO, e)
            if raise_errors:
                raise

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        if outcome.curve is not None:
            logger.info(
                f"Recomputed {portfolio_key}: {outcome.curve.points_written} points written, "
                f"{len(outcome.curve.gap_dates)} gap day(s), {outcome.duration_ms}ms"
            )
        return outcome

    def _clear(self, snapshot: RoiDashboardSnapshot) -> PortfolioRunOutcome:
        logger.warning(f"No allocation snapshots for {snapshot.portfolio_key}, clearing snapshot")
        snapshot.needs_recompute = False
        snapshot.recompute_from_date = None
        snapshot.as_of_date = None
        snapshot.last_error = None
        snapshot.last_computed_at = utc_now()
        snapshot.roi_inception = None
        snapshot.roi_30d = None
        snapshot.max_drawdown = None
        snapshot.volatility = None
        snapshot.payload = {
            "portfolio_key": snapshot.portfolio_key,
            "as_of_date": None,
            "metrics": SeriesMetrics().to_dict(),
            "allocation": None,
            "last_run": None,
            "last_error": None,
        }
        return PortfolioRunOutcome(portfolio_key=snapshot.portfolio_key, status="cleared")

    def _store_result(
            self,
            snapshot: RoiDashboardSnapshot,
            curve: EquityCurveResult,
            end_date: date | None,
            pending_from: date | None = None,
            computed_at: datetime | None = None,
    ) -> PortfolioRunOutcome:
        """
        Write the payload and KPIs of a successful build.

        The snapshot only turns clean when the build covered everything that
        was pending: from the prior watermark (pending_from) through today.
        A later start keeps the snapshot dirty from pending_from; an earlier
        end keeps it dirty so the next run resumes from as_of_date.
        """
        key = snapshot.portfolio_key
        points = load_series(self._db, SeriesType.MODEL_NAV, key, end_date=end_date)
        metrics = MetricsCalculator.calculate_all(points)

        start_covered = pending_from is None or (
            curve.start_date is not None and curve.start_date <= pending_from
        )
        end_covered = curve.end_date is not None and curve.end_date >= utc_today()

        if start_covered and end_covered:
            snapshot.needs_recompute = False
            snapshot.recompute_from_date = None
        else:
            snapshot.needs_recompute = True
            snapshot.recompute_from_date = None if start_covered else pending_from
            logger.info(
                f"{key} stays dirty: computed {curve.start_date}..{curve.end_date}, "
                f"pending from {pending_from or 'inception'}"
            )
        snapshot.as_of_date = metrics.last_date or curve.end_date
        snapshot.last_computed_at = computed_at or utc_now()
        snapshot.last_error = None
        snapshot.roi_inception = _kpi(metrics.roi_inception)
        snapshot.roi_30d = _kpi(metrics.roi_30d)
        snapshot.max_drawdown = _kpi(metrics.max_drawdown)
        snapshot.volatility = _kpi(metrics.volatility)
        snapshot.payload = {
            "portfolio_key": key,
            "as_of_date": to_date_key(snapshot.as_of_date),
            "metrics": metrics.to_dict(),
            "allocation": self._latest_allocation(key),
            "last_run": curve.to_dict(),
            "last_error": None,
        }
        return PortfolioRunOutcome(
            portfolio_key=key,
            status="computed",
            curve=curve,
            metrics=metrics,
            gaps=[gap.to_dict() for gap in curve.gaps],
        )

    def _latest_allocation(self, portfolio_key: str) -> dict | None:
        record = self._db.scalar(
            select(AllocationSnapshot)
            .where(AllocationSnapshot.portfolio_key == portfolio_key)
            .order_by(AllocationSnapshot.as_of_date.desc())
            .limit(1)
        )
        if record is None:
            return None
        return {
            "as_of_date": to_date_key(record.as_of_date),
            "items": [
                {"asset": item.symbol, "weight": numeric.to_num(item.weight)}
                for item in items_from_snapshot(record.items)
            ],
        }

    def _record_failure(self, portfolio_key: str, scope: SnapshotScope, error: Exception) -> None:
        """Write last_error and keep the snapshot dirty; the payload stays the last good one."""
        try:
            snapshot = get_or_create_snapshot(self._db, portfolio_key, scope)
            snapshot.needs_recompute = True
            snapshot.last_error = _error_text(error)
            snapshot.payload = {**(snapshot.payload or {}), "last_error": snapshot.last_error}
            self._db.commit()
        except Exception as e:
            self._db.rollback()
            logger.error(f"Could not record failure for {scope.value}/{portfolio_key}: {e}", exc_info=True)

    def force_refresh(self, portfolio_key: str) -> PortfolioRunOutcome:
        """Recompute now, regardless of the dirty flag."""
        logger.info(f"Forced refresh of {portfolio_key}")
        return self.recompute_portfolio(portfolio_key)

    def backfill(
            self,
            portfolio_key: str,
            start_date: date,
            strict: bool | None = None,
    ) -> PortfolioRunOutcome:
        """
        Recompute from an earlier start regardless of the watermark.

        Raises the underlying error (e.g. DataGapError in strict mode) after
        recording it on the snapshot.
        """
        logger.info(f"Backfilling {portfolio_key} from {start_date}")
        return self.recompute_portfolio(
            portfolio_key,
            force_start_date=start_date,
            include_clean=True,
            strict=strict,
            raise_errors=True,
        )

    # -------------------------------------------------------------------------
    # Global snapshot
    # -------------------------------------------------------------------------

    def refresh_global(self, force: bool = False) -> bool:
        """
        Rebuild the GLOBAL dashboard payload when dirty (or forced).

        Returns:
            True if the payload was rebuilt
        """
        snapshot = get_or_create_snapshot(self._db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL)
        if not force and not snapshot.needs_recompute:
            return False

        try:
            payload, model_metrics = build_global_payload(self._db)
            snapshot.payload = payload
            snapshot.needs_recompute = False
            snapshot.recompute_from_date = None
            snapshot.as_of_date = model_metrics.last_date
            snapshot.last_computed_at = utc_now()
            snapshot.last_error = None
            snapshot.roi_inception = _kpi(model_metrics.roi_inception)
            snapshot.roi_30d = _kpi(model_metrics.roi_30d)
            snapshot.max_drawdown = _kpi(model_metrics.max_drawdown)
            snapshot.volatility = _kpi(model_metrics.volatility)
            self._db.commit()
        except Exception as e:
            self._db.rollback()
            logger.error(f"Global dashboard refresh failed: {e}", exc_info=True)
            self._record_failure(GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL, e)
            return False

        logger.info("Refreshed global dashboard snapshot")
        return True

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def run_pending(
            self,
            portfolio_key: str | None = None,
            trigger: str = "manual",
            ingest_prices: bool = True,
    ) -> JobRunResult:
        """
        Recompute every pending portfolio, then the GLOBAL snapshot.

        Args:
            portfolio_key: Restrict the sweep to one portfolio
            trigger: Label for logs ("cron", "admin", ...)
            ingest_prices: Fetch missing closes before recomputing

        Returns:
            JobRunResult with one outcome per processed portfolio
        """
        result = JobRunResult(trigger=trigger, started_at=utc_now())
        logger.info(f"Portfolio ROI job started (trigger={trigger}, portfolio={portfolio_key or 'all'})")

        if ingest_prices and self._price_ingest is not None:
            keys = self.allocated_portfolio_keys()
            if portfolio_key is not None:
                keys = [key for key in keys if key == portfolio_key]
            for key in keys:
                try:
                    ingest = self._price_ingest.ingest_for_portfolio(key)
                    result.prices_ingested += ingest.rows_written
                    result.warnings.extend(ingest.warnings)
                except PriceProviderError as e:
                    message = f"Price ingestion failed for {key}: {e}"
                    logger.warning(message)
                    result.warnings.append(message)

        self.rederive_dirty(portfolio_key)
        for key in self.pending_portfolio_keys(portfolio_key):
            result.outcomes.append(self.recompute_portfolio(key))

        if portfolio_key is None:
            result.global_refreshed = self.refresh_global()

        result.finished_at = utc_now()
        logger.info(
            f"Portfolio ROI job finished (trigger={trigger}): processed={result.processed}, "
            f"succeeded={result.succeeded}, failed={result.failed}, "
            f"prices={result.prices_ingested}"
        )
        return result
