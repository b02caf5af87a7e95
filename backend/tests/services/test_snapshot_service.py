# backend/tests/services/test_snapshot_service.py
"""
Tests for the snapshot cache and job runner.

Test Coverage:
- mark_dirty: watermark only moves earlier while dirty
- SnapshotInvalidator: detached session, failures reported as False
- recompute_portfolio: computed, cleared and failed outcomes
- Watermark coverage: partial runs stay dirty, earlier NAV rows untouched
- backfill: re-raises after recording the failure
- run_pending: ingestion, pending detection, GLOBAL refresh
- rederive_dirty: lost invalidations recovered from upstream timestamps
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from roi_engine.models import PerformanceSeries, SeriesType, SnapshotScope
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY
from roi_engine.services.exceptions import DataGapError, PriceProviderError
from roi_engine.services.market_data.ingest_service import PriceIngestService
from roi_engine.services.series_store import PriceRecord, load_series, upsert_prices
from roi_engine.services.signals import SignalService
from roi_engine.services.snapshot_service import (
    JobRunResult,
    SnapshotInvalidator,
    SnapshotService,
    get_snapshot,
    mark_dirty,
)
from roi_engine.utils.date_utils import utc_now, utc_today
from tests.conftest import RecordingInvalidator, create_allocation, create_prices, create_series

KEY = "t1_none_semi"
INCEPTION = date(2024, 1, 2)
END = date(2024, 1, 4)


@pytest.fixture
def semi_portfolio(db):
    create_allocation(db, KEY, INCEPTION, [("BTC", "0.8"), ("ETH", "0.2")])
    create_prices(db, "BTC", date(2024, 1, 1), [100, 110, 99, "108.9"])
    create_prices(db, "ETH", date(2024, 1, 1), [50, 50, 55, 55])
    return KEY


@pytest.fixture
def recent_portfolio(db):
    """
    All-BTC portfolio allocated three days ago, priced through today.

    NAV: 110, 121, 121, 133.1 (ROI since inception 21%).
    """
    today = utc_today()
    create_allocation(db, "t1_none_aggressive", today - timedelta(days=3), [("BTC", "1")])
    create_prices(db, "BTC", today - timedelta(days=5), [100, 100, 110, 121, 121, "133.1"])
    return "t1_none_aggressive"


# =============================================================================
# DIRTY FLAG
# =============================================================================

class TestMarkDirty:
    """Tests for mark_dirty() watermark rules."""

    def test_creates_dirty_snapshot(self, db):
        snapshot = mark_dirty(db, KEY, date(2024, 3, 1))
        db.commit()

        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date == date(2024, 3, 1)
        assert snapshot.scope == SnapshotScope.PORTFOLIO

    def test_watermark_only_moves_earlier(self, db):
        mark_dirty(db, KEY, date(2024, 3, 1))
        mark_dirty(db, KEY, date(2024, 3, 10))
        snapshot = mark_dirty(db, KEY, date(2024, 2, 15))

        assert snapshot.recompute_from_date == date(2024, 2, 15)

    def test_no_date_keeps_watermark(self, db):
        mark_dirty(db, KEY, date(2024, 3, 1))
        snapshot = mark_dirty(db, KEY)
        assert snapshot.recompute_from_date == date(2024, 3, 1)

    def test_clean_snapshot_takes_new_date(self, db):
        snapshot = mark_dirty(db, KEY, date(2024, 1, 1))
        snapshot.needs_recompute = False
        snapshot.recompute_from_date = date(2023, 1, 1)
        db.commit()

        snapshot = mark_dirty(db, KEY, date(2024, 3, 1))
        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date == date(2024, 3, 1)

    def test_scopes_are_separate(self, db):
        mark_dirty(db, GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)
        db.commit()

        assert get_snapshot(db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL) is not None
        assert get_snapshot(db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.PORTFOLIO) is None


class TestSnapshotInvalidator:
    """Tests for the fire-and-forget invalidator."""

    def test_marks_dirty_in_its_own_session(self, db, invalidator):
        assert invalidator(KEY, date(2024, 3, 1)) is True

        db.expire_all()
        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date == date(2024, 3, 1)

    def test_failure_returns_false(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        assert SnapshotInvalidator(broken_factory)(KEY, date(2024, 3, 1)) is False


# =============================================================================
# RECOMPUTE
# =============================================================================

class TestRecomputePortfolio:
    """Tests for SnapshotService.recompute_portfolio()."""

    def test_computes_nav_and_kpis(self, db, semi_portfolio):
        outcome = SnapshotService(db, strict=False).recompute_portfolio(KEY, force_end_date=END)

        assert outcome.status == "computed"
        assert outcome.succeeded
        assert outcome.metrics.last_value == Decimal("109.6416")

        snapshot = get_snapshot(db, KEY)
        assert snapshot.as_of_date == END
        assert snapshot.last_error is None
        assert snapshot.last_computed_at is not None
        # 108 -> 109.6416
        assert float(snapshot.roi_inception) == pytest.approx(1.52)
        assert snapshot.payload["portfolio_key"] == KEY
        assert snapshot.payload["as_of_date"] == "2024-01-04"
        assert snapshot.payload["allocation"]["items"] == [
            {"asset": "BTC", "weight": 0.8},
            {"asset": "ETH", "weight": 0.2},
        ]

    def test_resumes_from_watermark(self, db, semi_portfolio):
        service = SnapshotService(db, strict=False)
        service.recompute_portfolio(KEY, force_end_date=date(2024, 1, 3))

        outcome = service.recompute_portfolio(KEY, force_end_date=END)

        # Resumes at the as_of_date and recomputes 01-03 and 01-04 only
        assert outcome.curve.start_date == date(2024, 1, 3)
        assert len(load_series(db, SeriesType.MODEL_NAV, KEY)) == 3

    def test_watermark_picks_up_changed_price(self, db, semi_portfolio):
        service = SnapshotService(db, strict=False)
        service.recompute_portfolio(KEY, force_end_date=END)

        result = PriceIngestService(db).store_manual_prices([("BTC", date(2024, 1, 4), Decimal("99"))])
        assert result.affected_portfolios == {KEY: date(2024, 1, 4)}
        assert get_snapshot(db, KEY).recompute_from_date == date(2024, 1, 4)

        outcome = service.recompute_portfolio(KEY, force_end_date=END)
        assert outcome.metrics.last_value == Decimal("101.52")

    def test_no_allocations_clears_snapshot(self, db):
        mark_dirty(db, KEY, date(2024, 1, 1))
        db.commit()

        outcome = SnapshotService(db).recompute_portfolio(KEY)

        assert outcome.status == "cleared"
        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is False
        assert snapshot.as_of_date is None
        assert snapshot.payload["metrics"]["roi_inception"] is None

    def test_failure_is_recorded_and_kept_dirty(self, db):
        create_allocation(db, KEY, INCEPTION, [("BTC", "1")])
        create_prices(db, "BTC", date(2024, 1, 1), [100, 0])

        outcome = SnapshotService(db).recompute_portfolio(KEY, force_end_date=INCEPTION)

        assert outcome.status == "failed"
        assert "NonPositivePriceError" in outcome.error
        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is True
        assert snapshot.last_error.startswith("NonPositivePriceError")
        assert snapshot.payload["last_error"] == snapshot.last_error

    def test_failure_keeps_last_good_payload(self, db, semi_portfolio):
        service = SnapshotService(db, strict=False)
        service.recompute_portfolio(KEY, force_end_date=END)

        create_prices(db, "BTC", date(2024, 1, 5), [0])
        create_prices(db, "ETH", date(2024, 1, 5), [55])
        mark_dirty(db, KEY, date(2024, 1, 5))
        db.commit()

        outcome = service.recompute_portfolio(KEY, force_end_date=date(2024, 1, 5))

        assert outcome.status == "failed"
        snapshot = get_snapshot(db, KEY)
        assert snapshot.as_of_date == END
        assert snapshot.payload["as_of_date"] == "2024-01-04"

    def test_strict_gap_fails(self, db, semi_portfolio):
        outcome = SnapshotService(db, strict=True).recompute_portfolio(KEY, force_end_date=date(2024, 1, 5))

        assert outcome.status == "failed"
        assert outcome.gaps[0]["date"] == "2024-01-05"
        assert load_series(db, SeriesType.MODEL_NAV, KEY) == []

    def test_force_refresh(self, db, recent_portfolio):
        outcome = SnapshotService(db).force_refresh(recent_portfolio)

        assert outcome.status == "computed"
        assert outcome.metrics.roi_inception == Decimal("21")
        assert get_snapshot(db, recent_portfolio).as_of_date == utc_today()


class TestWatermarkCoverage:
    """A run only clears the dirty flag when it covered the pending range through today."""

    def test_run_ending_before_today_stays_dirty(self, db, semi_portfolio):
        SnapshotService(db, strict=False).recompute_portfolio(KEY, force_end_date=END)

        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date is None
        assert snapshot.as_of_date == END

    def test_late_start_keeps_earlier_watermark(self, db, semi_portfolio):
        service = SnapshotService(db, strict=False)
        service.recompute_portfolio(KEY, force_end_date=END)
        PriceIngestService(db).store_manual_prices([("BTC", INCEPTION, Decimal("100"))])
        assert get_snapshot(db, KEY).recompute_from_date == INCEPTION

        partial = service.recompute_portfolio(
            KEY, force_start_date=END, force_end_date=END, include_clean=True
        )

        assert partial.curve.start_date == END
        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date == INCEPTION

        outcome = service.recompute_portfolio(KEY, force_end_date=END)

        assert outcome.curve.start_date == INCEPTION
        # 100 -> 101.2 -> 109.296 with the corrected 01-02 close
        assert outcome.metrics.last_value == Decimal("109.296")

    def test_backfill_covering_watermark_clears(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)
        mark_dirty(db, recent_portfolio, utc_today() - timedelta(days=1))
        db.commit()

        service.backfill(recent_portfolio, utc_today() - timedelta(days=3))

        snapshot = get_snapshot(db, recent_portfolio)
        assert snapshot.needs_recompute is False
        assert snapshot.recompute_from_date is None

    def test_publish_leaves_earlier_nav_rows_untouched(self, db, invalidator, recent_portfolio):
        today = utc_today()
        create_prices(db, "ETH", today - timedelta(days=5), [50, 50, 50, 50, 60, 66])
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)

        def nav_rows_before(day):
            rows = db.scalars(
                select(PerformanceSeries)
                .where(
                    PerformanceSeries.series_type == SeriesType.MODEL_NAV,
                    PerformanceSeries.portfolio_key == recent_portfolio,
                    PerformanceSeries.date < day,
                )
                .order_by(PerformanceSeries.date)
            ).all()
            return [(row.date, row.value, row.updated_at) for row in rows]

        signal_day = today - timedelta(days=1)
        before = nav_rows_before(signal_day)
        assert len(before) == 2

        SignalService(invalidator).publish(
            db, "T1", None, "AGGRESSIVE", "ETH",
            published_at=datetime.combine(signal_day, time(12), tzinfo=timezone.utc),
        )
        db.expire_all()
        assert get_snapshot(db, recent_portfolio).recompute_from_date == signal_day

        outcome = service.recompute_portfolio(recent_portfolio)

        assert outcome.curve.start_date == signal_day
        db.expire_all()
        assert nav_rows_before(signal_day) == before
        # 121 -> 145.2 -> 159.72 on ETH from the signal day
        assert outcome.metrics.last_value == Decimal("159.72")

    def test_repeated_runs_converge(self, db, session_factory, recent_portfolio):
        start = utc_today() - timedelta(days=3)
        SnapshotService(db).backfill(recent_portfolio, start)
        first = get_snapshot(db, recent_portfolio)
        expected = (
            dict(first.payload),
            first.as_of_date,
            first.roi_inception,
            first.roi_30d,
            first.max_drawdown,
            first.volatility,
        )
        nav = load_series(db, SeriesType.MODEL_NAV, recent_portfolio)

        other = session_factory()
        try:
            SnapshotService(other).backfill(recent_portfolio, start)
        finally:
            other.close()

        db.expire_all()
        second = get_snapshot(db, recent_portfolio)
        assert (
            second.payload,
            second.as_of_date,
            second.roi_inception,
            second.roi_30d,
            second.max_drawdown,
            second.volatility,
        ) == expected
        assert load_series(db, SeriesType.MODEL_NAV, recent_portfolio) == nav


class TestBackfill:
    """Tests for SnapshotService.backfill()."""

    def test_strict_gap_is_raised_and_recorded(self, db, semi_portfolio):
        with pytest.raises(DataGapError):
            SnapshotService(db).backfill(KEY, INCEPTION, strict=True)

        snapshot = get_snapshot(db, KEY)
        assert snapshot.needs_recompute is True
        assert snapshot.last_error.startswith("DataGapError")

    def test_recomputes_clean_snapshot_from_start(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)

        outcome = service.backfill(recent_portfolio, utc_today() - timedelta(days=30))

        assert outcome.curve.start_date == utc_today() - timedelta(days=3)
        assert len(outcome.curve.points) == 4


# =============================================================================
# GLOBAL SNAPSHOT
# =============================================================================

class TestRefreshGlobal:
    """Tests for SnapshotService.refresh_global()."""

    def test_builds_when_dirty(self, db):
        create_series(db, SeriesType.MODEL, date(2024, 1, 1), [100, 110])

        assert SnapshotService(db).refresh_global() is True

        snapshot = get_snapshot(db, GLOBAL_PORTFOLIO_KEY, SnapshotScope.GLOBAL)
        assert snapshot.needs_recompute is False
        assert snapshot.as_of_date == date(2024, 1, 2)
        assert snapshot.payload["metrics"]["roi_since_inception_pct"] == 10.0

    def test_clean_snapshot_is_skipped(self, db):
        service = SnapshotService(db)
        service.refresh_global()

        assert service.refresh_global() is False
        assert service.refresh_global(force=True) is True


# =============================================================================
# SWEEP
# =============================================================================

class TestRunPending:
    """Tests for SnapshotService.run_pending()."""

    def test_recomputes_allocated_portfolio_without_snapshot(self, db, recent_portfolio):
        result = SnapshotService(db).run_pending(trigger="test")

        assert isinstance(result, JobRunResult)
        assert result.processed == 1
        assert result.succeeded == 1
        assert result.failed == 0
        assert result.global_refreshed is True
        assert result.finished_at is not None
        assert get_snapshot(db, recent_portfolio).needs_recompute is False

    def test_clean_portfolios_are_not_processed(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.run_pending()

        assert service.run_pending().processed == 0

    def test_dashboard_key_is_never_a_portfolio(self, db):
        create_allocation(db, GLOBAL_PORTFOLIO_KEY, date(2024, 1, 1), [("BTC", "1")])
        assert SnapshotService(db).allocated_portfolio_keys() == []

    def test_single_portfolio_skips_global(self, db, recent_portfolio):
        mark_dirty(db, KEY, date(2024, 1, 1))
        db.commit()

        result = SnapshotService(db).run_pending(portfolio_key=recent_portfolio)

        assert [outcome.portfolio_key for outcome in result.outcomes] == [recent_portfolio]
        assert result.global_refreshed is False

    def test_failure_does_not_stop_the_sweep(self, db, recent_portfolio):
        create_allocation(db, KEY, utc_today(), [("SOL", "1")])
        create_prices(db, "SOL", utc_today() - timedelta(days=1), [10, 0])

        result = SnapshotService(db).run_pending()

        statuses = {outcome.portfolio_key: outcome.status for outcome in result.outcomes}
        assert statuses == {recent_portfolio: "computed", KEY: "failed"}
        assert result.failed == 1

    def test_ingests_prices_first(self, db, fake_provider):
        today = utc_today()
        key = "t1_none_aggressive"
        create_allocation(db, key, today - timedelta(days=1), [("ETH", "1")])
        fake_provider.set_closes("ETH", today - timedelta(days=3), [50, 50, 55, 60])

        service = SnapshotService(db, price_ingest=PriceIngestService(db, fake_provider))
        result = service.run_pending(trigger="cron")

        assert fake_provider.calls == [("ETH", today - timedelta(days=3), today)]
        assert result.prices_ingested == 4
        assert result.outcomes[0].metrics.last_value == Decimal("120")

    def test_provider_failure_becomes_warning(self, db, fake_provider, recent_portfolio):
        fake_provider.set_error("BTC", PriceProviderError("upstream down", provider="fake"))

        service = SnapshotService(db, price_ingest=PriceIngestService(db, fake_provider))
        result = service.run_pending()

        assert any("upstream down" in warning for warning in result.warnings)
        assert result.succeeded == 1

    def test_to_dict(self, db, recent_portfolio):
        data = SnapshotService(db).run_pending(trigger="cron").to_dict()

        assert data["trigger"] == "cron"
        assert data["processed"] == 1
        assert data["outcomes"][0]["status"] == "computed"
        assert data["outcomes"][0]["curve"]["points_computed"] == 4

    def test_started_before_finished(self, db):
        result = SnapshotService(db).run_pending()
        assert result.started_at <= result.finished_at <= utc_now()


class TestRederiveDirty:
    """Tests for recovering lost invalidations in the sweep."""

    def test_lost_allocation_invalidation_is_recovered(self, db, recent_portfolio):
        today = utc_today()
        create_prices(db, "ETH", today - timedelta(days=4), [50, 60, 60, 66, 99])
        service = SnapshotService(db)
        service.run_pending(ingest_prices=False)
        assert get_snapshot(db, recent_portfolio).needs_recompute is False

        lost = RecordingInvalidator(succeed=False)
        SignalService(lost).write_allocation(
            db, recent_portfolio, today - timedelta(days=3), [("ETH", Decimal("1"))]
        )
        assert len(lost.calls) == 1

        result = service.run_pending(ingest_prices=False)

        assert result.processed == 1
        # 120 -> 120 -> 132 -> 198 on ETH
        assert result.outcomes[0].metrics.last_value == Decimal("198")
        assert get_snapshot(db, recent_portfolio).needs_recompute is False

    def test_price_changed_after_last_run(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)
        changed_day = utc_today() - timedelta(days=1)

        upsert_prices(db, [PriceRecord("BTC", changed_day, Decimal("110"), "manual")])
        db.commit()

        assert service.rederive_dirty() == {recent_portfolio: changed_day}
        assert get_snapshot(db, recent_portfolio).recompute_from_date == changed_day

        service.run_pending(ingest_prices=False)
        nav = {point.date: point.value for point in load_series(db, SeriesType.MODEL_NAV, recent_portfolio)}
        assert nav[changed_day] == Decimal("110")

    def test_identical_refetch_is_not_a_change(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)

        upsert_prices(db, [PriceRecord("BTC", utc_today() - timedelta(days=1), Decimal("121"), "test")])
        db.commit()

        assert service.rederive_dirty() == {}
        assert service.run_pending(ingest_prices=False).processed == 0

    def test_unrelated_ticker_is_ignored(self, db, recent_portfolio):
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)

        create_prices(db, "SOL", utc_today(), [10])

        assert service.rederive_dirty() == {}

    def test_dirty_snapshot_watermark_is_lowered(self, db, recent_portfolio):
        today = utc_today()
        create_prices(db, "ETH", today - timedelta(days=4), [50, 60, 60, 66, 99])
        service = SnapshotService(db)
        service.recompute_portfolio(recent_portfolio)
        mark_dirty(db, recent_portfolio, today - timedelta(days=1))
        db.commit()

        SignalService(RecordingInvalidator(succeed=False)).write_allocation(
            db, recent_portfolio, today - timedelta(days=3), [("ETH", Decimal("1"))]
        )

        assert service.rederive_dirty() == {recent_portfolio: today - timedelta(days=3)}
        assert service.rederive_dirty() == {}
        assert get_snapshot(db, recent_portfolio).recompute_from_date == today - timedelta(days=3)
