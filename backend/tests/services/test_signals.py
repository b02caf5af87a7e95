# backend/tests/services/test_signals.py
"""
Tests for signal publishing and allocation writes.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from roi_engine.models import AllocationSnapshot, PortfolioDailySignal, RiskProfile, SnapshotScope
from roi_engine.services.constants import GLOBAL_PORTFOLIO_KEY
from roi_engine.services.exceptions import (
    AllocationWeightError,
    InvalidPortfolioKeyError,
    MissingAssetError,
    ValidationError,
)
from roi_engine.services.signals import SignalService, latest_allocation, latest_signal
from roi_engine.services.snapshot_service import get_snapshot
from tests.conftest import RecordingInvalidator, create_signal

PUBLISHED = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# PUBLISH
# =============================================================================

class TestPublish:
    """Tests for SignalService.publish()."""

    def test_stores_signal_and_allocation(self, db, recording_invalidator):
        service = SignalService(recording_invalidator)
        result = service.publish(db, "T1", None, "AGGRESSIVE", "Go long BTC", PUBLISHED)

        assert result.portfolio_key == "t1_none_aggressive"
        assert result.signal.id is not None
        assert result.allocation.as_of_date == date(2024, 1, 2)
        assert result.allocation.items == [{"asset": "BTC", "weight": "1"}]
        assert result.allocation.source_signal_id == result.signal.id
        assert result.invalidated is True
        assert recording_invalidator.calls == [
            ("t1_none_aggressive", date(2024, 1, 2), SnapshotScope.PORTFOLIO),
        ]

    def test_effective_date_is_utc(self, db, recording_invalidator):
        # 23:30 in New York is the next day in UTC
        published = datetime(2024, 1, 2, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        result = SignalService(recording_invalidator).publish(
            db, "T1", None, "SEMI", "BTC then ETH", published
        )
        assert result.allocation.as_of_date == date(2024, 1, 3)

    def test_same_day_republish_replaces_allocation(self, db, recording_invalidator):
        service = SignalService(recording_invalidator)
        service.publish(db, "T1", None, "AGGRESSIVE", "BTC", PUBLISHED)
        service.publish(db, "T1", None, "AGGRESSIVE", "SOL", PUBLISHED + timedelta(hours=1))

        snapshots = db.query(AllocationSnapshot).all()
        assert len(snapshots) == 1
        assert snapshots[0].items == [{"asset": "SOL", "weight": "1"}]
        assert db.query(PortfolioDailySignal).count() == 2

    def test_structured_conservative_signal(self, db, recording_invalidator):
        result = SignalService(recording_invalidator).publish(
            db, "T2", "Majors", RiskProfile.CONSERVATIVE,
            '{"primaryAsset": "BTC", "secondaryAsset": "ETH", "tertiaryAsset": "CASH"}',
            PUBLISHED,
        )
        assert result.portfolio_key == "t2_majors_conservative"
        assert result.allocation.items == [
            {"asset": "BTC", "weight": "0.6"},
            {"asset": "ETH", "weight": "0.3"},
            {"asset": "CASH", "weight": "0.1"},
        ]

    def test_legacy_tier_is_mapped(self, db, recording_invalidator):
        result = SignalService(recording_invalidator).publish(db, "T3", None, "AGGRESSIVE", "ETH", PUBLISHED)

        assert result.portfolio_key == "t2_majors_aggressive"
        assert result.signal.tier == "T3"

    def test_unknown_asset_rejected(self, db, recording_invalidator):
        with pytest.raises(ValidationError) as exc_info:
            SignalService(recording_invalidator).publish(db, "T1", None, "AGGRESSIVE", "Stay patient", PUBLISHED)

        assert exc_info.value.field == "signal"
        assert recording_invalidator.calls == []
        assert db.query(PortfolioDailySignal).count() == 0

    def test_missing_secondary_rejected(self, db, recording_invalidator):
        with pytest.raises(MissingAssetError):
            SignalService(recording_invalidator).publish(db, "T1", None, "SEMI", "BTC only", PUBLISHED)

    def test_unknown_tier_rejected(self, db, recording_invalidator):
        with pytest.raises(InvalidPortfolioKeyError):
            SignalService(recording_invalidator).publish(db, "T8", None, "SEMI", "BTC ETH", PUBLISHED)

    def test_failed_invalidation_keeps_the_signal(self, db):
        result = SignalService(RecordingInvalidator(succeed=False)).publish(
            db, "T1", None, "AGGRESSIVE", "BTC", PUBLISHED
        )

        assert result.invalidated is False
        assert latest_allocation(db, "t1_none_aggressive") is not None

    def test_real_invalidator_dirties_snapshot(self, db, invalidator):
        SignalService(invalidator).publish(db, "T1", None, "AGGRESSIVE", "BTC", PUBLISHED)

        db.expire_all()
        snapshot = get_snapshot(db, "t1_none_aggressive")
        assert snapshot.needs_recompute is True
        assert snapshot.recompute_from_date == date(2024, 1, 2)

    def test_to_dict(self, db, recording_invalidator):
        data = SignalService(recording_invalidator).publish(
            db, "T1", None, "AGGRESSIVE", "BTC", PUBLISHED
        ).to_dict()

        assert data["portfolio_key"] == "t1_none_aggressive"
        assert data["assets"] == {"primary": "BTC", "secondary": None, "tertiary": None}
        assert data["allocation"]["as_of_date"] == "2024-01-02"
        assert data["invalidated"] is True


# =============================================================================
# ALLOCATION WRITES
# =============================================================================

class TestWriteAllocation:
    """Tests for SignalService.write_allocation()."""

    def test_portfolio_allocation(self, db, recording_invalidator):
        snapshot = SignalService(recording_invalidator).write_allocation(
            db, "T1_None_Semi", date(2024, 2, 1), [("btc", Decimal("0.8")), ("ETH", Decimal("0.2"))]
        )

        assert snapshot.portfolio_key == "t1_none_semi"
        assert snapshot.items == [{"asset": "BTC", "weight": "0.8"}, {"asset": "ETH", "weight": "0.2"}]
        assert recording_invalidator.calls == [
            ("t1_none_semi", date(2024, 2, 1), SnapshotScope.PORTFOLIO),
        ]

    def test_cash_weight_is_stored_as_cash_item(self, db, recording_invalidator):
        snapshot = SignalService(recording_invalidator).write_allocation(
            db, "t1_none_semi", date(2024, 2, 1), [("BTC", Decimal("0.7"))], cash_weight=Decimal("0.3")
        )
        assert snapshot.items[-1] == {"asset": "CASH", "weight": "0.3"}

    def test_portfolio_weights_must_sum_exactly(self, db, recording_invalidator):
        with pytest.raises(AllocationWeightError):
            SignalService(recording_invalidator).write_allocation(
                db, "t1_none_semi", date(2024, 2, 1), [("BTC", Decimal("0.5")), ("ETH", Decimal("0.498"))]
            )

    def test_dashboard_allocation_uses_display_tolerance(self, db, recording_invalidator):
        snapshot = SignalService(recording_invalidator).write_allocation(
            db, GLOBAL_PORTFOLIO_KEY, date(2024, 2, 1), [("BTC", Decimal("0.5")), ("ETH", Decimal("0.498"))]
        )

        assert snapshot.portfolio_key == GLOBAL_PORTFOLIO_KEY
        assert recording_invalidator.calls == [(GLOBAL_PORTFOLIO_KEY, None, SnapshotScope.GLOBAL)]

    def test_duplicate_assets_rejected(self, db, recording_invalidator):
        with pytest.raises(AllocationWeightError):
            SignalService(recording_invalidator).write_allocation(
                db, "t1_none_semi", date(2024, 2, 1), [("BTC", Decimal("0.5")), ("btc", Decimal("0.5"))]
            )

    def test_invalid_key_rejected(self, db, recording_invalidator):
        with pytest.raises(InvalidPortfolioKeyError):
            SignalService(recording_invalidator).write_allocation(
                db, "not-a-key", date(2024, 2, 1), [("BTC", Decimal("1"))]
            )


# =============================================================================
# QUERIES
# =============================================================================

class TestLatestSignal:
    """Tests for latest_signal() across legacy tiers."""

    def test_includes_legacy_sources(self, db):
        create_signal(db, tier="T1", published_at=PUBLISHED)
        legacy = create_signal(db, tier="T2", category=None, published_at=PUBLISHED + timedelta(days=1))

        assert latest_signal(db, "t1_none_aggressive").id == legacy.id

    def test_filters_by_risk_profile(self, db):
        create_signal(db, tier="T1", risk_profile=RiskProfile.SEMI, signal="BTC ETH")
        assert latest_signal(db, "t1_none_aggressive") is None

    def test_latest_allocation(self, db, recording_invalidator):
        service = SignalService(recording_invalidator)
        service.publish(db, "T1", None, "AGGRESSIVE", "BTC", PUBLISHED)
        service.publish(db, "T1", None, "AGGRESSIVE", "ETH", PUBLISHED + timedelta(days=2))

        assert latest_allocation(db, "t1_none_aggressive").as_of_date == date(2024, 1, 4)
