# backend/tests/services/test_diagnostics.py
"""
Tests for per-portfolio diagnostics.
"""

from datetime import date, datetime, timezone

import pytest

from roi_engine.models import RiskProfile
from roi_engine.services.diagnostics import diagnose_portfolio, latest_price_dates
from roi_engine.services.exceptions import InvalidPortfolioKeyError
from roi_engine.services.snapshot_service import SnapshotService
from tests.conftest import create_allocation, create_prices, create_signal

KEY = "t1_none_semi"


class TestLatestPriceDates:
    """Tests for latest_price_dates()."""

    def test_latest_per_ticker(self, db):
        create_prices(db, "BTC", date(2024, 1, 1), [1, 2, 3])
        create_prices(db, "ETH", date(2024, 1, 1), [1])

        assert latest_price_dates(db, ["BTC", "ETH", "SOL"]) == {
            "BTC": date(2024, 1, 3),
            "ETH": date(2024, 1, 1),
            "SOL": None,
        }

    def test_no_tickers(self, db):
        assert latest_price_dates(db, []) == {}


class TestDiagnosePortfolio:
    """Tests for diagnose_portfolio()."""

    def test_empty_portfolio(self, db):
        data = diagnose_portfolio(db, KEY).to_dict()

        assert data["portfolio_key"] == KEY
        assert data["latest_signal"] is None
        assert data["latest_allocation"] is None
        assert data["latest_nav"] is None
        assert data["latest_price_dates"] == []
        assert data["snapshot"] is None
        assert "coingecko_api_key_present" in data["provider_config"]

    def test_full_report(self, db):
        create_signal(db, tier="T1", risk_profile=RiskProfile.SEMI, signal="BTC then ETH",
                      published_at=datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc))
        create_allocation(db, KEY, date(2024, 1, 2), [("BTC", "0.8"), ("ETH", "0.2")])
        create_prices(db, "BTC", date(2024, 1, 1), [100, 110, 99])
        create_prices(db, "ETH", date(2024, 1, 1), [50, 50])
        SnapshotService(db).recompute_portfolio(KEY, force_end_date=date(2024, 1, 2))

        data = diagnose_portfolio(db, "T1_NONE_SEMI").to_dict()

        assert data["latest_signal"]["date"] == "2024-01-02"
        assert data["latest_signal"]["risk_profile"] == "SEMI"
        assert data["latest_allocation"] == {
            "as_of_date": "2024-01-02",
            "allocations": [{"asset": "BTC", "weight": 0.8}, {"asset": "ETH", "weight": 0.2}],
        }
        assert data["latest_nav"] == {"date": "2024-01-02", "nav": 108.0}
        assert data["latest_price_dates"] == [
            {"symbol": "BTC", "date": "2024-01-03"},
            {"symbol": "ETH", "date": "2024-01-02"},
        ]
        # Stopped before today, so still pending
        assert data["snapshot"]["needs_recompute"] is True
        assert data["snapshot"]["as_of_date"] == "2024-01-02"

    def test_invalid_key(self, db):
        with pytest.raises(InvalidPortfolioKeyError):
            diagnose_portfolio(db, "t1")
