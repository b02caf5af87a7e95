# backend/tests/services/test_portfolio_key.py
"""
Unit tests for portfolio keys, the legacy tier adapter and the ticker table.
"""

import pytest

from roi_engine.models import RiskProfile
from roi_engine.services.exceptions import InvalidPortfolioKeyError
from roi_engine.services.portfolio_key import PortfolioKey, build_portfolio_key, parse_portfolio_key
from roi_engine.services.tickers import canonical_ticker, is_cash, normalize_asset_symbol
from roi_engine.services.tier_mapping import ANY_CATEGORY, canonical_tier, signal_sources_for


# =============================================================================
# PORTFOLIO KEY
# =============================================================================

class TestPortfolioKey:
    """Tests for PortfolioKey rendering and parsing."""

    def test_renders_lowercase_with_none_category(self):
        key = PortfolioKey("T1", None, RiskProfile.AGGRESSIVE)
        assert key.key == "t1_none_aggressive"
        assert str(key) == "t1_none_aggressive"

    def test_renders_category(self):
        assert PortfolioKey("T2", "majors", RiskProfile.CONSERVATIVE).key == "t2_majors_conservative"

    def test_parse_round_trip(self):
        key = parse_portfolio_key("T2_Majors_Semi")
        assert key == PortfolioKey("T2", "majors", RiskProfile.SEMI)

    def test_parse_none_category(self):
        assert parse_portfolio_key("t1_none_semi").category is None

    @pytest.mark.parametrize("value", ["", "  ", "t1_semi", "t1_none_semi_extra"])
    def test_parse_malformed(self, value):
        with pytest.raises(InvalidPortfolioKeyError):
            parse_portfolio_key(value)

    def test_unknown_tier(self):
        with pytest.raises(InvalidPortfolioKeyError) as exc_info:
            parse_portfolio_key("t9_none_semi")
        assert "unknown tier" in exc_info.value.reason

    def test_unknown_risk_profile(self):
        with pytest.raises(InvalidPortfolioKeyError):
            parse_portfolio_key("t1_none_reckless")

    def test_t2_requires_category(self):
        with pytest.raises(InvalidPortfolioKeyError):
            PortfolioKey("T2", None, RiskProfile.SEMI)

    def test_t1_rejects_category(self):
        with pytest.raises(InvalidPortfolioKeyError):
            parse_portfolio_key("t1_majors_semi")

    def test_invalid_category_characters(self):
        with pytest.raises(InvalidPortfolioKeyError):
            PortfolioKey("T2", "maj ors", RiskProfile.SEMI)


class TestBuildPortfolioKey:
    """Tests for build_portfolio_key() with legacy tiers."""

    def test_t1(self):
        assert build_portfolio_key("T1", None, "AGGRESSIVE").key == "t1_none_aggressive"

    def test_t1_drops_category(self):
        assert build_portfolio_key("t1", "majors", RiskProfile.SEMI).key == "t1_none_semi"

    def test_t2_without_category_is_t1(self):
        assert build_portfolio_key("T2", None, "SEMI").key == "t1_none_semi"

    def test_t3_maps_to_t2_majors(self):
        assert build_portfolio_key("T3", None, "CONSERVATIVE").key == "t2_majors_conservative"

    def test_t3_keeps_category(self):
        assert build_portfolio_key("T3", "DeFi", "SEMI").key == "t2_defi_semi"

    def test_named_tiers(self):
        assert build_portfolio_key("growth", None, "SEMI").key == "t1_none_semi"
        assert build_portfolio_key("Elite", "majors", "SEMI").key == "t2_majors_semi"

    def test_unknown_tier_rejected(self):
        with pytest.raises(InvalidPortfolioKeyError):
            build_portfolio_key("T7", None, "SEMI")


# =============================================================================
# TIER MAPPING
# =============================================================================

class TestTierMapping:
    """Tests for canonical_tier() and signal_sources_for()."""

    def test_canonical_tier_unknown_uppercased(self):
        assert canonical_tier(" t9 ", "X") == ("T9", "x")

    def test_t1_sources_include_legacy_names(self):
        sources = signal_sources_for("T1", None)
        assert ("T1", ANY_CATEGORY) in sources
        assert ("GROWTH", ANY_CATEGORY) in sources
        assert ("T2", None) in sources

    def test_t2_majors_sources_include_uncategorized_t3(self):
        sources = signal_sources_for("T2", "majors")
        assert ("T2", "majors") in sources
        assert ("T3", "majors") in sources
        assert ("T3", None) in sources
        assert ("ELITE", None) in sources

    def test_t2_other_category_excludes_uncategorized(self):
        sources = signal_sources_for("T2", "defi")
        assert ("T3", None) not in sources

    def test_every_source_maps_back_to_the_same_tier(self):
        for tier, category in signal_sources_for("T2", "majors"):
            assert canonical_tier(tier, category) == ("T2", "majors")


# =============================================================================
# TICKERS
# =============================================================================

class TestTickers:
    """Tests for the canonical ticker table."""

    @pytest.mark.parametrize(
        "symbol,expected",
        [
            ("HYPEH", "HYPE"),
            ("wbtc", "BTC"),
            ("cbBTC", "BTC"),
            ("stETH", "ETH"),
            ("XAUT", "XAUTUSD"),
            ("USDC", "CASH"),
            ("USDT", "CASH"),
            ("SOL-USD", "SOL"),
            ("ETH/USD", "ETH"),
            ("BTCUSDT", "BTC"),
            ("SOL", "SOL"),
        ],
    )
    def test_canonical_ticker(self, symbol, expected):
        assert canonical_ticker(symbol) == expected

    def test_canonical_ticker_empty(self):
        with pytest.raises(ValueError):
            canonical_ticker("  ")

    def test_normalize_empty(self):
        assert normalize_asset_symbol(None) is None
        assert normalize_asset_symbol("") is None

    def test_is_cash(self):
        assert is_cash("cash")
        assert is_cash("USD")
        assert not is_cash("BTC")
