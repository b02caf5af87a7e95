# backend/roi_engine/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for daily price providers (base.py)
- CoinGecko implementation (coingecko.py)
- Price ingestion and portfolio invalidation (ingest_service.py)

Architecture:
    PriceProvider (ABC)
    └── CoinGeckoProvider (concrete)

    PriceIngestService
    └── Upserts asset_prices_daily
    └── Dirties portfolios holding symbols whose closes changed
"""

from roi_engine.services.market_data.base import (
    DailyClose,
    DailyClosesResult,
    PriceProvider,
)
from roi_engine.services.market_data.coingecko import COINGECKO_IDS, CoinGeckoProvider
from roi_engine.services.market_data.ingest_service import IngestResult, PriceIngestService

__all__ = [
    # Abstract interface
    "PriceProvider",
    "DailyClose",
    "DailyClosesResult",
    # Concrete implementations
    "CoinGeckoProvider",
    "COINGECKO_IDS",
    # Ingestion
    "PriceIngestService",
    "IngestResult",
]
