# backend/roi_engine/services/__init__.py
"""
Service layer for the ROI engine.

This package contains the service layer which encapsulates business logic
separate from the API (router) layer. Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions
- Receive database sessions as parameters (not via Depends)
- Are easily testable via dependency injection

Architecture:
    services/
    ├── __init__.py              # This file - exception exports
    ├── exceptions.py            # Domain exceptions
    ├── constants.py             # Business constants and limits
    ├── numeric.py               # Decimal arithmetic layer
    ├── tickers.py               # Canonical ticker table
    ├── tier_mapping.py          # Legacy tier vocabulary adapter
    ├── portfolio_key.py         # Portfolio key value type
    ├── allocation.py            # Allocation derivation, signal parsing
    ├── series_store.py          # Series/price upserts and reads
    ├── resolver.py              # Per-day allocation and price lookup
    ├── equity_curve.py          # NAV compounding
    ├── snapshot_service.py      # Snapshot cache, invalidation, job runner
    ├── signals.py               # Signal publication, allocation writes
    ├── diagnostics.py           # Read-only portfolio diagnostics
    ├── analytics/               # Metrics engine (ROI, drawdown, volatility)
    ├── dashboard/               # GLOBAL payload, validation, simulator, reads
    ├── market_data/             # Price provider + ingestion
    └── series_import/           # CSV reference series import

Submodules are imported directly (e.g. `from roi_engine.services.signals
import SignalService`); only exceptions are re-exported here so importing
one service never drags in the rest.
"""

from roi_engine.services.exceptions import (
    AllocationWeightError,
    AuthorizationError,
    CsvValidationError,
    DataGapError,
    DataIntegrityError,
    InvalidPortfolioKeyError,
    MissingAssetError,
    NonPositivePriceError,
    NotFoundError,
    PriceProviderError,
    PriceProviderRateLimitError,
    PriceProviderUnavailableError,
    ServiceError,
    UnknownSeriesTypeError,
    UnsupportedSymbolError,
    ValidationError,
)

__all__ = [
    "ServiceError",
    "ValidationError",
    "MissingAssetError",
    "InvalidPortfolioKeyError",
    "UnknownSeriesTypeError",
    "CsvValidationError",
    "NotFoundError",
    "DataGapError",
    "DataIntegrityError",
    "NonPositivePriceError",
    "AllocationWeightError",
    "PriceProviderError",
    "PriceProviderUnavailableError",
    "PriceProviderRateLimitError",
    "UnsupportedSymbolError",
    "AuthorizationError",
]
