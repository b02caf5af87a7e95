# backend/roi_engine/services/constants.py
"""
Centralized constants for the ROI engine services.

Single source of truth for business constants shared by the allocation,
curve, metrics and snapshot modules.

Usage:
    from roi_engine.services.constants import (
        NAV_BASE_VALUE,
        GLOBAL_PORTFOLIO_KEY,
        RATE_LIMIT_DEFAULT,
    )
"""

from decimal import Decimal


# =============================================================================
# NUMERIC BASICS
# =============================================================================

ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")
HUNDRED: Decimal = Decimal("100")

# Stored precision of NAV points (matches Numeric(28, 12))
NAV_QUANTUM: Decimal = Decimal("0.000000000001")

# Stored precision of daily closes (same column type as NAV)
PRICE_QUANTUM: Decimal = NAV_QUANTUM

# KPI precision written to snapshot columns (matches Numeric(20, 8))
KPI_QUANTUM: Decimal = Decimal("0.00000001")


# =============================================================================
# CALENDAR
# =============================================================================

# Crypto trades every day; annualization uses calendar days
CALENDAR_DAYS_PER_YEAR: int = 365

ROI_LOOKBACK_DAYS: int = 30

# Dashboard validation: latest MODEL point older than this is a warning
SERIES_STALE_DAYS: int = 7

# Prices are fetched from this many days before the curve start so the first
# day has a previous close to compare against
PRICE_FETCH_PADDING_DAYS: int = 2


# =============================================================================
# EQUITY CURVE
# =============================================================================

# NAV of a portfolio on the day before its first computed date
NAV_BASE_VALUE: Decimal = Decimal("100")


# =============================================================================
# ALLOCATION POLICY
# =============================================================================

SEMI_WEIGHTS: tuple[Decimal, Decimal] = (Decimal("0.8"), Decimal("0.2"))
CONSERVATIVE_WEIGHTS: tuple[Decimal, Decimal, Decimal] = (
    Decimal("0.6"),
    Decimal("0.3"),
    Decimal("0.1"),
)

# Exact decimals sum exactly; tolerance covers externally written snapshots
WEIGHT_SUM_TOLERANCE: Decimal = Decimal("0.000001")

# Looser tolerance used by the dashboard validation summary
VALIDATION_WEIGHT_TOLERANCE: Decimal = Decimal("0.005")


# =============================================================================
# KEYS
# =============================================================================

# portfolio_key used for global reference series and the GLOBAL snapshot
GLOBAL_PORTFOLIO_KEY: str = "dashboard"

CASH_SYMBOL: str = "CASH"
CASH_PRICE: Decimal = ONE


# =============================================================================
# READ API
# =============================================================================

RANGE_DAYS: dict[str, int | None] = {
    "1m": 30,
    "3m": 90,
    "6m": 180,
    "1y": 365,
    "all": None,
}
DEFAULT_RANGE: str = "1y"


# =============================================================================
# PRICE PROVIDER RETRY
# =============================================================================

PROVIDER_MAX_RETRY_ATTEMPTS: int = 3
PROVIDER_RETRY_MULTIPLIER: int = 1
PROVIDER_RETRY_MIN_WAIT: int = 1
PROVIDER_RETRY_MAX_WAIT: int = 10


# =============================================================================
# RATE LIMITING
# =============================================================================
# Format: "X/period" where period is second, minute, hour, or day

RATE_LIMIT_DEFAULT: str = "100/minute"
RATE_LIMIT_READ: str = "60/minute"
RATE_LIMIT_ADMIN: str = "30/minute"
RATE_LIMIT_JOB: str = "10/minute"
RATE_LIMIT_IMPORT: str = "10/hour"
RATE_LIMIT_HEALTH: str = "1000/minute"
