# backend/roi_engine/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
The application layer (main.py) maps them to HTTP responses.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   ├── MissingAssetError
    │   ├── InvalidPortfolioKeyError
    │   ├── UnknownSeriesTypeError
    │   └── CsvValidationError
    ├── NotFoundError
    ├── DataGapError
    ├── DataIntegrityError
    │   ├── NonPositivePriceError
    │   └── AllocationWeightError
    ├── PriceProviderError
    │   ├── PriceProviderUnavailableError
    │   ├── PriceProviderRateLimitError
    │   └── UnsupportedSymbolError
    └── AuthorizationError

Input errors are reported to the caller and never partially applied.
Data gaps are only raised in strict mode; otherwise the curve builder records
them and carries NAV flat. Integrity errors always abort the computation.
"""

from datetime import date
from decimal import Decimal
from typing import Any


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class MissingAssetError(ValidationError):
    """
    Raised when a risk profile needs an asset the signal does not name.

    Attributes:
        risk_profile: Profile being derived (SEMI, CONSERVATIVE)
        role: Missing asset role ("primary", "secondary", "tertiary")
    """

    def __init__(self, risk_profile: str, role: str) -> None:
        self.risk_profile = risk_profile
        self.role = role
        super().__init__(
            f"{role.capitalize()} asset is required for {risk_profile.lower()} allocations",
            field=f"{role}_asset",
        )


class InvalidPortfolioKeyError(ValidationError):
    """Raised when a portfolio key cannot be parsed or violates tier rules."""

    def __init__(self, portfolio_key: str, reason: str) -> None:
        self.portfolio_key = portfolio_key
        self.reason = reason
        super().__init__(
            f"Invalid portfolio key '{portfolio_key}': {reason}",
            field="portfolio_key",
        )


class UnknownSeriesTypeError(ValidationError):
    """Raised when a series type is not accepted for the requested operation."""

    def __init__(self, series_type: str, allowed: list[str]) -> None:
        self.series_type = series_type
        self.allowed = allowed
        super().__init__(
            f"Unknown series type: '{series_type}'. Valid options: {', '.join(allowed)}",
            field="series_type",
        )


class CsvValidationError(ValidationError):
    """
    Raised when an imported CSV has row-level problems.

    Attributes:
        errors: Every row error found (the import is all-or-nothing)
    """

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        self.errors = errors
        super().__init__(
            f"CSV validation failed with {len(errors)} error(s)",
            field="csv_text",
        )


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "ChangeLogEvent")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


# =============================================================================
# DATA GAPS
# =============================================================================


class DataGapError(ServiceError):
    """
    Raised in strict mode when a required price or allocation is missing.

    Attributes:
        portfolio_key: Portfolio being computed
        gaps: Gap markers as dicts ({"date", "kind", "symbol"})
    """

    def __init__(self, portfolio_key: str, gaps: list[dict[str, Any]]) -> None:
        self.portfolio_key = portfolio_key
        self.gaps = gaps
        first = gaps[0] if gaps else {}
        super().__init__(
            f"Data gap for {portfolio_key}: {len(gaps)} missing input(s), "
            f"first on {first.get('date')} ({first.get('kind')})"
        )


# =============================================================================
# INTEGRITY ERRORS
# =============================================================================


class DataIntegrityError(ServiceError):
    """Base for upstream data corruption that must be fixed at the source."""
    pass


class NonPositivePriceError(DataIntegrityError):
    """Raised when a close price is zero or negative."""

    def __init__(self, symbol: str, price_date: date, price: Decimal) -> None:
        self.symbol = symbol
        self.price_date = price_date
        self.price = price
        super().__init__(
            f"Non-positive price for {symbol} on {price_date.isoformat()}: {price}"
        )


class AllocationWeightError(DataIntegrityError):
    """Raised when allocation weights do not sum to one or fall outside [0, 1]."""

    def __init__(self, message: str, total: Decimal | None = None) -> None:
        self.total = total
        super().__init__(message)


# =============================================================================
# PRICE PROVIDER ERRORS
# =============================================================================


class PriceProviderError(ServiceError):
    """
    Base exception for price provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class PriceProviderUnavailableError(PriceProviderError):
    """Raised on network errors, timeouts and 5xx answers (retryable)."""
    pass


class PriceProviderRateLimitError(PriceProviderError):
    """Raised when the provider answers 429."""

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        message = f"Rate limit exceeded for {provider}"
        if retry_after:
            message += f". Retry after {retry_after} seconds"
        super().__init__(message, provider=provider)


class UnsupportedSymbolError(PriceProviderError):
    """Raised when the provider has no instrument for a symbol."""

    def __init__(self, symbol: str, provider: str) -> None:
        self.symbol = symbol
        super().__init__(f"Symbol '{symbol}' is not supported by {provider}", provider=provider)


# =============================================================================
# AUTHORIZATION
# =============================================================================


class AuthorizationError(ServiceError):
    """Raised when a cron or admin secret is missing or wrong."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


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
