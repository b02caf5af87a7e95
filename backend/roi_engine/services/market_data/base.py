# backend/roi_engine/services/market_data/base.py
"""
Abstract interface for daily price providers.

This module defines the contract every price provider follows, so the
ingest service can be driven by CoinGecko in production and by an in-memory
fake in tests.

Design Principles:
- Interface Segregation: one method, daily closes for one symbol
- Dependency Inversion: services depend on PriceProvider, not CoinGecko
- DRY: retry with exponential backoff implemented once in the base class
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from roi_engine.services.constants import (
    PROVIDER_MAX_RETRY_ATTEMPTS,
    PROVIDER_RETRY_MAX_WAIT,
    PROVIDER_RETRY_MIN_WAIT,
    PROVIDER_RETRY_MULTIPLIER,
)
from roi_engine.services.exceptions import (
    PriceProviderRateLimitError,
    PriceProviderUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class DailyClose:
    """
    One UTC day's closing price.

    Attributes:
        date: Calendar day (UTC)
        close: Last price of the day in the settlement currency
    """

    date: date
    close: Decimal

    def __post_init__(self) -> None:
        if self.close <= 0:
            raise ValueError(f"close price must be positive, got {self.close}")


@dataclass
class DailyClosesResult:
    """
    Closes fetched for one symbol.

    Attributes:
        symbol: Canonical ticker requested
        closes: Ascending daily closes (empty when the provider had none)
        source: Provider name stored with each row
        missing_dates: Requested days without a close
    """

    symbol: str
    closes: list[DailyClose] = field(default_factory=list)
    source: str = ""
    missing_dates: list[date] = field(default_factory=list)

    @property
    def days_fetched(self) -> int:
        return len(self.closes)


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class PriceProvider(ABC):
    """
    Abstract base class for daily price providers.

    Retry Behavior:
        `_execute_with_retry` retries PriceProviderUnavailableError and
        PriceProviderRateLimitError with exponential backoff. Subclasses
        can tune MAX_RETRY_ATTEMPTS, RETRY_MIN_WAIT, RETRY_MAX_WAIT and
        RETRY_MULTIPLIER.

    Non-Retryable:
        UnsupportedSymbolError and any other exception.
    """

    MAX_RETRY_ATTEMPTS: int = PROVIDER_MAX_RETRY_ATTEMPTS
    RETRY_MIN_WAIT: int = PROVIDER_RETRY_MIN_WAIT
    RETRY_MAX_WAIT: int = PROVIDER_RETRY_MAX_WAIT
    RETRY_MULTIPLIER: int = PROVIDER_RETRY_MULTIPLIER

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name, stored as the price row source (e.g. "coingecko")."""
        pass

    @abstractmethod
    def supports(self, symbol: str) -> bool:
        """Whether the provider can price this canonical ticker."""
        pass

    @abstractmethod
    def get_daily_closes(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> DailyClosesResult:
        """
        Fetch one close per UTC day for [start_date, end_date].

        Args:
            symbol: Canonical ticker (e.g. "BTC", "HYPE")
            start_date: First day (inclusive)
            end_date: Last day (inclusive)

        Raises:
            UnsupportedSymbolError: No instrument for the symbol
            PriceProviderUnavailableError: Network or server error (after retries)
            PriceProviderRateLimitError: Rate limited (after retries)
        """
        pass

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function, retrying transient provider failures.

        Raises:
            The last exception if all attempts fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((PriceProviderUnavailableError, PriceProviderRateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
