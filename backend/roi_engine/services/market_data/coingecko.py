# backend/roi_engine/services/market_data/coingecko.py
"""
CoinGecko implementation of PriceProvider.

Uses the public market_chart/range endpoint:

    GET /coins/{id}/market_chart/range?vs_currency=usd&from=<unix>&to=<unix>

which returns [[timestamp_ms, price], ...]. The last price seen for each UTC
day is that day's close. CASH is never requested; it is priced at a constant
1 by the caller.

Usage:
    provider = CoinGeckoProvider()
    result = provider.get_daily_closes("BTC", date(2024, 1, 1), date(2024, 1, 31))
"""

import logging
from datetime import date, datetime, timezone

import httpx

from roi_engine.config import settings
from roi_engine.services import numeric
from roi_engine.services.exceptions import (
    PriceProviderError,
    PriceProviderRateLimitError,
    PriceProviderUnavailableError,
    UnsupportedSymbolError,
)
from roi_engine.services.market_data.base import DailyClose, DailyClosesResult, PriceProvider
from roi_engine.utils.date_utils import date_range, day_end_timestamp, day_start_timestamp

logger = logging.getLogger(__name__)

# Canonical ticker -> CoinGecko coin id
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "SUI": "sui",
    "BNB": "binancecoin",
    "TRX": "tron",
    "LINK": "chainlink",
    "XAUTUSD": "tether-gold",
    "HYPE": "hyperliquid",
}

API_KEY_HEADER = "x-cg-demo-api-key"


class CoinGeckoProvider(PriceProvider):
    """
    Daily closes from CoinGecko over httpx.

    A client can be injected (tests pass one built on httpx.MockTransport);
    otherwise one is created from settings and owned by the provider.
    """

    def __init__(
            self,
            client: httpx.Client | None = None,
            base_url: str | None = None,
            api_key: str | None = None,
            timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.coingecko_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.coingecko_api_key
        self._timeout = timeout or settings.coingecko_timeout_seconds
        self._client = client or httpx.Client(timeout=self._timeout)

    @property
    def name(self) -> str:
        return "coingecko"

    def supports(self, symbol: str) -> bool:
        return symbol.upper() in COINGECKO_IDS

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self._api_key:
            headers[API_KEY_HEADER] = self._api_key
        return headers

    def _fetch_range(self, coin_id: str, start_date: date, end_date: date) -> dict:
        """Single request; raises retryable errors for 429 / 5xx / transport failures."""
        url = f"{self._base_url}/coins/{coin_id}/market_chart/range"
        params = {
            "vs_currency": "usd",
            "from": day_start_timestamp(start_date),
            "to": day_end_timestamp(end_date),
        }

        try:
            response = self._client.get(url, params=params, headers=self._headers())
        except httpx.RequestError as e:
            raise PriceProviderUnavailableError(
                f"Network error fetching {coin_id}: {e}", provider=self.name
            ) from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise PriceProviderRateLimitError(
                self.name,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 500:
            raise PriceProviderUnavailableError(
                f"{self.name} returned {response.status_code} for {coin_id}", provider=self.name
            )
        if response.status_code == 404:
            raise UnsupportedSymbolError(coin_id, self.name)
        if response.status_code != 200:
            raise PriceProviderError(
                f"{self.name} returned {response.status_code} for {coin_id}: {response.text[:200]}",
                provider=self.name,
            )

        try:
            return response.json()
        except ValueError as e:
            raise PriceProviderError(f"Invalid JSON from {self.name} for {coin_id}", provider=self.name) from e

    def get_daily_closes(
            self,
            symbol: str,
            start_date: date,
            end_date: date,
    ) -> DailyClosesResult:
        ticker = symbol.upper()
        coin_id = COINGECKO_IDS.get(ticker)
        if coin_id is None:
            raise UnsupportedSymbolError(ticker, self.name)

        result = DailyClosesResult(symbol=ticker, source=self.name)
        if start_date > end_date:
            return result

        payload = self._execute_with_retry(self._fetch_range, coin_id, start_date, end_date)
        raw_prices = payload.get("prices") if isinstance(payload, dict) else None

        closes: dict[date, DailyClose] = {}
        for entry in raw_prices or []:
            try:
                timestamp_ms, price = entry[0], entry[1]
                day = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()
                close = numeric.dec(price)
            except (TypeError, ValueError, IndexError, OverflowError):
                logger.warning(f"Skipping malformed {self.name} price entry for {ticker}: {entry!r}")
                continue
            if day < start_date or day > end_date or close <= 0:
                continue
            # Entries are chronological; the last one of a day is its close
            closes[day] = DailyClose(date=day, close=close)

        result.closes = [closes[day] for day in sorted(closes)]
        result.missing_dates = [day for day in date_range(start_date, end_date) if day not in closes]

        if result.missing_dates:
            logger.warning(
                f"Missing {len(result.missing_dates)} daily close(s) for {ticker} "
                f"from {self.name}, first: {result.missing_dates[:5]}"
            )
        logger.info(f"Fetched {result.days_fetched} daily closes for {ticker} ({start_date}..{end_date})")
        return result
