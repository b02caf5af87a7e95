# backend/roi_engine/services/tickers.py
"""
Canonical ticker table.

Signals name assets the way traders write them (chain-specific or wrapped
symbols, quote suffixes). Prices are stored under one market ticker per
asset, so every lookup goes through `canonical_ticker`.
"""

from roi_engine.services.constants import CASH_SYMBOL

# Assets that may appear in published signals, in display order
PORTFOLIO_ASSETS: tuple[str, ...] = (
    "BTC",
    "ETH",
    "SOL",
    "XRP",
    "DOGE",
    "SUI",
    "BNB",
    "TRX",
    "HYPEH",
    "LINK",
    "XAUTUSD",
    CASH_SYMBOL,
)

# Chain-specific / wrapped symbol -> primary market ticker
CANONICAL_TICKERS: dict[str, str] = {
    "HYPEH": "HYPE",
    "WBTC": "BTC",
    "CBBTC": "BTC",
    "WETH": "ETH",
    "STETH": "ETH",
    "XAUT": "XAUTUSD",
    "USD": CASH_SYMBOL,
    "USDC": CASH_SYMBOL,
    "USDT": CASH_SYMBOL,
}

_QUOTE_SUFFIXES = ("-USD", "/USD", "USDT")


def normalize_asset_symbol(symbol: str | None) -> str | None:
    """
    Trim, uppercase and drop a trailing quote currency ("SOL-USD" -> "SOL").

    Returns None for empty input.
    """
    if symbol is None:
        return None
    cleaned = symbol.strip().upper()
    if not cleaned:
        return None
    for suffix in _QUOTE_SUFFIXES:
        if cleaned.endswith(suffix) and len(cleaned) > len(suffix):
            cleaned = cleaned[: -len(suffix)]
            break
    return cleaned


def canonical_ticker(symbol: str) -> str:
    """Ticker under which prices for `symbol` are stored."""
    normalized = normalize_asset_symbol(symbol)
    if normalized is None:
        raise ValueError("Empty asset symbol")
    return CANONICAL_TICKERS.get(normalized, normalized)


def is_cash(symbol: str) -> bool:
    return canonical_ticker(symbol) == CASH_SYMBOL
