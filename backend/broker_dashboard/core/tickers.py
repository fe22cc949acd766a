"""Supported ticker set shared by the store, the price engine and the live channel"""

from typing import Tuple

SUPPORTED_TICKERS: Tuple[str, ...] = ("AAPL", "GOOG", "TSLA", "AMZN", "META", "NVDA", "MSFT")


def normalize_ticker(raw) -> str:
    """Trim and uppercase a client-supplied ticker; None becomes an empty string."""
    return str(raw or "").strip().upper()


def is_supported(ticker: str) -> bool:
    return ticker in SUPPORTED_TICKERS
