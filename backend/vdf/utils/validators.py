"""
VDF Input Validators

Raise ValueError on invalid input so callers can report it cleanly.
"""

from __future__ import annotations

import re

# Standard US ticker symbols: 1-5 uppercase letters, optional .class
_TICKER_RE = re.compile(r"^[A-Z]{1,5}(\.[A-Z]{1,2})?$")


def validate_ticker(raw: str) -> str:
    """Clean and validate a stock ticker symbol.

    Returns the normalized ticker or raises ValueError.

    >>> validate_ticker('aapl')
    'AAPL'
    >>> validate_ticker('BRK.B')
    'BRK.B'
    """
    ticker = raw.strip().upper()
    if not ticker:
        raise ValueError("Ticker cannot be empty")
    if not _TICKER_RE.match(ticker):
        raise ValueError(
            f"Invalid ticker '{ticker}'. Expected 1-5 uppercase letters, "
            f"optionally followed by a class suffix (e.g. BRK.B)"
        )
    return ticker


def validate_tickers(raw: list[str]) -> list[str]:
    """Validate a list of tickers, dropping duplicates but keeping order."""
    seen: set[str] = set()
    tickers = []
    for item in raw:
        ticker = validate_ticker(item)
        if ticker not in seen:
            seen.add(ticker)
            tickers.append(ticker)
    return tickers
