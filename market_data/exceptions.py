from __future__ import annotations


class MarketDataError(Exception):
    pass


class DataNotFoundError(MarketDataError):
    """Raised when the provider returns no usable bars for a ticker/range."""


class FetchError(MarketDataError):
    """Raised when the provider call itself fails (network, import, parsing)."""
