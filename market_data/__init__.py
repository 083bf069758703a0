from __future__ import annotations

__all__ = [
    "YahooFinanceProvider",
    "PriceBar",
    "PriceCache",
    "CachedBarsFetcher",
    "BarsFetcher",
    "MarketDataError",
    "DataNotFoundError",
    "FetchError",
    "is_equity_ticker",
    "provider_ticker",
    "sanitize_ticker",
]

from market_data.bars import PriceBar
from market_data.cache import BarsFetcher, CachedBarsFetcher, PriceCache
from market_data.exceptions import DataNotFoundError, FetchError, MarketDataError
from market_data.provider import YahooFinanceProvider
from market_data.symbols import is_equity_ticker, provider_ticker, sanitize_ticker
