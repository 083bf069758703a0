from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from market_data.bars import BAR_COLUMNS, PriceBar, bars_from_frame
from market_data.exceptions import DataNotFoundError, FetchError, MarketDataError
from market_data.symbols import provider_ticker

logger = logging.getLogger(__name__)

_FIELD_NAMES = {"open", "high", "low", "close", "volume", "adj close"}


def _field_name(col: Any) -> str:
    # Newer yfinance releases return ("Close", "AAPL") style MultiIndex columns.
    if isinstance(col, tuple):
        parts = [str(p).strip().replace("*", "") for p in col if p is not None and str(p).strip()]
        picked = next((p for p in parts if p.lower() in _FIELD_NAMES), parts[0] if parts else "")
        return picked.lower()
    return str(col).strip().replace("*", "").lower()


class YahooFinanceProvider:
    name = "yfinance"

    def __init__(self, *, auto_adjust: bool = True, use_download: bool = True):
        self.auto_adjust = bool(auto_adjust)
        # yf.download keeps module-global state; callers fanning out over threads go straight to Ticker.history.
        self.use_download = bool(use_download)

    def _download(self, yf, ticker: str, start_s: str, end_s: str):
        errors: list[Exception] = []
        if self.use_download:
            try:
                df = yf.download(
                    ticker,
                    start=start_s,
                    end=end_s,
                    auto_adjust=self.auto_adjust,
                    actions=False,
                    progress=False,
                    threads=False,
                )
                if df is not None and not df.empty:
                    return df
            except Exception as e:
                errors.append(e)
        # Ticker.history sometimes succeeds where download() comes back empty.
        try:
            df = yf.Ticker(ticker).history(start=start_s, end=end_s, auto_adjust=self.auto_adjust)
            if df is not None and not df.empty:
                return df
        except Exception as e:
            errors.append(e)
        msg = f"No data returned for {ticker}."
        if errors:
            msg = f"{msg} Last error: {type(errors[-1]).__name__}: {errors[-1]}"
        raise DataNotFoundError(msg)

    def _clean_frame(self, pd, df, ticker: str):
        df = df.copy()
        df.columns = [_field_name(c) for c in df.columns]
        if "close" not in df.columns:
            raise DataNotFoundError(f"{ticker}: missing required column close.")
        df = df[[c for c in BAR_COLUMNS if c in df.columns]]

        idx = df.index
        if getattr(idx, "tz", None) is not None:
            idx = idx.tz_localize(None)
        df.index = pd.to_datetime(idx).normalize()
        df.index.name = "date"

        df = df.apply(pd.to_numeric, errors="coerce").astype(float)
        df = df[~df.index.duplicated(keep="last")].sort_index()
        df = df[df["close"] > 0]
        if df.empty:
            raise DataNotFoundError(f"No usable rows after cleaning for {ticker}.")
        return df

    def fetch_prices(self, ticker: str, start: dt.date, end: dt.date):
        """
        Daily OHLCV for [start, end] inclusive, as a DataFrame indexed by 'date' with lower-case columns.
        """
        try:
            import pandas as pd
            import yfinance as yf
        except ImportError as e:  # pragma: no cover
            raise FetchError("pandas and yfinance are required for market data fetching.") from e

        # yfinance treats `end` as exclusive.
        raw = self._download(yf, ticker, start.isoformat(), (end + dt.timedelta(days=1)).isoformat())
        return self._clean_frame(pd, raw, ticker)

    def fetch_daily_bars(self, symbol: str, start: dt.date, end: dt.date) -> list[PriceBar]:
        """
        Batch-safe bar fetch: a bad symbol yields [] rather than an exception.
        """
        if end < start:
            return []
        try:
            df = self.fetch_prices(provider_ticker(symbol), start, end)
        except MarketDataError as e:
            logger.warning("Price fetch failed for %s: %s", symbol, e)
            return []
        except Exception as e:
            logger.warning("Price fetch failed for %s (%s): %s", symbol, type(e).__name__, e)
            return []
        return [b for b in bars_from_frame(df) if start <= b.date <= end]
