from __future__ import annotations

import bisect
import datetime as dt
import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import cached_property
from typing import Callable, Iterable

from market_data.bars import PriceBar
from market_data.cache import BarsFetcher
from portfolio_history.config import FetchConfig

logger = logging.getLogger(__name__)

__all__ = ["PriceBar", "PriceSeries", "PriceSeriesStore", "clean_bars"]


def clean_bars(bars: Iterable[PriceBar], start: dt.date | None = None, end: dt.date | None = None) -> tuple[PriceBar, ...]:
    """Date-sorted bars with one bar per date (last wins) and a positive close."""
    by_date: dict[dt.date, PriceBar] = {}
    for b in bars or []:
        if b is None or b.close is None or not (b.close > 0):
            continue
        if start is not None and b.date < start:
            continue
        if end is not None and b.date > end:
            continue
        by_date[b.date] = b
    return tuple(by_date[d] for d in sorted(by_date))


@dataclass(frozen=True)
class PriceSeries:
    symbol: str
    bars: tuple[PriceBar, ...] = ()

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def empty(self) -> bool:
        return not self.bars

    @cached_property
    def dates(self) -> list[dt.date]:
        return [b.date for b in self.bars]

    @property
    def first(self) -> PriceBar | None:
        return self.bars[0] if self.bars else None

    @property
    def last(self) -> PriceBar | None:
        return self.bars[-1] if self.bars else None

    def closes(self) -> list[float]:
        return [float(b.close) for b in self.bars]

    def between(self, start: dt.date | None = None, end: dt.date | None = None) -> "PriceSeries":
        return PriceSeries(symbol=self.symbol, bars=clean_bars(self.bars, start, end))

    def price_on_or_before(self, d: dt.date) -> float | None:
        idx = bisect.bisect_right(self.dates, d) - 1
        if idx < 0:
            return None
        return float(self.bars[idx].close)

    def price_on(self, d: dt.date) -> float | None:
        """
        Nearest-prior close. Dates before the first bar use the earliest close; None only when there is no data.
        """
        if not self.bars:
            return None
        px = self.price_on_or_before(d)
        if px is None:
            return float(self.bars[0].close)
        return px

    def daily_returns(self) -> list[float]:
        closes = self.closes()
        return [closes[i] / closes[i - 1] - 1.0 for i in range(1, len(closes))]

    def trailing_return(self, lookback_bars: int) -> float | None:
        """Percent change from `lookback_bars` bars before the last bar to the last bar."""
        n = int(lookback_bars)
        if n <= 0 or len(self.bars) <= n:
            return None
        base = float(self.bars[-1 - n].close)
        return (float(self.bars[-1].close) / base - 1.0) * 100.0

    def max_drawdown(self) -> float:
        """Largest peak-to-trough decline of the closes, as a positive percentage."""
        peak = 0.0
        mdd = 0.0
        for px in self.closes():
            if px > peak:
                peak = px
            if peak > 0:
                mdd = max(mdd, (peak - px) / peak)
        return mdd * 100.0

    def sampled(self, max_points: int = 200) -> list[PriceBar]:
        """Evenly thinned bars, at most `max_points`, always keeping the last bar."""
        bars = list(self.bars)
        if len(bars) <= max_points:
            return bars
        step = max(1, math.ceil(len(bars) / max(1, max_points - 1)))
        out = bars[::step]
        if out[-1].date != bars[-1].date:
            out.append(bars[-1])
        return out


class PriceSeriesStore:
    """
    Per-run cache of daily price series keyed by (symbol, start, end).

    Populated entries are never rewritten; `clear()` is the only invalidation.
    """

    def __init__(
        self,
        fetcher: BarsFetcher,
        *,
        batch_size: int = 10,
        batch_pause_seconds: float = 0.25,
        max_workers: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.batch_size = max(1, int(batch_size))
        self.batch_pause_seconds = max(0.0, float(batch_pause_seconds))
        self.max_workers = max(1, int(max_workers))
        self._sleep = sleep
        self._lock = threading.Lock()
        self._series: dict[tuple[str, dt.date, dt.date], PriceSeries] = {}
        self._latest: dict[str, tuple[str, dt.date, dt.date]] = {}

    @classmethod
    def from_config(cls, fetcher: BarsFetcher, cfg: FetchConfig, **kwargs) -> "PriceSeriesStore":
        return cls(
            fetcher,
            batch_size=cfg.batch_size,
            batch_pause_seconds=cfg.batch_pause_seconds,
            max_workers=cfg.max_workers,
            **kwargs,
        )

    def _cached(self, key: tuple[str, dt.date, dt.date]) -> PriceSeries | None:
        with self._lock:
            return self._series.get(key)

    def _put(self, key: tuple[str, dt.date, dt.date], series: PriceSeries) -> PriceSeries:
        with self._lock:
            kept = self._series.setdefault(key, series)
            self._latest[key[0]] = key
            return kept

    def _fetch_one(self, symbol: str, start: dt.date, end: dt.date) -> PriceSeries:
        try:
            bars = clean_bars(self.fetcher.fetch_daily_bars(symbol, start, end), start, end)
        except Exception as e:
            logger.warning("Price fetch failed for %s (%s): %s", symbol, type(e).__name__, e)
            bars = ()
        return PriceSeries(symbol=symbol, bars=bars)

    def fetch(self, symbol: str, start: dt.date, end: dt.date) -> PriceSeries:
        key = (symbol.strip().upper(), start, end)
        hit = self._cached(key)
        if hit is not None:
            return hit
        return self._put(key, self._fetch_one(key[0], start, end))

    def fetch_many(self, symbols: Iterable[str], start: dt.date, end: dt.date) -> dict[str, PriceSeries]:
        """
        Fetch several symbols in bounded concurrent batches. A failed symbol yields an empty series.
        """
        wanted: list[str] = []
        for s in symbols:
            sym = (s or "").strip().upper()
            if sym and sym not in wanted:
                wanted.append(sym)

        out: dict[str, PriceSeries] = {}
        pending: list[str] = []
        for sym in wanted:
            hit = self._cached((sym, start, end))
            if hit is not None:
                out[sym] = hit
            else:
                pending.append(sym)

        for i in range(0, len(pending), self.batch_size):
            batch = pending[i : i + self.batch_size]
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch))) as ex:
                futs = {ex.submit(self._fetch_one, sym, start, end): sym for sym in batch}
                for fut in as_completed(futs):
                    sym = futs[fut]
                    out[sym] = self._put((sym, start, end), fut.result())
            if i + self.batch_size < len(pending) and self.batch_pause_seconds > 0:
                self._sleep(self.batch_pause_seconds)
        logger.debug("Fetched %s of %s price series (%s..%s)", len(pending), len(wanted), start, end)
        return {sym: out[sym] for sym in wanted}

    def series(self, symbol: str) -> PriceSeries | None:
        """The most recently stored series for `symbol`, if any."""
        with self._lock:
            key = self._latest.get(symbol.strip().upper())
            return self._series.get(key) if key is not None else None

    def price_on(self, symbol: str, d: dt.date) -> float | None:
        s = self.series(symbol)
        if s is None:
            return None
        return s.price_on(d)

    def clear(self) -> None:
        with self._lock:
            self._series.clear()
            self._latest.clear()
