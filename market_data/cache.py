from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from market_data.bars import PriceBar, bars_from_frame, bars_to_frame
from market_data.symbols import sanitize_ticker

logger = logging.getLogger(__name__)


def _now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class BarsFetcher(Protocol):
    def fetch_daily_bars(self, symbol: str, start: dt.date, end: dt.date) -> list[PriceBar]:
        raise NotImplementedError


@dataclass(frozen=True)
class CacheMetadata:
    provider: str
    symbol: str
    covered_start: str
    covered_end: str
    fetched_at: str
    rows: int
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": int(self.schema_version),
            "provider": self.provider,
            "symbol": self.symbol,
            "covered_start": self.covered_start,
            "covered_end": self.covered_end,
            "fetched_at": self.fetched_at,
            "rows": int(self.rows),
        }


class PriceCache:
    """
    One CSV per symbol plus a JSON sidecar recording the requested range it covers.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _base_path(self, symbol: str) -> Path:
        return self.cache_dir / sanitize_ticker(symbol)

    def _csv_path(self, symbol: str) -> Path:
        return self._base_path(symbol).with_suffix(".csv")

    def _meta_path(self, symbol: str) -> Path:
        return self._base_path(symbol).with_suffix(".json")

    def get_metadata(self, symbol: str) -> dict[str, Any] | None:
        p = self._meta_path(symbol)
        if not p.exists():
            return None
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except Exception:
            return None

    def save(self, symbol: str, bars: list[PriceBar], metadata: CacheMetadata) -> None:
        df = bars_to_frame(bars)
        try:
            df.to_csv(self._csv_path(symbol), index=True)
        except Exception as e:
            logger.warning("Failed writing bar cache for %s: %s", symbol, e)
            return
        self._meta_path(symbol).write_text(json.dumps(metadata.to_dict(), indent=2, sort_keys=True), encoding="utf-8")

    def load(self, symbol: str) -> list[PriceBar] | None:
        p = self._csv_path(symbol)
        if not p.exists():
            return None
        try:
            import pandas as pd

            df = pd.read_csv(p, parse_dates=["date"], index_col="date")
        except Exception as e:
            logger.warning("Unreadable bar cache for %s: %s", symbol, e)
            return None
        return bars_from_frame(df)

    def invalidate(self, symbol: str) -> None:
        for p in (self._csv_path(symbol), self._meta_path(symbol)):
            if p.exists():
                p.unlink()


def _merge(existing: list[PriceBar] | None, incoming: list[PriceBar]) -> list[PriceBar]:
    by_date = {b.date: b for b in (existing or [])}
    for b in incoming:
        by_date[b.date] = b
    return [by_date[d] for d in sorted(by_date)]


class CachedBarsFetcher:
    """
    Wraps a bars fetcher with an on-disk cache. A cached symbol is served without a network call when its
    recorded range covers the request and it is younger than `max_age_hours`.
    """

    def __init__(
        self,
        fetcher: BarsFetcher,
        *,
        cache_dir: Path,
        max_age_hours: float = 12.0,
        now: Callable[[], dt.datetime] = _now_utc,
    ):
        self.fetcher = fetcher
        self.cache = PriceCache(cache_dir)
        self.max_age = dt.timedelta(hours=float(max_age_hours))
        self._now = now

    def _is_fresh(self, meta: dict[str, Any], start: dt.date, end: dt.date) -> bool:
        try:
            covered_start = dt.date.fromisoformat(str(meta["covered_start"]))
            covered_end = dt.date.fromisoformat(str(meta["covered_end"]))
            fetched_at = dt.datetime.fromisoformat(str(meta["fetched_at"]))
        except (KeyError, ValueError):
            return False
        if covered_start > start or covered_end < end:
            return False
        return (self._now() - fetched_at) <= self.max_age

    def fetch_daily_bars(self, symbol: str, start: dt.date, end: dt.date) -> list[PriceBar]:
        meta = self.cache.get_metadata(symbol)
        cached = self.cache.load(symbol) if meta is not None else None
        if meta is not None and cached is not None and self._is_fresh(meta, start, end):
            logger.debug("Bar cache hit for %s %s..%s", symbol, start, end)
            return [b for b in cached if start <= b.date <= end]

        fetched = self.fetcher.fetch_daily_bars(symbol, start, end)
        if not fetched:
            # Serve whatever is cached rather than nothing.
            return [b for b in (cached or []) if start <= b.date <= end]

        merged = _merge(cached, fetched)
        covered_start, covered_end = start, end
        if meta is not None and cached:
            try:
                old_start = dt.date.fromisoformat(str(meta["covered_start"]))
                old_end = dt.date.fromisoformat(str(meta["covered_end"]))
            except (KeyError, ValueError):
                old_start = old_end = None
            # Coverage only grows across overlapping or adjacent ranges; a gap means the new range stands alone.
            one_day = dt.timedelta(days=1)
            if old_start is not None and start <= old_end + one_day and end >= old_start - one_day:
                covered_start = min(start, old_start)
                covered_end = max(end, old_end)
        self.cache.save(
            symbol,
            merged,
            CacheMetadata(
                provider=str(getattr(self.fetcher, "name", type(self.fetcher).__name__)),
                symbol=symbol,
                covered_start=covered_start.isoformat(),
                covered_end=covered_end.isoformat(),
                fetched_at=self._now().isoformat(),
                rows=len(merged),
            ),
        )
        return [b for b in fetched if start <= b.date <= end]
