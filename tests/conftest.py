from __future__ import annotations

import datetime as dt
import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from market_data.bars import PriceBar


def _business_days(start: dt.date, end: dt.date) -> list[dt.date]:
    out = []
    d = start
    while d <= end:
        if d.weekday() < 5:
            out.append(d)
        d += dt.timedelta(days=1)
    return out


class FakeBarsFetcher:
    """In-memory stand-in for the market-data client: symbol -> {date: close}."""

    name = "fake"

    def __init__(self, closes: dict[str, dict[dt.date, float]] | None = None, *, fail: tuple[str, ...] = ()):
        self.closes = closes or {}
        self.fail = set(fail)
        self.calls: list[tuple[str, dt.date, dt.date]] = []
        self._lock = threading.Lock()

    def fetch_daily_bars(self, symbol: str, start: dt.date, end: dt.date) -> list[PriceBar]:
        with self._lock:
            self.calls.append((symbol, start, end))
        if symbol in self.fail:
            raise RuntimeError(f"upstream down for {symbol}")
        data = self.closes.get(symbol, {})
        return [PriceBar(date=d, close=c) for d, c in sorted(data.items()) if start <= d <= end]


@pytest.fixture()
def business_days():
    return _business_days


@pytest.fixture()
def fetcher_factory():
    return FakeBarsFetcher
