from __future__ import annotations

import datetime as dt

import pytest

pd = pytest.importorskip("pandas")

from market_data.bars import PriceBar, bars_from_frame, bars_to_frame
from market_data.cache import CachedBarsFetcher, CacheMetadata, PriceCache
from market_data.exceptions import DataNotFoundError
from market_data.provider import YahooFinanceProvider
from market_data.symbols import is_equity_ticker, provider_ticker, sanitize_ticker

D = [dt.date(2025, 1, d) for d in (2, 3, 6, 7, 8)]


def test_sanitize_ticker():
    assert sanitize_ticker("BRK-B") == "BRK_B"
    assert sanitize_ticker("BRK.B") == "BRK_B"
    assert sanitize_ticker(" spy ") == "SPY"
    assert sanitize_ticker("") == "UNKNOWN"


def test_provider_ticker():
    assert provider_ticker("BRK.B") == "BRK-B"
    assert provider_ticker("BRKB") == "BRK-B"
    assert provider_ticker("BRKA") == "BRK-A"
    assert provider_ticker("aapl") == "AAPL"


def test_is_equity_ticker():
    assert is_equity_ticker("AAPL")
    assert is_equity_ticker("F")
    assert not is_equity_ticker("GOOGLE")
    assert not is_equity_ticker("BRK.B")
    assert not is_equity_ticker("912828YK0")
    assert not is_equity_ticker("aapl")
    assert not is_equity_ticker("TOTAL")
    assert not is_equity_ticker(None)
    assert not is_equity_ticker("SPAXX", cash_sweep_symbol="SPAXX")
    assert is_equity_ticker("SPAXX")


def test_frame_round_trip_drops_bad_rows():
    df = bars_to_frame([PriceBar(date=D[1], close=11.0, volume=5.0), PriceBar(date=D[0], close=10.0)])
    assert list(df.index.date) == [D[0], D[1]]
    df.loc[pd.Timestamp(D[2])] = [None, None, None, float("nan"), None]
    bars = bars_from_frame(df)
    assert [(b.date, b.close) for b in bars] == [(D[0], 10.0), (D[1], 11.0)]
    assert bars[1].volume == 5.0
    assert bars_from_frame(bars_to_frame([])) == []


def test_price_cache_save_load(tmp_path):
    cache = PriceCache(tmp_path)
    bars = [PriceBar(date=d, close=100.0 + i) for i, d in enumerate(D)]
    meta = CacheMetadata(
        provider="fake",
        symbol="BRK.B",
        covered_start=D[0].isoformat(),
        covered_end=D[-1].isoformat(),
        fetched_at="2025-01-08T12:00:00+00:00",
        rows=len(bars),
    )
    cache.save("BRK.B", bars, meta)
    assert (tmp_path / "BRK_B.csv").exists()
    assert cache.get_metadata("BRK.B")["rows"] == 5
    loaded = cache.load("BRK.B")
    assert [(b.date, b.close) for b in loaded] == [(b.date, b.close) for b in bars]

    cache.invalidate("BRK.B")
    assert cache.load("BRK.B") is None
    assert cache.get_metadata("BRK.B") is None


class _Clock:
    def __init__(self, t: dt.datetime):
        self.t = t

    def __call__(self) -> dt.datetime:
        return self.t


def test_cached_fetcher_serves_fresh_covered_ranges(tmp_path, fetcher_factory):
    inner = fetcher_factory({"AAA": {d: 10.0 + i for i, d in enumerate(D)}})
    clock = _Clock(dt.datetime(2025, 1, 8, 18, 0, tzinfo=dt.timezone.utc))
    cached = CachedBarsFetcher(inner, cache_dir=tmp_path, max_age_hours=12, now=clock)

    first = cached.fetch_daily_bars("AAA", D[0], D[-1])
    assert len(first) == 5
    assert len(inner.calls) == 1

    # Sub-range of a fresh entry: no network.
    sub = cached.fetch_daily_bars("AAA", D[1], D[3])
    assert [b.date for b in sub] == D[1:4]
    assert len(inner.calls) == 1

    # Wider than what is covered: refetch.
    cached.fetch_daily_bars("AAA", dt.date(2024, 12, 30), D[-1])
    assert len(inner.calls) == 2

    # Stale entry: refetch.
    clock.t = clock.t + dt.timedelta(hours=13)
    cached.fetch_daily_bars("AAA", D[0], D[-1])
    assert len(inner.calls) == 3


def test_cached_fetcher_falls_back_to_cache_when_upstream_empty(tmp_path, fetcher_factory):
    inner = fetcher_factory({"AAA": {d: 10.0 for d in D}})
    clock = _Clock(dt.datetime(2025, 1, 8, 18, 0, tzinfo=dt.timezone.utc))
    cached = CachedBarsFetcher(inner, cache_dir=tmp_path, max_age_hours=1, now=clock)
    cached.fetch_daily_bars("AAA", D[0], D[-1])

    inner.closes = {}
    clock.t = clock.t + dt.timedelta(hours=2)
    bars = cached.fetch_daily_bars("AAA", D[0], D[-1])
    assert len(bars) == 5


def test_provider_returns_empty_list_on_failure(monkeypatch: pytest.MonkeyPatch):
    provider = YahooFinanceProvider()

    def boom(ticker, start, end):
        raise DataNotFoundError(f"No data returned for {ticker}.")

    monkeypatch.setattr(provider, "fetch_prices", boom)
    assert provider.fetch_daily_bars("ZZZZ", D[0], D[-1]) == []
    assert provider.fetch_daily_bars("AAA", D[-1], D[0]) == []


def test_provider_converts_frame_to_bars(monkeypatch: pytest.MonkeyPatch):
    provider = YahooFinanceProvider()
    seen = {}

    def fake(ticker, start, end):
        seen["ticker"] = ticker
        return bars_to_frame([PriceBar(date=d, close=50.0) for d in D])

    monkeypatch.setattr(provider, "fetch_prices", fake)
    bars = provider.fetch_daily_bars("BRKB", D[1], D[3])
    assert seen["ticker"] == "BRK-B"
    assert [b.date for b in bars] == D[1:4]


def test_cached_fetcher_does_not_bridge_disjoint_ranges(tmp_path, fetcher_factory, business_days):
    days = business_days(dt.date(2024, 1, 1), dt.date(2024, 6, 30))
    inner = fetcher_factory({"AAA": {d: 10.0 for d in days + [dt.date(2024, 7, 1)]}})
    clock = _Clock(dt.datetime(2024, 7, 1, 18, 0, tzinfo=dt.timezone.utc))
    cached = CachedBarsFetcher(inner, cache_dir=tmp_path, max_age_hours=12, now=clock)

    cached.fetch_daily_bars("AAA", dt.date(2024, 1, 1), dt.date(2024, 1, 31))
    cached.fetch_daily_bars("AAA", dt.date(2024, 6, 1), dt.date(2024, 6, 30))
    assert len(inner.calls) == 2

    # The months in between were never fetched, so the full span goes upstream.
    bars = cached.fetch_daily_bars("AAA", dt.date(2024, 1, 1), dt.date(2024, 6, 30))
    assert len(inner.calls) == 3
    assert len(bars) == len(days)

    # Adjacent ranges extend the covered span.
    cached.fetch_daily_bars("AAA", dt.date(2024, 7, 1), dt.date(2024, 7, 1))
    cached.fetch_daily_bars("AAA", dt.date(2024, 2, 1), dt.date(2024, 7, 1))
    assert len(inner.calls) == 4


class _FakeYF:
    def __init__(self, frame):
        self.frame = frame
        self.calls: list[str] = []

    def download(self, ticker, **kwargs):
        self.calls.append("download")
        return self.frame

    def Ticker(self, ticker):
        yf = self

        class _T:
            def history(self, **kwargs):
                yf.calls.append("history")
                return yf.frame

        return _T()


def test_provider_skips_download_when_fanned_out():
    frame = bars_to_frame([PriceBar(date=d, close=50.0) for d in D])

    fake = _FakeYF(frame)
    YahooFinanceProvider()._download(fake, "AAA", "2025-01-02", "2025-01-09")
    assert fake.calls == ["download"]

    fake = _FakeYF(frame)
    YahooFinanceProvider(use_download=False)._download(fake, "AAA", "2025-01-02", "2025-01-09")
    assert fake.calls == ["history"]

    fake = _FakeYF(bars_to_frame([]))
    with pytest.raises(DataNotFoundError):
        YahooFinanceProvider()._download(fake, "AAA", "2025-01-02", "2025-01-09")
    assert fake.calls == ["download", "history"]
