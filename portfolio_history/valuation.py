from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from portfolio_history.prices import PriceSeries
from portfolio_history.reconstruct import HoldingsTimeline

logger = logging.getLogger(__name__)

MIN_PORTFOLIO_VALUE = 100.0


@dataclass(frozen=True)
class DailyValue:
    date: dt.date
    value: float
    benchmark_close: float


@dataclass(frozen=True)
class ValuationResult:
    values: tuple[DailyValue, ...]
    missing_symbols: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.values)

    @property
    def dates(self) -> list[dt.date]:
        return [v.date for v in self.values]

    @property
    def portfolio_values(self) -> list[float]:
        return [v.value for v in self.values]

    @property
    def benchmark_closes(self) -> list[float]:
        return [v.benchmark_close for v in self.values]


def value_portfolio(
    timeline: HoldingsTimeline,
    prices: Mapping[str, PriceSeries],
    benchmark: PriceSeries,
    *,
    start: dt.date | None = None,
    end: dt.date | None = None,
) -> ValuationResult:
    """
    Value the reconstructed holdings on every benchmark trading day in [start, end].

    Each day uses the latest snapshot on or before it; a symbol with no price data contributes nothing.
    """
    missing: set[str] = set()
    out: list[DailyValue] = []
    for bar in benchmark.bars:
        if start is not None and bar.date < start:
            continue
        if end is not None and bar.date > end:
            continue
        holdings = timeline.holdings_on(bar.date)
        total = 0.0
        for sym, shares in holdings.items():
            series = prices.get(sym)
            px = series.price_on(bar.date) if series is not None else None
            if px is None:
                missing.add(sym)
                continue
            total += float(shares) * px
        out.append(DailyValue(date=bar.date, value=total, benchmark_close=float(bar.close)))
    if missing:
        logger.warning("No prices for %s held symbol(s): %s", len(missing), ", ".join(sorted(missing)))
    return ValuationResult(values=tuple(out), missing_symbols=tuple(sorted(missing)))


def portfolio_daily_returns(values: Sequence[float], *, min_value: float = MIN_PORTFOLIO_VALUE) -> list[float]:
    """
    Simple day-over-day returns. A day following a near-empty portfolio (value at or below `min_value`)
    gets a return of 0.
    """
    out: list[float] = []
    for i in range(1, len(values)):
        prev = float(values[i - 1])
        if prev > min_value:
            out.append((float(values[i]) - prev) / prev)
        else:
            out.append(0.0)
    return out


def benchmark_daily_returns(closes: Sequence[float]) -> list[float]:
    out: list[float] = []
    for i in range(1, len(closes)):
        prev = float(closes[i - 1])
        out.append((float(closes[i]) - prev) / prev if prev > 0 else 0.0)
    return out


def align_tail(a: Sequence[float], b: Sequence[float]) -> tuple[list[float], list[float]]:
    """Trim both series to their common length, keeping the most recent values."""
    n = min(len(a), len(b))
    if n == 0:
        return [], []
    return list(a[-n:]), list(b[-n:])
