from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from market_data.cache import BarsFetcher, CachedBarsFetcher
from market_data.provider import YahooFinanceProvider
from market_data.symbols import is_equity_ticker
from portfolio_history.attribution import attribute_symbols, build_ledger, summarize_attribution
from portfolio_history.config import AnalysisConfig
from portfolio_history.holdings import Holding, holdings_from_records, share_map
from portfolio_history.prices import PriceSeries, PriceSeriesStore
from portfolio_history.reconstruct import reconstruct_holdings
from portfolio_history.returns import compute_risk_metrics
from portfolio_history.schemas import (
    BenchmarkMetrics,
    HistorySummary,
    HoldingPerformance,
    InsufficientData,
    PeriodReturnsOut,
    PortfolioAnalysis,
    PortfolioMetrics,
    Sparkline,
    StockHistoryReport,
    StockHistoryRow,
)
from portfolio_history.transactions import Transaction, normalize_transactions
from portfolio_history.util import round_or_none
from portfolio_history.valuation import align_tail, benchmark_daily_returns, portfolio_daily_returns, value_portfolio

logger = logging.getLogger(__name__)

PERIODS = ("3m", "6m", "ytd", "1y", "2y", "all")
PERIOD_DAYS = {"3m": 70, "6m": 135, "1y": 260, "2y": 510, "all": 1300}
DEFAULT_LOOKBACK_DAYS = 260
NO_HISTORY_LOOKBACK_DAYS = 365


def lookback_days(period: str | None, today: dt.date | None = None) -> int:
    """Calendar days of price history needed for a reporting period. Unknown periods use one year."""
    p = (period or "").strip().lower()
    if p == "ytd":
        today = today or dt.date.today()
        return (today - dt.date(today.year, 1, 1)).days + 10
    return PERIOD_DAYS.get(p, DEFAULT_LOOKBACK_DAYS)


def sparkline_step(num_days: int) -> int:
    if num_days <= 70:
        return 1
    if num_days <= 260:
        return max(1, num_days // 65)
    return max(1, num_days // 100)


def build_sparkline(dates: Sequence[dt.date], cum_portfolio: Sequence[float], cum_benchmark: Sequence[float]) -> Sparkline:
    """
    Down-sample cumulative growth series to percent returns for charting. The final point is always kept.
    """
    n = min(len(dates), len(cum_portfolio), len(cum_benchmark))
    if n == 0:
        return Sparkline()
    step = sparkline_step(n - 1)
    idx = list(range(0, n, step))
    if idx[-1] != n - 1:
        idx.append(n - 1)
    return Sparkline(
        dates=[dates[i].isoformat() for i in idx],
        portfolio=[round((cum_portfolio[i] - 1.0) * 100.0, 4) for i in idx],
        benchmark=[round((cum_benchmark[i] - 1.0) * 100.0, 4) for i in idx],
    )


def holding_heatmap(current: Mapping[str, float], prices: Mapping[str, PriceSeries], *, as_of: dt.date) -> list[HoldingPerformance]:
    """Trailing price returns and portfolio weight for each current holding with at least two bars."""
    total = 0.0
    for sym, qty in current.items():
        s = prices.get(sym)
        if s is not None and s.last is not None:
            total += float(qty) * float(s.last.close)
    total = total or 1.0
    days_since_jan1 = (as_of - dt.date(as_of.year, 1, 1)).days

    out: list[HoldingPerformance] = []
    for sym, qty in current.items():
        s = prices.get(sym)
        if s is None or len(s) < 2:
            continue
        last_px = float(s.last.close)
        ytd_days = min(len(s) - 1, days_since_jan1)
        out.append(
            HoldingPerformance(
                symbol=sym,
                weight=round(float(qty) * last_px / total * 100.0, 2),
                ret_1d=round_or_none(s.trailing_return(1)),
                ret_1w=round_or_none(s.trailing_return(5)),
                ret_1m=round_or_none(s.trailing_return(21)),
                ret_3m=round_or_none(s.trailing_return(62)),
                ret_ytd=round_or_none(s.trailing_return(ytd_days)) if ytd_days > 0 else None,
                price=last_px,
            )
        )
    return out


def build_fetcher(cfg: AnalysisConfig) -> BarsFetcher:
    # The price store fetches from a thread pool.
    provider = YahooFinanceProvider(use_download=False)
    if not cfg.cache.enabled:
        return provider
    return CachedBarsFetcher(provider, cache_dir=Path(cfg.cache.path), max_age_hours=cfg.cache.max_age_hours)


def _current_shares(current_holdings: Iterable[Holding | Mapping[str, Any]], cfg: AnalysisConfig) -> dict[str, float]:
    holdings = holdings_from_records(current_holdings)
    if not holdings:
        raise ValueError("current holdings required")
    return share_map(holdings, skip_symbols=[cfg.cash_sweep_symbol])


def _attribution_rows(
    current: Mapping[str, float],
    txs: list[Transaction],
    store: PriceSeriesStore,
    cfg: AnalysisConfig,
    today: dt.date,
) -> tuple[list[StockHistoryRow], HistorySummary, list[str]]:
    warnings: list[str] = []
    bench = cfg.benchmark_symbol.strip().upper()
    ledger = build_ledger(txs)
    no_history_start = today - dt.timedelta(days=NO_HISTORY_LOOKBACK_DAYS)
    start = txs[0].date if txs else no_history_start
    start = min(start, no_history_start)

    symbols = set(ledger)
    symbols.update(s for s in current if is_equity_ticker(s, cash_sweep_symbol=cfg.cash_sweep_symbol))
    fetched = store.fetch_many(sorted(symbols | {bench}), start, today)

    # Each symbol's history starts at its first trade (or a year back when it has none).
    prices: dict[str, PriceSeries] = {}
    for sym in symbols:
        s = fetched.get(sym)
        if s is None:
            continue
        entry = ledger.get(sym)
        first = entry.first_date if entry is not None and entry.first_date is not None else no_history_start
        prices[sym] = s.between(first, today)
    benchmark_series = fetched.get(bench) or PriceSeries(symbol=bench)

    no_data = sorted(sym for sym in symbols if prices.get(sym) is None or prices[sym].empty)
    if no_data:
        warnings.append(f"No price history for: {', '.join(no_data)}")

    stocks = attribute_symbols(
        ledger,
        current,
        prices,
        benchmark_series,
        as_of=today,
        benchmark_symbol=bench,
        tracking_symbols=cfg.tracking_symbols(),
        cash_sweep_symbol=cfg.cash_sweep_symbol,
        tolerance=cfg.reconcile_tolerance_shares,
        epsilon=cfg.share_epsilon,
    )
    summary = HistorySummary.from_summary(summarize_attribution(stocks))
    return [StockHistoryRow.from_attribution(a) for a in stocks], summary, warnings


def stock_history(
    current_holdings: Iterable[Holding | Mapping[str, Any]],
    activity_sources: Iterable[Iterable[str] | None],
    fetcher: BarsFetcher | None = None,
    *,
    config: AnalysisConfig | None = None,
    as_of: dt.date | None = None,
    store: PriceSeriesStore | None = None,
) -> StockHistoryReport:
    """
    Per-symbol attribution for every symbol ever traded plus current holdings without ledger history.
    """
    cfg = config or AnalysisConfig()
    today = as_of or dt.date.today()
    current = _current_shares(current_holdings, cfg)
    txs = normalize_transactions(activity_sources, cash_sweep_symbol=cfg.cash_sweep_symbol)
    store = store or PriceSeriesStore.from_config(fetcher or build_fetcher(cfg), cfg.fetch)

    rows, summary, warnings = _attribution_rows(current, txs, store, cfg, today)
    return StockHistoryReport(
        as_of=today.isoformat(),
        benchmark_symbol=cfg.benchmark_symbol,
        stocks=rows,
        summary=summary,
        warnings=warnings,
    )


def analyze_portfolio(
    current_holdings: Iterable[Holding | Mapping[str, Any]],
    activity_sources: Iterable[Iterable[str] | None],
    fetcher: BarsFetcher | None = None,
    *,
    period: str = "1y",
    config: AnalysisConfig | None = None,
    as_of: dt.date | None = None,
    store: PriceSeriesStore | None = None,
) -> PortfolioAnalysis | InsufficientData:
    """
    Reconstruct past holdings, value them on every benchmark trading day in the period, and report risk
    metrics, a sparkline, the holdings heatmap and per-symbol attribution.

    Returns InsufficientData (not an exception) when the benchmark has too few bars.
    """
    cfg = config or AnalysisConfig()
    today = as_of or dt.date.today()
    bench = cfg.benchmark_symbol.strip().upper()
    current = _current_shares(current_holdings, cfg)
    txs = normalize_transactions(activity_sources, cash_sweep_symbol=cfg.cash_sweep_symbol)
    timeline = reconstruct_holdings(current, txs, as_of=today, epsilon=cfg.share_epsilon)
    store = store or PriceSeriesStore.from_config(fetcher or build_fetcher(cfg), cfg.fetch)
    warnings: list[str] = []

    days = lookback_days(period, today)
    start = today - dt.timedelta(days=days)
    held = timeline.symbols_since(start) | set(current)
    symbols = sorted(s for s in held if is_equity_ticker(s, cash_sweep_symbol=cfg.cash_sweep_symbol))
    prices = store.fetch_many(symbols + ([bench] if bench not in symbols else []), start, today)

    benchmark_series = prices.get(bench) or PriceSeries(symbol=bench)
    if len(benchmark_series) < cfg.min_trading_days:
        logger.warning("Only %s %s bars between %s and %s", len(benchmark_series), bench, start, today)
        return InsufficientData(
            benchmark_symbol=bench,
            benchmark_bars=len(benchmark_series),
            min_required=cfg.min_trading_days,
            warnings=warnings,
        )

    valuation = value_portfolio(timeline, prices, benchmark_series, start=start, end=today)
    if valuation.missing_symbols:
        warnings.append(f"No prices for held symbols: {', '.join(valuation.missing_symbols)}")
    port_r, bench_r = align_tail(
        portfolio_daily_returns(valuation.portfolio_values, min_value=cfg.min_portfolio_value),
        benchmark_daily_returns(valuation.benchmark_closes),
    )
    metrics = compute_risk_metrics(
        port_r,
        bench_r,
        as_of=today,
        risk_free_rate=cfg.risk_free_rate,
        periods_per_year=cfg.trading_days_per_year,
    )
    dates = valuation.dates[-(metrics.num_days + 1) :]

    rows, summary, attr_warnings = _attribution_rows(current, txs, store, cfg, today)
    warnings.extend(attr_warnings)

    return PortfolioAnalysis(
        as_of=today.isoformat(),
        period=period,
        lookback_days=days,
        portfolio=PortfolioMetrics.from_metrics(metrics, effective_positions=len(current)),
        benchmark=BenchmarkMetrics(symbol=bench, **PeriodReturnsOut.from_periods(metrics.benchmark).model_dump()),
        sparkline=build_sparkline(dates, metrics.cum_portfolio, metrics.cum_benchmark),
        stock_performance=holding_heatmap(current, prices, as_of=today),
        stocks=rows,
        summary=summary,
        data_points=metrics.num_days,
        unique_symbols=len(symbols),
        snapshot_count=len(timeline),
        warnings=warnings,
    )
