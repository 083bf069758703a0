from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Sequence

TRADING_DAYS_PER_YEAR = 252
RISK_FREE_RATE = 0.05
SORTINO_DOWNSIDE_FLOOR = 1e-4

# Trailing windows in trading days.
DAYS_1M = 22
DAYS_3M = 63
DAYS_6M = 126

_VAR_EPS = 1e-18


@dataclass(frozen=True)
class PeriodReturns:
    return_1m: float | None
    return_3m: float | None
    return_6m: float | None
    return_ytd: float | None
    return_1y: float | None


@dataclass(frozen=True)
class RiskMetrics:
    """
    Portfolio risk/return statistics against a benchmark. Percent-valued fields: annualized_vol, alpha,
    max_drawdown and all period returns. Beta, Sharpe and Sortino are plain ratios.
    """

    num_days: int
    annualized_vol: float
    beta: float
    alpha: float
    sharpe: float
    sortino: float
    max_drawdown: float
    portfolio: PeriodReturns
    benchmark: PeriodReturns
    cum_portfolio: tuple[float, ...]
    cum_benchmark: tuple[float, ...]


def _mean(xs: Sequence[float]) -> float:
    if not xs:
        return 0.0
    return sum(xs) / float(len(xs))


def _pop_var(xs: Sequence[float]) -> float:
    if not xs:
        return 0.0
    m = _mean(xs)
    return sum((x - m) ** 2 for x in xs) / float(len(xs))


def cumulative_series(returns: Sequence[float]) -> list[float]:
    """Growth of 1.0: `[1, (1+r0), (1+r0)(1+r1), ...]`, one point longer than `returns`."""
    out = [1.0]
    for r in returns:
        out.append(out[-1] * (1.0 + float(r or 0.0)))
    return out


def max_drawdown_pct(cum: Sequence[float]) -> float:
    """Largest peak-to-trough decline of a cumulative series, as a positive percentage."""
    if not cum:
        return 0.0
    peak = float(cum[0])
    mdd = 0.0
    for v in cum[1:]:
        # A wipe-out is a 100% drawdown; losses past zero do not count further.
        v = max(0.0, float(v))
        if v > peak:
            peak = v
        if peak > 0:
            mdd = max(mdd, (peak - v) / peak)
    return mdd * 100.0


def period_return(cum: Sequence[float], days: int) -> float | None:
    """Percent return over the last `days` points of a cumulative series; None if the series is too short."""
    if days < 0 or len(cum) < days + 1:
        return None
    base = float(cum[-1 - days])
    if base == 0:
        return None
    return (float(cum[-1]) / base - 1.0) * 100.0


def ytd_day_count(as_of: dt.date, num_days: int) -> int:
    # Calendar days since Jan 1 stand in for trading days, capped at the window length.
    return max(0, min(int(num_days), (as_of - dt.date(as_of.year, 1, 1)).days))


def period_returns(cum: Sequence[float], *, ytd_days: int) -> PeriodReturns:
    num_days = max(0, len(cum) - 1)
    return PeriodReturns(
        return_1m=period_return(cum, DAYS_1M),
        return_3m=period_return(cum, DAYS_3M),
        return_6m=period_return(cum, DAYS_6M),
        return_ytd=period_return(cum, ytd_days),
        return_1y=period_return(cum, num_days),
    )


def annualized_return(cum_last: float, num_days: int, periods_per_year: float = TRADING_DAYS_PER_YEAR) -> float:
    if num_days <= 0:
        return 0.0
    if cum_last <= 0:
        return -1.0
    return float(cum_last) ** (float(periods_per_year) / float(num_days)) - 1.0


def compute_risk_metrics(
    portfolio_returns: Sequence[float],
    benchmark_returns: Sequence[float],
    *,
    as_of: dt.date | None = None,
    risk_free_rate: float = RISK_FREE_RATE,
    periods_per_year: int = TRADING_DAYS_PER_YEAR,
) -> RiskMetrics:
    """
    Risk metrics from two aligned daily-return series (population statistics).

    Series of different length are trimmed to their most recent common tail. Degenerate inputs resolve to
    sentinels: beta 1.0 for a flat benchmark, Sharpe and Sortino 0 for a constant portfolio series.
    """
    n = min(len(portfolio_returns), len(benchmark_returns))
    port = [float(r) for r in portfolio_returns[len(portfolio_returns) - n :]] if n else []
    bench = [float(r) for r in benchmark_returns[len(benchmark_returns) - n :]] if n else []
    as_of = as_of or dt.date.today()
    ann = math.sqrt(float(periods_per_year))

    cum_port = cumulative_series(port)
    cum_bench = cumulative_series(bench)

    vol = math.sqrt(_pop_var(port)) * ann * 100.0

    beta = 1.0
    if n:
        mp = _mean(port)
        mb = _mean(bench)
        var_b = sum((b - mb) ** 2 for b in bench) / float(n)
        if var_b > _VAR_EPS:
            cov = sum((p - mp) * (b - mb) for p, b in zip(port, bench)) / float(n)
            beta = cov / var_b

    rf_daily = float(risk_free_rate) / float(periods_per_year)
    excess = [r - rf_daily for r in port]
    avg_excess = _mean(excess)
    excess_std = math.sqrt(_pop_var(excess))
    sharpe = 0.0
    sortino = 0.0
    if excess_std > math.sqrt(_VAR_EPS):
        sharpe = (avg_excess / excess_std) * ann
        downside = [e for e in excess if e < 0]
        downside_dev = math.sqrt(sum(e * e for e in downside) / float(len(downside))) if downside else SORTINO_DOWNSIDE_FLOOR
        sortino = (avg_excess / downside_dev) * ann

    ann_port = annualized_return(cum_port[-1], n, periods_per_year)
    ann_bench = annualized_return(cum_bench[-1], n, periods_per_year)
    alpha = ((ann_port - risk_free_rate) - beta * (ann_bench - risk_free_rate)) * 100.0 if n else 0.0

    ytd_days = ytd_day_count(as_of, n)
    return RiskMetrics(
        num_days=n,
        annualized_vol=vol,
        beta=beta,
        alpha=alpha,
        sharpe=sharpe,
        sortino=sortino,
        max_drawdown=max_drawdown_pct(cum_port),
        portfolio=period_returns(cum_port, ytd_days=ytd_days),
        benchmark=period_returns(cum_bench, ytd_days=ytd_days),
        cum_portfolio=tuple(cum_port),
        cum_benchmark=tuple(cum_bench),
    )
