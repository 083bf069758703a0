from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from market_data.bars import PriceBar
from portfolio_history.prices import PriceSeries
from portfolio_history.transactions import Transaction, TxType, transactions_by_symbol

logger = logging.getLogger(__name__)

RECONCILE_TOLERANCE_SHARES = 0.5
SHARE_EPSILON = 0.001
MIN_CAGR_YEARS = 0.1
DAYS_PER_YEAR = 365.25
PRICE_HISTORY_POINTS = 200
DEFAULT_TRACKING_SYMBOLS = ("SPY", "VOO", "IVV", "SPLG", "SPYM")


@dataclass(frozen=True)
class SymbolLedgerEntry:
    symbol: str
    description: str
    transactions: tuple[Transaction, ...]
    total_bought: float
    total_sold: float
    total_cost_basis: float
    total_sell_proceeds: float

    @property
    def net_shares(self) -> float:
        return self.total_bought - self.total_sold

    @property
    def first_date(self) -> dt.date | None:
        return self.transactions[0].date if self.transactions else None

    @property
    def last_date(self) -> dt.date | None:
        return self.transactions[-1].date if self.transactions else None

    def acquisitions(self) -> list[Transaction]:
        return [t for t in self.transactions if t.tx_type.is_acquisition]

    @classmethod
    def empty(cls, symbol: str) -> "SymbolLedgerEntry":
        return cls(symbol=symbol, description=symbol, transactions=(), total_bought=0.0, total_sold=0.0, total_cost_basis=0.0, total_sell_proceeds=0.0)


def build_ledger(transactions: Iterable[Transaction]) -> dict[str, SymbolLedgerEntry]:
    """
    Per-symbol totals. Transfers in count as purchases and transfers out as sales; the trade value is the
    recorded amount, else quantity x price.
    """
    ledger: dict[str, SymbolLedgerEntry] = {}
    grouped = transactions_by_symbol(t for t in transactions if t.tx_type is not TxType.IGNORE)
    for sym, txs in grouped.items():
        description = sym
        bought = sold = cost = proceeds = 0.0
        for tx in txs:
            if tx.description and len(tx.description) > len(description):
                description = tx.description
            if tx.tx_type.is_acquisition:
                bought += tx.quantity
                cost += tx.dollar_value
            elif tx.tx_type.is_disposal:
                sold += tx.quantity
                proceeds += tx.dollar_value
        ledger[sym] = SymbolLedgerEntry(
            symbol=sym,
            description=description,
            transactions=tuple(txs),
            total_bought=bought,
            total_sold=sold,
            total_cost_basis=cost,
            total_sell_proceeds=proceeds,
        )
    return ledger


@dataclass(frozen=True)
class LedgerTransaction:
    date: dt.date
    type: str  # BUY or SELL
    is_transfer: bool
    quantity: float
    price: float | None
    amount: float | None


@dataclass(frozen=True)
class StockAttribution:
    symbol: str
    description: str
    status: str  # active | exited
    is_benchmark: bool
    first_buy_date: dt.date
    last_trade_date: dt.date
    holding_period_days: int
    total_shares_bought: float
    total_shares_sold: float
    current_shares: float
    avg_cost_basis: float
    current_price: float
    total_invested: float
    total_sell_proceeds: float
    current_value: float
    total_return: float
    cagr: float
    benchmark_return: float
    alpha: float
    max_drawdown: float
    weight: float
    has_estimated_cost: bool
    unrecorded_shares: float
    transactions: tuple[LedgerTransaction, ...] = ()
    price_history: tuple[PriceBar, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class AttributionSummary:
    total_stocks_traded: int
    active_positions: int
    exited_positions: int
    best_performer: tuple[str, float] | None
    worst_performer: tuple[str, float] | None
    avg_return: float
    avg_alpha: float
    win_rate: float


def _display(tx: Transaction) -> LedgerTransaction:
    return LedgerTransaction(
        date=tx.date,
        type="BUY" if tx.tx_type.is_acquisition else "SELL",
        is_transfer=tx.tx_type.is_transfer,
        quantity=tx.quantity,
        price=tx.price,
        amount=tx.amount,
    )


def cagr_pct(total_return_pct: float, holding_period_days: int) -> float:
    years = float(holding_period_days) / DAYS_PER_YEAR
    tr = float(total_return_pct) / 100.0
    if years > MIN_CAGR_YEARS and tr > -1.0:
        return ((1.0 + tr) ** (1.0 / years) - 1.0) * 100.0
    return float(total_return_pct)


def dollar_weighted_benchmark_return(
    buys: Iterable[Transaction],
    benchmark: PriceSeries,
    *,
    start: dt.date,
    end: dt.date,
) -> float:
    """
    Percent return had every purchase's dollars gone into the benchmark on the purchase date, valued at `end`.

    Without a usable purchase it falls back to the plain benchmark price change from `start` to `end`.
    """
    end_px = benchmark.price_on(end)
    if end_px is None or end_px <= 0:
        return 0.0
    buys = list(buys)
    if buys:
        hypothetical = 0.0
        invested = 0.0
        for tx in buys:
            amount = tx.dollar_value
            px = benchmark.price_on(tx.date)
            if px and px > 0 and amount > 0:
                hypothetical += (amount / px) * end_px
                invested += amount
        return (hypothetical - invested) / invested * 100.0 if invested > 0 else 0.0
    start_px = benchmark.price_on(start)
    if start_px is None or start_px <= 0:
        return 0.0
    return (end_px - start_px) / start_px * 100.0


def _portfolio_value(current: Mapping[str, float], prices: Mapping[str, PriceSeries]) -> float:
    total = 0.0
    for sym, qty in current.items():
        s = prices.get(sym)
        if s is not None and s.last is not None:
            total += float(qty) * float(s.last.close)
    return total


def attribute_symbol(
    entry: SymbolLedgerEntry,
    series: PriceSeries,
    benchmark: PriceSeries,
    *,
    current_shares: float,
    as_of: dt.date,
    portfolio_value: float,
    benchmark_symbol: str = "SPY",
    tracking_symbols: Iterable[str] = DEFAULT_TRACKING_SYMBOLS,
    tolerance: float = RECONCILE_TOLERANCE_SHARES,
    epsilon: float = SHARE_EPSILON,
) -> StockAttribution:
    sym = entry.symbol
    is_active = current_shares > epsilon
    shares = float(current_shares) if is_active else 0.0
    first_price = float(series.bars[0].close)
    last_price = float(series.bars[-1].close)
    first_date = entry.first_date or series.bars[0].date
    last_date = entry.last_date or series.bars[-1].date

    hold_end = as_of if is_active else last_date
    holding_days = max(1, (hold_end - first_date).days)

    # Reconcile the ledger against present-day shares.
    has_unrecorded = is_active and (shares - entry.net_shares) > tolerance
    unrecorded = shares - entry.net_shares if has_unrecorded else 0.0
    cost = entry.total_cost_basis
    if unrecorded > 0:
        last_buy = next((t for t in reversed(entry.transactions) if t.tx_type.is_acquisition), None)
        est_price = last_buy.price if last_buy is not None and last_buy.price else first_price
        cost += unrecorded * est_price
    pure_gap = is_active and entry.total_cost_basis == 0 and entry.total_bought == 0
    if pure_gap:
        cost = shares * first_price

    if is_active:
        current_value = shares * last_price
        total_return = (current_value + entry.total_sell_proceeds - cost) / cost * 100.0 if cost > 0 else 0.0
    else:
        current_value = 0.0
        basis = entry.total_cost_basis
        total_return = (entry.total_sell_proceeds - basis) / basis * 100.0 if basis > 0 else 0.0

    basis_shares = entry.total_bought + unrecorded
    if pure_gap and unrecorded == 0:
        basis_shares += shares
    avg_cost = cost / basis_shares if basis_shares > 0 else 0.0

    bench_sym = benchmark_symbol.strip().upper()
    if sym == bench_sym:
        bench_return = total_return
    else:
        bench_return = dollar_weighted_benchmark_return(entry.acquisitions(), benchmark, start=first_date, end=hold_end)

    tracking = {s.strip().upper() for s in tracking_symbols}
    tracking.add(bench_sym)
    return StockAttribution(
        symbol=sym,
        description=entry.description,
        status="active" if is_active else "exited",
        is_benchmark=sym in tracking,
        first_buy_date=first_date,
        last_trade_date=last_date,
        holding_period_days=holding_days,
        total_shares_bought=entry.total_bought,
        total_shares_sold=entry.total_sold,
        current_shares=shares,
        avg_cost_basis=avg_cost,
        current_price=last_price,
        total_invested=cost,
        total_sell_proceeds=entry.total_sell_proceeds,
        current_value=current_value,
        total_return=total_return,
        cagr=cagr_pct(total_return, holding_days),
        benchmark_return=bench_return,
        alpha=total_return - bench_return,
        max_drawdown=series.max_drawdown(),
        weight=(current_value / portfolio_value * 100.0) if (is_active and portfolio_value > 0) else 0.0,
        has_estimated_cost=bool(has_unrecorded or pure_gap),
        unrecorded_shares=unrecorded,
        transactions=tuple(_display(t) for t in entry.transactions),
        price_history=tuple(series.sampled(PRICE_HISTORY_POINTS)),
    )


def attribute_symbols(
    ledger: Mapping[str, SymbolLedgerEntry],
    current: Mapping[str, float],
    prices: Mapping[str, PriceSeries],
    benchmark: PriceSeries,
    *,
    as_of: dt.date | None = None,
    benchmark_symbol: str = "SPY",
    tracking_symbols: Iterable[str] = DEFAULT_TRACKING_SYMBOLS,
    cash_sweep_symbol: str = "SPAXX",
    tolerance: float = RECONCILE_TOLERANCE_SHARES,
    epsilon: float = SHARE_EPSILON,
) -> list[StockAttribution]:
    """
    Attribution for every symbol with ledger history plus every current holding without any.
    Symbols without price data are left out. Sorted by total return, best first.
    """
    as_of = as_of or dt.date.today()
    tracking = tuple(tracking_symbols)
    sweep = cash_sweep_symbol.strip().upper()
    entries = dict(ledger)
    for sym in current:
        if sym not in entries and sym != sweep:
            entries[sym] = SymbolLedgerEntry.empty(sym)

    port_value = _portfolio_value(current, prices)
    out: list[StockAttribution] = []
    for sym, entry in entries.items():
        series = prices.get(sym)
        if series is None or series.empty:
            logger.debug("No price history for %s; left out of attribution", sym)
            continue
        out.append(
            attribute_symbol(
                entry,
                series,
                benchmark,
                current_shares=float(current.get(sym, 0.0)),
                as_of=as_of,
                portfolio_value=port_value,
                benchmark_symbol=benchmark_symbol,
                tracking_symbols=tracking,
                tolerance=tolerance,
                epsilon=epsilon,
            )
        )
    out.sort(key=lambda s: s.total_return, reverse=True)
    return out


def summarize_attribution(stocks: list[StockAttribution]) -> AttributionSummary:
    """Expects `stocks` sorted best-first, as returned by attribute_symbols."""
    n = len(stocks)
    non_bench = [s for s in stocks if not s.is_benchmark]
    winners = [s for s in stocks if s.total_return > 0]
    return AttributionSummary(
        total_stocks_traded=n,
        active_positions=sum(1 for s in stocks if s.is_active),
        exited_positions=sum(1 for s in stocks if not s.is_active),
        best_performer=(stocks[0].symbol, stocks[0].total_return) if stocks else None,
        worst_performer=(stocks[-1].symbol, stocks[-1].total_return) if stocks else None,
        avg_return=sum(s.total_return for s in stocks) / n if n else 0.0,
        avg_alpha=sum(s.alpha for s in non_bench) / len(non_bench) if non_bench else 0.0,
        win_rate=len(winners) / n * 100.0 if n else 0.0,
    )
