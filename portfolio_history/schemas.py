from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from portfolio_history.attribution import AttributionSummary, StockAttribution
from portfolio_history.returns import PeriodReturns, RiskMetrics
from portfolio_history.util import round_or_none


class PeriodReturnsOut(BaseModel):
    return_1m: Optional[float] = None
    return_3m: Optional[float] = None
    return_6m: Optional[float] = None
    return_ytd: Optional[float] = None
    return_1y: Optional[float] = None

    @classmethod
    def from_periods(cls, p: PeriodReturns) -> "PeriodReturnsOut":
        return cls(
            return_1m=round_or_none(p.return_1m),
            return_3m=round_or_none(p.return_3m),
            return_6m=round_or_none(p.return_6m),
            return_ytd=round_or_none(p.return_ytd),
            return_1y=round_or_none(p.return_1y),
        )


class PortfolioMetrics(PeriodReturnsOut):
    annualized_vol: float
    beta: float
    sharpe: float
    sortino: float
    max_drawdown: float
    alpha: float
    effective_positions: int

    @classmethod
    def from_metrics(cls, m: RiskMetrics, *, effective_positions: int) -> "PortfolioMetrics":
        periods = PeriodReturnsOut.from_periods(m.portfolio).model_dump()
        return cls(
            **periods,
            annualized_vol=round(m.annualized_vol, 2),
            beta=round(m.beta, 3),
            sharpe=round(m.sharpe, 3),
            sortino=round(m.sortino, 3),
            max_drawdown=round(m.max_drawdown, 2),
            alpha=round(m.alpha, 2),
            effective_positions=int(effective_positions),
        )


class BenchmarkMetrics(PeriodReturnsOut):
    symbol: str


class Sparkline(BaseModel):
    dates: list[str] = Field(default_factory=list)
    portfolio: list[float] = Field(default_factory=list)
    benchmark: list[float] = Field(default_factory=list)


class HoldingPerformance(BaseModel):
    symbol: str
    weight: float
    ret_1d: Optional[float] = None
    ret_1w: Optional[float] = None
    ret_1m: Optional[float] = None
    ret_3m: Optional[float] = None
    ret_ytd: Optional[float] = None
    price: float


class TransactionRow(BaseModel):
    date: str
    type: Literal["BUY", "SELL"]
    is_transfer: bool = False
    quantity: float
    price: Optional[float] = None
    amount: Optional[float] = None


class PricePoint(BaseModel):
    date: str
    close: float


class StockHistoryRow(BaseModel):
    symbol: str
    description: str
    status: Literal["active", "exited"]
    is_benchmark: bool
    first_buy_date: str
    last_trade_date: str
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
    transactions: list[TransactionRow] = Field(default_factory=list)
    price_history: list[PricePoint] = Field(default_factory=list)

    @classmethod
    def from_attribution(cls, a: StockAttribution) -> "StockHistoryRow":
        return cls(
            symbol=a.symbol,
            description=a.description,
            status=a.status,
            is_benchmark=a.is_benchmark,
            first_buy_date=a.first_buy_date.isoformat(),
            last_trade_date=a.last_trade_date.isoformat(),
            holding_period_days=a.holding_period_days,
            total_shares_bought=round(a.total_shares_bought, 3),
            total_shares_sold=round(a.total_shares_sold, 3),
            current_shares=round(a.current_shares, 3),
            avg_cost_basis=round(a.avg_cost_basis, 2),
            current_price=a.current_price,
            total_invested=round(a.total_invested, 2),
            total_sell_proceeds=round(a.total_sell_proceeds, 2),
            current_value=round(a.current_value, 2),
            total_return=round(a.total_return, 2),
            cagr=round(a.cagr, 2),
            benchmark_return=round(a.benchmark_return, 2),
            alpha=round(a.alpha, 2),
            max_drawdown=round(a.max_drawdown, 2),
            weight=round(a.weight, 2),
            has_estimated_cost=a.has_estimated_cost,
            unrecorded_shares=round(a.unrecorded_shares, 3),
            transactions=[
                TransactionRow(
                    date=t.date.isoformat(),
                    type=t.type,
                    is_transfer=t.is_transfer,
                    quantity=t.quantity,
                    price=t.price,
                    amount=t.amount,
                )
                for t in a.transactions
            ],
            price_history=[PricePoint(date=b.date.isoformat(), close=b.close) for b in a.price_history],
        )


class Performer(BaseModel):
    symbol: str
    total_return: float


class HistorySummary(BaseModel):
    total_stocks_traded: int = 0
    active_positions: int = 0
    exited_positions: int = 0
    best_performer: Optional[Performer] = None
    worst_performer: Optional[Performer] = None
    avg_return: float = 0.0
    avg_alpha: float = 0.0
    win_rate: float = 0.0

    @classmethod
    def from_summary(cls, s: AttributionSummary) -> "HistorySummary":
        def _perf(p: tuple[str, float] | None) -> Performer | None:
            if p is None:
                return None
            return Performer(symbol=p[0], total_return=round(p[1], 2))

        return cls(
            total_stocks_traded=s.total_stocks_traded,
            active_positions=s.active_positions,
            exited_positions=s.exited_positions,
            best_performer=_perf(s.best_performer),
            worst_performer=_perf(s.worst_performer),
            avg_return=round(s.avg_return, 2),
            avg_alpha=round(s.avg_alpha, 2),
            win_rate=round(s.win_rate, 2),
        )


class StockHistoryReport(BaseModel):
    as_of: str
    benchmark_symbol: str
    stocks: list[StockHistoryRow] = Field(default_factory=list)
    summary: HistorySummary = Field(default_factory=HistorySummary)
    warnings: list[str] = Field(default_factory=list)


class PortfolioAnalysis(BaseModel):
    mode: Literal["historical"] = "historical"
    as_of: str
    period: str
    lookback_days: int
    portfolio: PortfolioMetrics
    benchmark: BenchmarkMetrics
    sparkline: Sparkline
    stock_performance: list[HoldingPerformance] = Field(default_factory=list)
    stocks: list[StockHistoryRow] = Field(default_factory=list)
    summary: HistorySummary = Field(default_factory=HistorySummary)
    data_points: int
    unique_symbols: int
    snapshot_count: int
    warnings: list[str] = Field(default_factory=list)


class InsufficientData(BaseModel):
    error: str = "Insufficient benchmark data"
    partial: bool = True
    benchmark_symbol: str
    benchmark_bars: int = 0
    min_required: int = 20
    warnings: list[str] = Field(default_factory=list)
