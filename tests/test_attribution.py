from __future__ import annotations

import datetime as dt

from market_data.bars import PriceBar
from portfolio_history.attribution import (
    attribute_symbols,
    build_ledger,
    cagr_pct,
    dollar_weighted_benchmark_return,
    summarize_attribution,
)
from portfolio_history.prices import PriceSeries, clean_bars
from portfolio_history.transactions import Transaction, TxType

AS_OF = dt.date(2024, 6, 28)


def _series(symbol: str, points: dict[dt.date, float]) -> PriceSeries:
    return PriceSeries(symbol=symbol, bars=clean_bars(PriceBar(date=d, close=c) for d, c in points.items()))


def _monthly(symbol: str, start: dt.date, end: dt.date, px: float, last_px: float | None = None) -> PriceSeries:
    pts: dict[dt.date, float] = {}
    d = start
    while d < end:
        pts[d] = px
        d += dt.timedelta(days=30)
    pts[end] = px if last_px is None else last_px
    return _series(symbol, pts)


def _tx(d: dt.date, sym: str, tx_type: TxType, qty: float, price: float | None = None, amount: float | None = None) -> Transaction:
    return Transaction(date=d, symbol=sym, tx_type=tx_type, quantity=qty, price=price, amount=amount)


def _by_symbol(rows):
    return {r.symbol: r for r in rows}


def test_single_buy_scenario_total_return_and_alpha():
    start = dt.date(2023, 1, 1)
    txs = [_tx(start, "AAA", TxType.BUY, 10, 50.0, 500.0)]
    prices = {"AAA": _monthly("AAA", start, AS_OF, 50.0, last_px=80.0)}
    spy = _monthly("SPY", start, AS_OF, 100.0)

    rows = attribute_symbols(build_ledger(txs), {"AAA": 10.0}, prices, spy, as_of=AS_OF)
    assert len(rows) == 1
    aaa = rows[0]
    assert aaa.status == "active"
    assert abs(aaa.total_return - 60.0) < 1e-9
    assert abs(aaa.benchmark_return - 0.0) < 1e-9
    assert abs(aaa.alpha - 60.0) < 1e-9
    assert aaa.total_invested == 500.0
    assert aaa.avg_cost_basis == 50.0
    assert aaa.current_value == 800.0
    assert abs(aaa.weight - 100.0) < 1e-9
    assert aaa.has_estimated_cost is False
    assert aaa.holding_period_days == (AS_OF - start).days
    assert aaa.transactions[0].type == "BUY"
    assert aaa.price_history[-1].date == AS_OF


def test_pure_gap_position_is_flagged_with_estimated_cost():
    first = dt.date(2023, 7, 1)
    prices = {"X": _monthly("X", first, AS_OF, 20.0, last_px=30.0)}
    spy = _monthly("SPY", first, AS_OF, 100.0)

    rows = attribute_symbols({}, {"X": 5.0}, prices, spy, as_of=AS_OF)
    x = rows[0]
    assert x.has_estimated_cost is True
    assert x.unrecorded_shares == 5.0
    assert x.total_invested == 5.0 * 20.0
    assert x.avg_cost_basis == 20.0
    assert abs(x.total_return - 50.0) < 1e-9
    assert x.first_buy_date == first


def test_unrecorded_shares_use_latest_buy_price():
    d0, d1 = dt.date(2023, 2, 1), dt.date(2023, 8, 1)
    txs = [_tx(d0, "BBB", TxType.BUY, 2, 10.0, 20.0), _tx(d1, "BBB", TxType.BUY, 1, 12.0, 12.0)]
    prices = {"BBB": _monthly("BBB", d0, AS_OF, 11.0)}
    spy = _monthly("SPY", d0, AS_OF, 100.0)

    rows = attribute_symbols(build_ledger(txs), {"BBB": 5.0}, prices, spy, as_of=AS_OF)
    b = rows[0]
    assert b.has_estimated_cost is True
    assert b.unrecorded_shares == 2.0
    assert b.total_invested == 20.0 + 12.0 + 2 * 12.0
    assert abs(b.avg_cost_basis - 56.0 / 5.0) < 1e-9


def test_small_gap_within_tolerance_is_not_estimated():
    d0 = dt.date(2023, 2, 1)
    txs = [_tx(d0, "CCC", TxType.BUY, 10, 10.0, 100.0)]
    prices = {"CCC": _monthly("CCC", d0, AS_OF, 10.0)}
    spy = _monthly("SPY", d0, AS_OF, 100.0)

    rows = attribute_symbols(build_ledger(txs), {"CCC": 10.3}, prices, spy, as_of=AS_OF)
    assert rows[0].has_estimated_cost is False
    assert rows[0].unrecorded_shares == 0.0


def test_benchmark_symbol_alpha_is_exactly_zero():
    d0 = dt.date(2023, 3, 1)
    txs = [_tx(d0, "SPY", TxType.BUY, 10, 100.0, 1000.0)]
    spy = _monthly("SPY", d0, AS_OF, 100.0, last_px=120.0)

    rows = attribute_symbols(build_ledger(txs), {"SPY": 10.0}, {"SPY": spy}, spy, as_of=AS_OF)
    s = rows[0]
    assert abs(s.total_return - 20.0) < 1e-9
    assert s.alpha == 0.0
    assert s.is_benchmark is True


def test_exited_position_return_and_cagr():
    d0, d1 = dt.date(2021, 6, 1), dt.date(2023, 6, 1)
    txs = [_tx(d0, "EEE", TxType.BUY, 10, 10.0, 100.0), _tx(d1, "EEE", TxType.SELL, 10, 15.0, 150.0)]
    prices = {"EEE": _monthly("EEE", d0, AS_OF, 12.0)}
    spy = _monthly("SPY", d0, AS_OF, 100.0)

    rows = attribute_symbols(build_ledger(txs), {}, prices, spy, as_of=AS_OF)
    e = rows[0]
    assert e.status == "exited"
    assert e.current_shares == 0.0
    assert e.current_value == 0.0
    assert abs(e.total_return - 50.0) < 1e-9
    days = (d1 - d0).days
    assert e.holding_period_days == days
    assert abs(e.cagr - ((1.5 ** (365.25 / days)) - 1) * 100) < 1e-9
    assert e.weight == 0.0


def test_cagr_guards():
    assert cagr_pct(10.0, 20) == 10.0
    assert cagr_pct(-100.0, 1000) == -100.0
    assert abs(cagr_pct(21.0, int(2 * 365.25)) - 10.0) < 0.01


def test_dollar_weighted_benchmark_weights_by_deployment_date():
    d0, d1, end = dt.date(2023, 1, 3), dt.date(2023, 6, 1), dt.date(2024, 1, 2)
    spy = _series("SPY", {d0: 100.0, d1: 200.0, end: 200.0})
    buys = [_tx(d0, "AAA", TxType.BUY, 1, amount=1000.0), _tx(d1, "AAA", TxType.BUY, 1, amount=1000.0)]
    # 10 benchmark shares from the first buy, 5 from the second, all worth 200 at the end.
    r = dollar_weighted_benchmark_return(buys, spy, start=d0, end=end)
    assert abs(r - 50.0) < 1e-9


def test_dollar_weighted_falls_back_to_simple_return_without_buys():
    d0, end = dt.date(2023, 1, 3), dt.date(2024, 1, 2)
    spy = _series("SPY", {d0: 100.0, end: 110.0})
    assert abs(dollar_weighted_benchmark_return([], spy, start=d0, end=end) - 10.0) < 1e-9
    # Gap before the benchmark history: earliest close is used.
    assert abs(dollar_weighted_benchmark_return([], spy, start=dt.date(2020, 1, 1), end=end) - 10.0) < 1e-9
    assert dollar_weighted_benchmark_return([], PriceSeries(symbol="SPY"), start=d0, end=end) == 0.0


def test_transfers_count_as_trades_and_are_flagged():
    d0, d1 = dt.date(2023, 1, 3), dt.date(2023, 9, 1)
    txs = [
        _tx(d0, "TTT", TxType.TRANSFER_IN, 4, 25.0, 100.0),
        _tx(d1, "TTT", TxType.TRANSFER_OUT, 1, 30.0, None),
    ]
    ledger = build_ledger(txs)
    t = ledger["TTT"]
    assert t.total_bought == 4
    assert t.total_sold == 1
    assert t.total_cost_basis == 100.0
    assert t.total_sell_proceeds == 30.0

    prices = {"TTT": _monthly("TTT", d0, AS_OF, 25.0)}
    rows = attribute_symbols(ledger, {"TTT": 3.0}, prices, _monthly("SPY", d0, AS_OF, 100.0), as_of=AS_OF)
    assert [(x.type, x.is_transfer) for x in rows[0].transactions] == [("BUY", True), ("SELL", True)]


def test_symbols_without_prices_are_skipped_and_sweep_ignored():
    d0 = dt.date(2023, 1, 3)
    txs = [_tx(d0, "NOPX", TxType.BUY, 1, 10.0, 10.0)]
    rows = attribute_symbols(
        build_ledger(txs),
        {"NOPX": 1.0, "SPAXX": 1000.0},
        {"SPAXX": _monthly("SPAXX", d0, AS_OF, 1.0)},
        _monthly("SPY", d0, AS_OF, 100.0),
        as_of=AS_OF,
    )
    assert rows == []


def test_summary_excludes_tracking_funds_from_alpha():
    d0 = dt.date(2023, 1, 3)
    txs = [
        _tx(d0, "WIN", TxType.BUY, 10, 10.0, 100.0),
        _tx(d0, "LOSE", TxType.BUY, 10, 10.0, 100.0),
        _tx(d0, "VOO", TxType.BUY, 1, 400.0, 400.0),
    ]
    prices = {
        "WIN": _monthly("WIN", d0, AS_OF, 10.0, last_px=13.0),
        "LOSE": _monthly("LOSE", d0, AS_OF, 10.0, last_px=9.0),
        "VOO": _monthly("VOO", d0, AS_OF, 400.0, last_px=440.0),
    }
    spy = _monthly("SPY", d0, AS_OF, 100.0, last_px=110.0)
    current = {"WIN": 10.0, "LOSE": 10.0, "VOO": 1.0}

    rows = attribute_symbols(build_ledger(txs), current, prices, spy, as_of=AS_OF)
    assert [r.symbol for r in rows] == ["WIN", "VOO", "LOSE"]
    by = _by_symbol(rows)
    assert by["VOO"].is_benchmark is True
    assert abs(by["VOO"].alpha - 0.0) < 1e-9

    total_value = 130.0 + 90.0 + 440.0
    assert abs(by["WIN"].weight - 130.0 / total_value * 100) < 1e-9

    s = summarize_attribution(rows)
    assert s.total_stocks_traded == 3
    assert s.active_positions == 3
    assert s.exited_positions == 0
    assert s.best_performer[0] == "WIN"
    assert s.worst_performer[0] == "LOSE"
    assert abs(s.avg_return - (30.0 + 10.0 - 10.0) / 3) < 1e-9
    # WIN alpha 20, LOSE alpha -20; VOO left out.
    assert abs(s.avg_alpha - 0.0) < 1e-9
    assert abs(s.win_rate - 200.0 / 3) < 1e-9


def test_summary_of_nothing():
    s = summarize_attribution([])
    assert s.total_stocks_traded == 0
    assert s.best_performer is None
    assert s.win_rate == 0.0
