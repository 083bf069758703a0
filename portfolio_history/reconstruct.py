from __future__ import annotations

import bisect
import datetime as dt
from dataclasses import dataclass
from itertools import groupby
from types import MappingProxyType
from typing import Iterable, Mapping

from portfolio_history.transactions import Transaction

SHARE_EPSILON = 0.001


@dataclass(frozen=True)
class HoldingsSnapshot:
    date: dt.date
    holdings: Mapping[str, float]

    @classmethod
    def of(cls, date: dt.date, holdings: Mapping[str, float]) -> "HoldingsSnapshot":
        return cls(date=date, holdings=MappingProxyType(dict(holdings)))


@dataclass(frozen=True)
class HoldingsTimeline:
    """
    Snapshots ordered oldest-first with strictly increasing dates. The last snapshot is the present-day state.
    """

    snapshots: tuple[HoldingsSnapshot, ...]

    def __post_init__(self) -> None:
        if not self.snapshots:
            raise ValueError("A holdings timeline needs at least the present-day snapshot.")

    def __len__(self) -> int:
        return len(self.snapshots)

    def __iter__(self):
        return iter(self.snapshots)

    @property
    def dates(self) -> list[dt.date]:
        return [s.date for s in self.snapshots]

    @property
    def current(self) -> HoldingsSnapshot:
        return self.snapshots[-1]

    @property
    def oldest(self) -> HoldingsSnapshot:
        return self.snapshots[0]

    def snapshot_on(self, d: dt.date) -> HoldingsSnapshot:
        """Most recent snapshot dated on or before `d`; dates before the first snapshot resolve to the first."""
        idx = bisect.bisect_right(self.dates, d) - 1
        return self.snapshots[max(0, idx)]

    def holdings_on(self, d: dt.date) -> Mapping[str, float]:
        return self.snapshot_on(d).holdings

    def symbols_since(self, start: dt.date) -> set[str]:
        """Every symbol held in a snapshot that applies on or after `start`."""
        out: set[str] = set(self.snapshot_on(start).holdings)
        for s in self.snapshots:
            if s.date >= start:
                out.update(s.holdings)
        return out


def _undo(running: dict[str, float], tx: Transaction, epsilon: float) -> None:
    qty = abs(float(tx.quantity))
    if tx.tx_type.is_acquisition:
        running[tx.symbol] = running.get(tx.symbol, 0.0) - qty
    elif tx.tx_type.is_disposal:
        running[tx.symbol] = running.get(tx.symbol, 0.0) + qty
    if running.get(tx.symbol, 0.0) <= epsilon:
        running.pop(tx.symbol, None)


def reconstruct_holdings(
    current: Mapping[str, float],
    transactions: Iterable[Transaction],
    *,
    as_of: dt.date | None = None,
    epsilon: float = SHARE_EPSILON,
) -> HoldingsTimeline:
    """
    Walk the ledger backwards from the present-day holdings.

    Undoing a BUY/TRANSFER_IN subtracts shares, undoing a SELL/TRANSFER_OUT adds them back. The snapshot recorded
    at a transaction date is the state with that day's transactions undone. `current` is never mutated.
    """
    today = as_of or dt.date.today()
    txs = sorted(transactions, key=lambda t: t.date, reverse=True)
    # The present-day snapshot must sort after every transaction date.
    now_date = today
    if txs and txs[0].date >= today:
        now_date = txs[0].date + dt.timedelta(days=1)

    running = {sym: float(q) for sym, q in current.items() if float(q) > epsilon}
    newest_first = [HoldingsSnapshot.of(now_date, running)]
    for d, day_txs in groupby(txs, key=lambda t: t.date):
        for tx in day_txs:
            _undo(running, tx, epsilon)
        newest_first.append(HoldingsSnapshot.of(d, running))
    return HoldingsTimeline(snapshots=tuple(reversed(newest_first)))


def replay_forward(
    start: Mapping[str, float],
    transactions: Iterable[Transaction],
    *,
    epsilon: float = SHARE_EPSILON,
) -> dict[str, float]:
    """Apply a ledger oldest-first to a starting share map."""
    running = {sym: float(q) for sym, q in start.items()}
    for tx in sorted(transactions, key=lambda t: t.date):
        running[tx.symbol] = running.get(tx.symbol, 0.0) + tx.signed_quantity
    return {sym: q for sym, q in running.items() if q > epsilon}
