from __future__ import annotations

import csv
import datetime as dt
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from market_data.symbols import is_equity_ticker
from portfolio_history.util import parse_mdy_date, parse_money

logger = logging.getLogger(__name__)

DEFAULT_CASH_SWEEP = "SPAXX"

# Column positions in a brokerage activity export row.
COL_DATE = 0
COL_ACTION = 1
COL_SYMBOL = 2
COL_DESCRIPTION = 3
COL_PRICE = 5
COL_QUANTITY = 6
COL_AMOUNT = 10
MIN_COLUMNS = COL_QUANTITY + 1


class TxType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    IGNORE = "IGNORE"

    @property
    def is_acquisition(self) -> bool:
        return self in (TxType.BUY, TxType.TRANSFER_IN)

    @property
    def is_disposal(self) -> bool:
        return self in (TxType.SELL, TxType.TRANSFER_OUT)

    @property
    def is_transfer(self) -> bool:
        return self in (TxType.TRANSFER_IN, TxType.TRANSFER_OUT)


@dataclass(frozen=True)
class Transaction:
    date: dt.date
    symbol: str
    tx_type: TxType
    quantity: float  # always > 0
    price: float | None = None
    amount: float | None = None  # absolute dollar value
    description: str | None = None
    is_reinvestment: bool = False
    raw_action: str = ""

    @property
    def signed_quantity(self) -> float:
        """Forward-time share delta."""
        return self.quantity if self.tx_type.is_acquisition else -self.quantity

    @property
    def dollar_value(self) -> float:
        """Cash value of the trade: the recorded amount, else quantity x price."""
        if self.amount:
            return float(self.amount)
        if self.price:
            return float(self.quantity) * float(self.price)
        return 0.0


def classify_action(raw_action: str | None, symbol: str | None = None, *, cash_sweep_symbol: str = DEFAULT_CASH_SWEEP) -> TxType:
    """
    Map a free-text activity action to a transaction type.

    Dividend reinvestments count as buys, except into the cash-sweep vehicle.
    """
    action = (raw_action or "").strip().upper()
    sym = (symbol or "").strip().upper()
    if not action:
        return TxType.IGNORE
    if action.startswith("YOU BOUGHT"):
        return TxType.BUY
    if action.startswith("YOU SOLD"):
        return TxType.SELL
    if "REINVESTMENT" in action:
        if sym and sym != cash_sweep_symbol.strip().upper():
            return TxType.BUY
        return TxType.IGNORE
    if action.startswith("RECEIVED FROM YOU"):
        return TxType.TRANSFER_IN
    if action.startswith("DELIVERED TO YOU"):
        return TxType.TRANSFER_OUT
    return TxType.IGNORE


def _field(fields: Sequence[str], idx: int) -> str:
    if idx >= len(fields):
        return ""
    return (fields[idx] or "").strip()


def parse_activity_row(fields: Sequence[str], *, cash_sweep_symbol: str = DEFAULT_CASH_SWEEP) -> Transaction | None:
    """
    Parse one activity row. Returns None for rows that are not equity trades or are malformed.
    """
    if len(fields) < MIN_COLUMNS:
        return None
    d = parse_mdy_date(_field(fields, COL_DATE))
    if d is None:
        return None
    raw_action = _field(fields, COL_ACTION)
    symbol = _field(fields, COL_SYMBOL)
    if not is_equity_ticker(symbol, cash_sweep_symbol=cash_sweep_symbol):
        return None
    tx_type = classify_action(raw_action, symbol, cash_sweep_symbol=cash_sweep_symbol)
    if tx_type is TxType.IGNORE:
        return None
    qty = parse_money(_field(fields, COL_QUANTITY))
    if qty is None or abs(qty) <= 0:
        return None
    price = parse_money(_field(fields, COL_PRICE))
    amount = parse_money(_field(fields, COL_AMOUNT))
    desc = _field(fields, COL_DESCRIPTION)
    return Transaction(
        date=d,
        symbol=symbol,
        tx_type=tx_type,
        quantity=abs(float(qty)),
        price=abs(float(price)) if price is not None else None,
        amount=abs(float(amount)) if amount is not None else None,
        description=desc or None,
        is_reinvestment="REINVESTMENT" in raw_action.upper(),
        raw_action=raw_action,
    )


def parse_activity_lines(lines: Iterable[str], *, cash_sweep_symbol: str = DEFAULT_CASH_SWEEP) -> list[Transaction]:
    """
    Parse raw activity lines from one source. Malformed rows (including headers and disclaimers) are skipped.
    """
    cleaned = [ln.lstrip("\ufeff") for ln in lines if ln and ln.strip()]
    out: list[Transaction] = []
    for fields in csv.reader(cleaned):
        tx = parse_activity_row(fields, cash_sweep_symbol=cash_sweep_symbol)
        if tx is not None:
            out.append(tx)
    return out


def normalize_transactions(
    sources: Iterable[Iterable[str] | None],
    *,
    cash_sweep_symbol: str = DEFAULT_CASH_SWEEP,
) -> list[Transaction]:
    """
    Parse every source and return one stream ordered by date (stable: same-day rows keep source order).
    A source that is None or fails while being read is skipped.
    """
    out: list[Transaction] = []
    for i, src in enumerate(sources):
        if src is None:
            continue
        try:
            out.extend(parse_activity_lines(src, cash_sweep_symbol=cash_sweep_symbol))
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.warning("Skipping activity source #%s: %s", i, e)
            continue
    out.sort(key=lambda t: t.date)
    return out


def read_activity_sources(paths: Iterable[Path]) -> tuple[list[list[str]], list[str]]:
    """
    Read activity export files into raw line lists. Missing or unreadable files are skipped with a warning.
    """
    warnings: list[str] = []
    sources: list[list[str]] = []
    for p in paths:
        path = Path(p)
        if not path.exists():
            warnings.append(f"Activity file not found: {path.name}")
            logger.warning("Activity file not found: %s", path)
            continue
        try:
            text = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            warnings.append(f"Activity file unreadable: {path.name} ({e})")
            logger.warning("Activity file unreadable: %s (%s)", path, e)
            continue
        sources.append(text.splitlines())
    return sources, warnings


def transactions_by_symbol(txs: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    out: dict[str, list[Transaction]] = {}
    for t in txs:
        out.setdefault(t.symbol, []).append(t)
    for sym in out:
        out[sym].sort(key=lambda t: t.date)
    return out
