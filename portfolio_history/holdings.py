from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from portfolio_history.util import parse_money, sniff_delimiter, uniq_sorted


@dataclass(frozen=True)
class Holding:
    symbol: str
    quantity: float


def _norm_key(s: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "_" for ch in (s or "")).strip("_")


def _pick(row: dict[str, Any], keys: list[str]) -> Any:
    norm = {_norm_key(k): k for k in row.keys() if k}
    for k in keys:
        if k in norm:
            return row.get(norm[k])
    return None


def _clean_symbol(raw: Any) -> str:
    # Positions exports mark money-market sweeps like "SPAXX**".
    return str(raw or "").strip().upper().rstrip("*")


def load_holdings(path: Path, *, skip_symbols: Iterable[str] = ()) -> tuple[list[Holding], list[str]]:
    """
    Parse a present-day positions export (Symbol / Quantity columns; other columns are ignored).
    """
    warnings: list[str] = []
    skip = {s.strip().upper() for s in skip_symbols}
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    delim = sniff_delimiter(text)
    reader = csv.DictReader(text.splitlines(), delimiter=delim)
    out: list[Holding] = []
    for row in reader:
        if not row:
            continue
        symbol = _clean_symbol(_pick(row, ["symbol", "ticker", "security"]))
        if not symbol or symbol in skip:
            continue
        qty = parse_money(_pick(row, ["quantity", "qty", "shares"]))
        if qty is None:
            continue
        out.append(Holding(symbol=symbol, quantity=float(qty)))
    out.sort(key=lambda h: h.symbol)
    if not out:
        warnings.append("No holdings parsed (check headers).")
    syms = uniq_sorted([h.symbol for h in out])
    if len(syms) != len(out):
        warnings.append("Duplicate symbols in holdings; quantities are summed.")
    return out, warnings


def holdings_from_records(records: Iterable[Holding | Mapping[str, Any]]) -> list[Holding]:
    """
    Accept caller-supplied `{symbol, quantity}` records (or Holding objects).
    """
    out: list[Holding] = []
    for r in records:
        if isinstance(r, Holding):
            out.append(r)
            continue
        symbol = _clean_symbol(r.get("symbol"))
        qty = parse_money(r.get("quantity"))
        if not symbol or qty is None:
            continue
        out.append(Holding(symbol=symbol, quantity=float(qty)))
    return out


def share_map(holdings: Iterable[Holding], *, skip_symbols: Iterable[str] = ()) -> dict[str, float]:
    skip = {s.strip().upper() for s in skip_symbols}
    out: dict[str, float] = {}
    for h in holdings:
        if h.symbol in skip:
            continue
        out[h.symbol] = out.get(h.symbol, 0.0) + float(h.quantity)
    return out
